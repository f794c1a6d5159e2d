import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from storefront.core.config import Settings
from storefront.core.errors import (
    ForbiddenError,
    InvalidPromoError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PaymentGatewayError,
    StaleStateError,
    ValidationError,
)
from storefront.core.security import Identity
from storefront.core.unit_of_work import TransactionScope, UnitOfWork
from storefront.models.database import Order, OrderItem, utcnow
from storefront.models.enums import OrderStatus, ProductType, Role
from storefront.models.schemas import OrderCreate, OrderItemCreate
from storefront.services.audit import AuditRecorder
from storefront.services.integrations import (
    PAYMENT_FAILED_EVENTS,
    PAYMENT_SUCCEEDED_EVENTS,
    PaymentDiscount,
    PaymentEvent,
    PaymentGateway,
    PaymentLineItem,
    PaymentSession,
)
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.pricing import PricingAggregator, to_money
from storefront.services.side_effects import SideEffectDispatcher

logger = logging.getLogger(__name__)

# Actor recorded for changes driven by the payment provider
SYSTEM_ACTOR = Identity(id="system", role=Role.ADMIN)

ORDER_TRANSITIONS: Dict[OrderStatus, Tuple[OrderStatus, ...]] = {
    OrderStatus.PENDING: (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    OrderStatus.PROCESSING: (OrderStatus.COMPLETED, OrderStatus.CANCELLED),
    OrderStatus.COMPLETED: (),
    OrderStatus.CANCELLED: (),
}


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in ORDER_TRANSITIONS[current]


@dataclass
class _Line:
    product_id: int
    product_type: ProductType
    name: str
    unit_price: Decimal
    quantity: int
    reservations: List[Tuple[int, int]] = field(default_factory=list)


@dataclass
class OrderResult:
    order: Order
    payment_session: Optional[PaymentSession] = None


class OrderCreator:
    """
    Builds an Order and its OrderItems in one transaction.

    Prices are snapshotted from the catalog, the optional promo code is
    redeemed and stock is reserved in the same transaction as the inserts:
    any failure leaves no rows behind. The payment session is requested
    only after commit, so a gateway outage leaves a PENDING order that can
    be retried.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        pricing: PricingAggregator,
        ledger: InventoryLedger,
        audit: AuditRecorder,
        settings: Settings,
        payment_gateway: Optional[PaymentGateway] = None,
    ):
        self.uow = uow
        self.pricing = pricing
        self.ledger = ledger
        self.audit = audit
        self.settings = settings
        self.payment_gateway = payment_gateway

    async def create(self, order_data: OrderCreate, identity: Optional[Identity] = None) -> OrderResult:
        is_guest = identity is None
        customer = "guest" if is_guest else f"user {identity.id}"
        logger.info(f"Creating order for {customer} with {len(order_data.items)} item(s)")

        try:
            with self.uow.transaction() as tx:
                order = self._create_in_transaction(tx, order_data, identity)
        except Exception as e:
            logger.error(f"Order creation failed for {customer}: {e}")
            raise

        logger.info(f"Order {order.id} created: total {order.total_amount}")
        self.audit.record(
            None if is_guest else identity.id,
            "CREATE",
            "ORDER",
            order.id,
            {
                "is_guest_order": is_guest,
                "total_amount": order.total_amount,
                "promo_code": order.promo_code,
                "items": len(order.items),
            },
        )
        payment_session = await self._open_payment_session(order)
        return OrderResult(order=order, payment_session=payment_session)

    def _create_in_transaction(
        self, tx: TransactionScope, order_data: OrderCreate, identity: Optional[Identity]
    ) -> Order:
        now = utcnow()
        lines = [self._resolve_line(tx, item, identity, now) for item in order_data.items]
        subtotal = self.pricing.compute_subtotal((line.unit_price, line.quantity) for line in lines)
        shipping_cost = to_money(order_data.shipping.cost)

        discount = Decimal("0.00")
        promo_code = None
        if order_data.promo_code:
            try:
                promo = self.pricing.apply_promo(tx, order_data.promo_code, subtotal, now)
                discount = promo.discount
                promo_code = promo.code
            except InvalidPromoError as e:
                if not order_data.proceed_without_invalid_promo:
                    raise
                logger.warning(f"Proceeding without promo code {e.code}: {e.reason}")

        shipping = order_data.shipping
        order = Order(
            status=OrderStatus.PENDING,
            subtotal=subtotal,
            discount=discount,
            shipping_cost=shipping_cost,
            total_amount=subtotal + shipping_cost - discount,
            promo_code=promo_code,
            is_guest_order=identity is None,
            user_id=None if identity is None else identity.id,
            shipping_name=shipping.full_name,
            shipping_email=shipping.email,
            shipping_phone=shipping.phone,
            shipping_address=shipping.formatted_address(),
            shipping_method=shipping.method.upper(),
            locale=self._locale(order_data.locale),
        )
        for line in lines:
            order.items.append(
                OrderItem(
                    product_id=line.product_id,
                    product_type=line.product_type,
                    name=line.name,
                    quantity=line.quantity,
                    price=line.unit_price,
                )
            )
        tx.orders.add(order)

        # One reservation per component, taken in id order so concurrent
        # orders lock rows in the same sequence.
        wanted: Dict[int, int] = {}
        for line in lines:
            for component_id, quantity in line.reservations:
                wanted[component_id] = wanted.get(component_id, 0) + quantity
        for component_id in sorted(wanted):
            self.ledger.reserve(tx, component_id, wanted[component_id], order_id=order.id)

        tx.flush("Order", order.id)
        return order

    def _resolve_line(
        self, tx: TransactionScope, item: OrderItemCreate, identity: Optional[Identity], now
    ) -> _Line:
        if item.quantity <= 0:
            raise ValidationError(
                f"Quantity for product {item.product_id} must be positive",
                {"quantity": "must be greater than 0"},
            )

        if item.product_type in (ProductType.COMPONENT, ProductType.PERIPHERAL):
            component = tx.components.find(item.product_id)
            if component is None or component.product_type != item.product_type:
                raise ValidationError(
                    f"Product with ID {item.product_id} not found",
                    {"product_id": "unknown product"},
                )
            return _Line(
                product_id=component.id,
                product_type=item.product_type,
                name=component.name,
                unit_price=self.pricing.effective_price(component, now),
                quantity=item.quantity,
                reservations=[(component.id, item.quantity)],
            )

        try:
            configuration = tx.configurations.get(item.product_id)
        except NotFoundError:
            raise ValidationError(
                f"Configuration with ID {item.product_id} not found",
                {"product_id": "unknown configuration"},
            )
        owned = identity is not None and configuration.owner_id == identity.id
        if not (configuration.is_public or owned):
            raise ValidationError(
                f"Configuration {item.product_id} is not available for purchase",
                {"product_id": "configuration not available"},
            )
        return _Line(
            product_id=configuration.id,
            product_type=ProductType.CONFIGURATION,
            name=configuration.name,
            unit_price=to_money(configuration.total_price),
            quantity=item.quantity,
            reservations=[(ci.component_id, ci.quantity * item.quantity) for ci in configuration.items],
        )

    def _locale(self, requested: Optional[str]) -> str:
        if requested and requested in self.settings.allowed_locales:
            return requested
        return self.settings.default_locale

    async def retry_payment(self, order_id: int, identity: Identity) -> OrderResult:
        """Request a payment session again for an order that is still PENDING"""
        with self.uow.transaction() as tx:
            order = tx.orders.get(order_id)
        if not identity.is_staff and (order.user_id is None or order.user_id != identity.id):
            raise NotFoundError("Order", order_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidStateError(f"Order {order_id} is {order.status.value}, payment is closed")
        if self.payment_gateway is None:
            raise InvalidStateError("No payment gateway is configured")
        payment_session = await self._open_payment_session(order)
        return OrderResult(order=order, payment_session=payment_session)

    async def _open_payment_session(self, order: Order) -> Optional[PaymentSession]:
        if self.payment_gateway is None:
            return None

        line_items = [
            PaymentLineItem(name=item.name, unit_amount=_cents(item.price), quantity=item.quantity)
            for item in order.items
        ]
        if order.shipping_cost and order.shipping_cost > 0:
            line_items.append(
                PaymentLineItem(
                    name=f"Shipping ({order.shipping_method})",
                    unit_amount=_cents(order.shipping_cost),
                    quantity=1,
                )
            )
        discounts = []
        if order.promo_code and order.discount > 0:
            discounts.append(PaymentDiscount(code=order.promo_code, amount_off=_cents(order.discount)))

        try:
            session = await asyncio.wait_for(
                self.payment_gateway.create_session(
                    line_items,
                    discounts,
                    self.settings.checkout_success_url,
                    self.settings.checkout_cancel_url,
                    idempotency_key=f"order-{order.id}",
                ),
                timeout=self.settings.payment_timeout_seconds,
            )
        except (PaymentGatewayError, asyncio.TimeoutError) as e:
            logger.error(f"Payment session for order {order.id} failed, order stays PENDING: {e}")
            return None
        except Exception:
            logger.exception(f"Unexpected payment gateway error for order {order.id}")
            return None

        try:
            with self.uow.transaction() as tx:
                stored = tx.orders.get(order.id)
                stored.payment_session_id = session.session_id
                stored.payment_url = session.url
        except StaleStateError:
            logger.warning(f"Order {order.id} changed while storing its payment session")
        order.payment_session_id = session.session_id
        order.payment_url = session.url
        logger.info(f"Payment session {session.session_id} opened for order {order.id}")
        return session


class OrderStatusManager:
    """Drives an Order through its status table; side effects run after commit."""

    def __init__(
        self,
        uow: UnitOfWork,
        ledger: InventoryLedger,
        audit: AuditRecorder,
        notifier,
        dispatcher: SideEffectDispatcher,
    ):
        self.uow = uow
        self.ledger = ledger
        self.audit = audit
        self.notifier = notifier
        self.dispatcher = dispatcher

    async def transition(
        self,
        order_id: int,
        new_status: OrderStatus,
        actor: Identity,
        reason: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> Order:
        with self.uow.transaction() as tx:
            order = tx.orders.get(order_id)
            if owner_id is not None and order.user_id != owner_id:
                raise NotFoundError("Order", order_id)
            previous = order.status
            if not can_transition(previous, new_status):
                raise InvalidTransitionError("order", previous, new_status)

            order.status = new_status
            restocked = 0
            if new_status == OrderStatus.CANCELLED:
                restocked = self.ledger.release_order(tx, order.id)
            tx.flush("Order", order_id)

        logger.info(f"Order {order_id}: {previous.value} -> {new_status.value}")
        details = {"previous_status": previous.value, "new_status": new_status.value}
        if reason:
            details["reason"] = reason
        if restocked:
            details["restocked_units"] = restocked
        self.audit.record(actor.id, "UPDATE_STATUS", "ORDER", order_id, details)

        if new_status == OrderStatus.PROCESSING:
            self.dispatcher.dispatch(
                f"order approval receipt for order {order_id}",
                self.notifier.send_order_approval_receipt,
                order_id,
                order.locale,
            )
        return order

    async def cancel_own_order(self, order_id: int, identity: Identity, reason: Optional[str] = None) -> Order:
        """Customer cancellation; only the owner's PENDING orders qualify."""
        with self.uow.transaction() as tx:
            order = tx.orders.get(order_id)
        if order.user_id != identity.id:
            raise NotFoundError("Order", order_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidStateError("Only pending orders can be cancelled")
        return await self.transition(
            order_id,
            OrderStatus.CANCELLED,
            identity,
            reason=reason or "User cancelled",
            owner_id=identity.id,
        )

    async def apply_payment_event(self, event: PaymentEvent) -> Optional[Order]:
        """Settle or cancel the order behind a checkout session.

        Events for unknown sessions or orders that already left PENDING are
        logged and ignored, so the provider can retry a callback safely.
        """
        if event.event_type in PAYMENT_SUCCEEDED_EVENTS:
            target = OrderStatus.PROCESSING
        elif event.event_type in PAYMENT_FAILED_EVENTS:
            target = OrderStatus.CANCELLED
        else:
            logger.info(f"Ignoring payment event {event.event_type}")
            return None
        if not event.session_id:
            raise ValidationError(
                f"Payment event {event.event_type} names no checkout session",
                {"session_id": "missing"},
            )

        with self.uow.transaction() as tx:
            order = tx.orders.find_by_payment_session(event.session_id)
        if order is None:
            logger.warning(f"No order for payment session {event.session_id} ({event.event_type})")
            return None
        if order.status == target:
            logger.info(f"Order {order.id} already {target.value}, duplicate {event.event_type}")
            return order
        if order.status != OrderStatus.PENDING:
            logger.error(
                f"{event.event_type} for order {order.id} arrived while it is "
                f"{order.status.value}, leaving it unchanged"
            )
            return order
        return await self.transition(order.id, target, SYSTEM_ACTOR, reason=event.event_type)

    async def resend_approval_receipt(self, order_id: int, actor: Identity) -> Order:
        if not actor.is_staff:
            raise ForbiddenError()
        with self.uow.transaction() as tx:
            order = tx.orders.get(order_id)
        self.dispatcher.dispatch(
            f"manual approval receipt for order {order_id}",
            self.notifier.send_order_approval_receipt,
            order_id,
            order.locale,
        )
        self.audit.record(
            actor.id,
            "EMAIL_SENT",
            "ORDER",
            order_id,
            {"email_type": "approval", "locale": order.locale, "manual": True},
        )
        return order


def _cents(amount) -> int:
    return int((to_money(amount) * 100).to_integral_value())
