import asyncio
from decimal import Decimal

import pytest

from storefront.core.errors import (
    InsufficientStockError,
    InvalidPromoError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from storefront.models.database import (
    AuditLogEntry,
    Configuration,
    ConfigurationItem,
    Order,
    OrderItem,
    StockReservation,
)
from storefront.models.enums import ConfigurationStatus, OrderStatus, ProductType
from storefront.models.schemas import OrderCreate


def _count(uow, model):
    with uow.transaction() as tx:
        return tx.session.query(model).count()


@pytest.fixture
def public_configuration(uow, sample_components):
    """Template bundle: one CPU and two RAM sticks"""
    cpu, ram = sample_components["CPU-001"], sample_components["RAM-001"]
    with uow.transaction() as tx:
        configuration = Configuration(
            name="Gaming Starter",
            owner_id="admin-1",
            status=ConfigurationStatus.APPROVED,
            total_price=Decimal("160.00"),
            is_template=True,
            is_public=True,
            items=[
                ConfigurationItem(component_id=cpu.id, quantity=1, position=0),
                ConfigurationItem(component_id=ram.id, quantity=2, position=1),
            ],
        )
        tx.configurations.add(configuration)
    return configuration


class TestOrderCreation:
    @pytest.mark.asyncio
    async def test_totals_with_promo(self, order_creator, make_order, sample_components, promo_codes, customer):
        """200.00 subtotal, 10.00 shipping, 10% promo: 20.00 off, 190.00 due"""
        order_data = make_order(
            (sample_components["CPU-001"], 1), (sample_components["GPU-001"], 2), promo_code="SAVE10"
        )

        result = await order_creator.create(order_data, customer)
        order = result.order

        assert order.subtotal == Decimal("200.00")
        assert order.shipping_cost == Decimal("10.00")
        assert order.discount == Decimal("20.00")
        assert order.total_amount == Decimal("190.00")
        assert order.promo_code == "SAVE10"
        assert order.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_registered_order_links_user(self, order_creator, make_order, sample_components, customer, stock_of):
        cpu = sample_components["CPU-001"]
        result = await order_creator.create(make_order((cpu, 2)), customer)

        assert result.order.user_id == "user-1"
        assert result.order.is_guest_order is False
        assert [(i.name, i.quantity, i.price) for i in result.order.items] == [
            ("Ryzen 7 7800X3D", 2, Decimal("100.00"))
        ]
        assert stock_of(cpu.id) == 8

    @pytest.mark.asyncio
    async def test_guest_order_keeps_shipping_contact(self, order_creator, make_order, sample_components):
        result = await order_creator.create(make_order((sample_components["KB-001"], 1)))
        order = result.order

        assert order.is_guest_order is True
        assert order.user_id is None
        assert order.shipping_name == "Janis Berzins"
        assert order.shipping_email == "janis@example.com"
        assert order.shipping_address == "Brivibas iela 1, Riga, Latvia, LV-1010"
        assert order.shipping_method == "STANDARD"

    @pytest.mark.asyncio
    async def test_discount_price_is_snapshotted(self, order_creator, make_order, sample_components):
        result = await order_creator.create(make_order((sample_components["RAM-001"], 2)))
        assert result.order.items[0].price == Decimal("30.00")
        assert result.order.subtotal == Decimal("60.00")

    @pytest.mark.asyncio
    async def test_failed_reservation_persists_nothing(self, uow, order_creator, make_order, sample_components, stock_of):
        """Second line is short on stock: no order, no items, first line's stock untouched"""
        cpu, psu = sample_components["CPU-001"], sample_components["PSU-001"]

        with pytest.raises(InsufficientStockError):
            await order_creator.create(make_order((cpu, 1), (psu, 2)))

        assert _count(uow, Order) == 0
        assert _count(uow, OrderItem) == 0
        assert _count(uow, StockReservation) == 0
        assert stock_of(cpu.id) == 10
        assert stock_of(psu.id) == 1

    @pytest.mark.asyncio
    async def test_failed_order_does_not_consume_promo(self, uow, order_creator, make_order, sample_components, promo_codes):
        with pytest.raises(InsufficientStockError):
            await order_creator.create(make_order((sample_components["PSU-001"], 5), promo_code="ONCE"))
        with uow.transaction() as tx:
            assert tx.promo_codes.find_by_code("ONCE").usage_count == 0

    @pytest.mark.asyncio
    async def test_unknown_product_rejected(self, uow, order_creator, shipping):
        order_data = OrderCreate(
            items=[{"product_id": 424242, "product_type": "COMPONENT", "quantity": 1}],
            shipping=shipping,
        )
        with pytest.raises(ValidationError):
            await order_creator.create(order_data)
        assert _count(uow, Order) == 0

    @pytest.mark.asyncio
    async def test_product_type_must_match_catalog(self, order_creator, shipping, sample_components):
        order_data = OrderCreate(
            items=[
                {
                    "product_id": sample_components["CPU-001"].id,
                    "product_type": "PERIPHERAL",
                    "quantity": 1,
                }
            ],
            shipping=shipping,
        )
        with pytest.raises(ValidationError):
            await order_creator.create(order_data)

    @pytest.mark.asyncio
    async def test_invalid_promo_rejects_order(self, uow, order_creator, make_order, sample_components, promo_codes):
        with pytest.raises(InvalidPromoError) as exc_info:
            await order_creator.create(make_order((sample_components["CPU-001"], 1), promo_code="OLD"))
        assert exc_info.value.reason == "expired"
        assert _count(uow, Order) == 0

    @pytest.mark.asyncio
    async def test_exhausted_promo_dropped_when_caller_proceeds(self, order_creator, make_order, sample_components, promo_codes):
        order_data = make_order(
            (sample_components["CPU-001"], 2),
            promo_code="USEDUP",
            proceed_without_invalid_promo=True,
        )

        result = await order_creator.create(order_data)

        assert result.order.discount == Decimal("0.00")
        assert result.order.promo_code is None
        assert result.order.total_amount == Decimal("210.00")

    @pytest.mark.asyncio
    async def test_configuration_reserves_its_components(
        self, order_creator, shipping, sample_components, public_configuration, customer, stock_of
    ):
        order_data = OrderCreate(
            items=[
                {
                    "product_id": public_configuration.id,
                    "product_type": ProductType.CONFIGURATION,
                    "quantity": 2,
                }
            ],
            shipping=shipping,
        )

        result = await order_creator.create(order_data, customer)

        assert result.order.subtotal == Decimal("320.00")
        assert result.order.items[0].product_type == ProductType.CONFIGURATION
        assert stock_of(sample_components["CPU-001"].id) == 8
        assert stock_of(sample_components["RAM-001"].id) == 16

    @pytest.mark.asyncio
    async def test_private_configuration_not_purchasable_by_others(
        self, uow, order_creator, shipping, sample_components, other_customer
    ):
        with uow.transaction() as tx:
            private = tx.configurations.add(
                Configuration(
                    name="My Build",
                    owner_id="user-1",
                    total_price=Decimal("100.00"),
                    items=[ConfigurationItem(component_id=sample_components["CPU-001"].id, quantity=1)],
                )
            )
        order_data = OrderCreate(
            items=[{"product_id": private.id, "product_type": "CONFIGURATION", "quantity": 1}],
            shipping=shipping,
        )
        with pytest.raises(ValidationError):
            await order_creator.create(order_data, other_customer)

    @pytest.mark.asyncio
    async def test_unsupported_locale_falls_back(self, order_creator, make_order, sample_components):
        result = await order_creator.create(make_order((sample_components["CPU-001"], 1), locale="de"))
        assert result.order.locale == "en"

    @pytest.mark.asyncio
    async def test_creation_is_audited(self, uow, order_creator, make_order, sample_components, customer):
        result = await order_creator.create(make_order((sample_components["CPU-001"], 1)), customer)
        with uow.transaction() as tx:
            entry = tx.session.query(AuditLogEntry).filter_by(action="CREATE", entity_type="ORDER").one()
        assert entry.entity_id == str(result.order.id)
        assert entry.actor_id == "user-1"

    @pytest.mark.asyncio
    async def test_concurrent_orders_never_oversell(self, uow, order_creator, make_order, sample_components, stock_of):
        """Two orders want 3 of 5 GPUs; only one can win"""
        gpu = sample_components["GPU-001"]
        results = await asyncio.gather(
            order_creator.create(make_order((gpu, 3))),
            order_creator.create(make_order((gpu, 3))),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InsufficientStockError)
        assert stock_of(gpu.id) == 2
        assert _count(uow, Order) == 1


class TestPaymentSession:
    @pytest.mark.asyncio
    async def test_session_opened_after_commit(self, uow, order_creator, payment_gateway, make_order, sample_components, promo_codes):
        result = await order_creator.create(
            make_order((sample_components["CPU-001"], 2), promo_code="SAVE10")
        )

        order_id = result.order.id
        assert result.payment_session.session_id == f"cs_order-{order_id}"
        call = payment_gateway.calls[0]
        assert call["idempotency_key"] == f"order-{order_id}"
        assert [(i.unit_amount, i.quantity) for i in call["line_items"]] == [(10000, 2), (1000, 1)]
        assert [(d.code, d.amount_off) for d in call["discounts"]] == [("SAVE10", 2000)]
        assert call["success_url"].startswith("https://shop.example.com/checkout/success")
        with uow.transaction() as tx:
            assert tx.orders.get(order_id).payment_url == f"https://pay.example.com/order-{order_id}"

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_pending_order(self, uow, order_creator, payment_gateway, make_order, sample_components, stock_of):
        payment_gateway.fail = True
        cpu = sample_components["CPU-001"]

        result = await order_creator.create(make_order((cpu, 1)))

        assert result.payment_session is None
        with uow.transaction() as tx:
            order = tx.orders.get(result.order.id)
            assert order.status == OrderStatus.PENDING
            assert order.payment_session_id is None
        assert stock_of(cpu.id) == 9

    @pytest.mark.asyncio
    async def test_retry_payment_reuses_idempotency_key(self, order_creator, payment_gateway, make_order, sample_components, customer):
        payment_gateway.fail = True
        result = await order_creator.create(make_order((sample_components["CPU-001"], 1)), customer)
        payment_gateway.fail = False

        retried = await order_creator.retry_payment(result.order.id, customer)

        assert retried.payment_session is not None
        keys = [c["idempotency_key"] for c in payment_gateway.calls]
        assert keys == [f"order-{result.order.id}"] * 2

    @pytest.mark.asyncio
    async def test_retry_payment_hidden_from_other_users(self, order_creator, make_order, sample_components, customer, other_customer):
        result = await order_creator.create(make_order((sample_components["CPU-001"], 1)), customer)
        with pytest.raises(NotFoundError):
            await order_creator.retry_payment(result.order.id, other_customer)

    @pytest.mark.asyncio
    async def test_retry_payment_requires_pending(self, order_creator, order_status, make_order, sample_components, customer):
        result = await order_creator.create(make_order((sample_components["CPU-001"], 1)), customer)
        await order_status.cancel_own_order(result.order.id, customer)
        with pytest.raises(InvalidStateError):
            await order_creator.retry_payment(result.order.id, customer)

    @pytest.mark.asyncio
    async def test_slow_gateway_times_out(self, uow, settings, order_creator, payment_gateway, make_order, sample_components):
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        settings.payment_timeout_seconds = 0.05
        payment_gateway.create_session = hang

        result = await order_creator.create(make_order((sample_components["CPU-001"], 1)))

        assert result.payment_session is None
        with uow.transaction() as tx:
            assert tx.orders.get(result.order.id).status == OrderStatus.PENDING
