from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.dependencies import (
    get_container,
    get_identity,
    get_optional_identity,
    require_admin,
    require_staff,
)
from storefront.core.database import get_db
from storefront.core.errors import NotFoundError
from storefront.core.security import Identity
from storefront.core.unit_of_work import TransactionScope
from storefront.models.schemas import (
    Order,
    OrderCancel,
    OrderCreate,
    OrderCreated,
    OrderEmailRequest,
    OrderList,
    OrderStatusUpdate,
    Pagination,
    PromoPreview,
    PromoPreviewRequest,
)
from storefront.services.container import ServiceContainer

router = APIRouter()


@router.post("/", response_model=OrderCreated, status_code=201)
async def create_order(
    order_data: OrderCreate,
    identity: Optional[Identity] = Depends(get_optional_identity),
    container: ServiceContainer = Depends(get_container),
):
    """Create an order for a registered user or a guest"""
    result = await container.order_creator.create(order_data, identity)
    session = result.payment_session
    return OrderCreated(
        order=Order.model_validate(result.order),
        payment_session_id=session.session_id if session else None,
        payment_url=session.url if session else None,
    )


@router.get("/", response_model=OrderList)
async def get_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    """Orders placed by the calling user, newest first"""
    orders, total = TransactionScope(db).orders.list_for_user(identity.id, page, limit)
    return OrderList(
        orders=[Order.model_validate(o) for o in orders],
        pagination=Pagination.for_page(page, limit, total),
    )


@router.post("/promo/preview", response_model=PromoPreview)
async def preview_promo(
    request: PromoPreviewRequest, container: ServiceContainer = Depends(get_container)
):
    """Check a promo code against a subtotal without redeeming it"""
    with container.uow.transaction() as tx:
        result = container.pricing.preview_promo(tx, request.code, request.subtotal)
    return PromoPreview(
        code=result.code, discount=result.discount, discounted_total=result.discounted_total
    )


@router.get("/{order_id}", response_model=Order)
async def get_order(
    order_id: int, identity: Identity = Depends(get_identity), db: Session = Depends(get_db)
):
    order = TransactionScope(db).orders.get(order_id)
    if not identity.is_staff and order.user_id != identity.id:
        raise NotFoundError("Order", order_id)
    return Order.model_validate(order)


@router.patch("/{order_id}", response_model=Order)
async def update_order_status(
    order_id: int,
    update: OrderStatusUpdate,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """Move an order through its status table (admin)"""
    order = await container.order_status.transition(order_id, update.status, admin)
    return Order.model_validate(order)


@router.post("/{order_id}/cancel", response_model=Order)
async def cancel_order(
    order_id: int,
    request: OrderCancel,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
):
    order = await container.order_status.cancel_own_order(order_id, identity, request.reason)
    return Order.model_validate(order)


@router.post("/{order_id}/payment-session", response_model=OrderCreated)
async def retry_payment_session(
    order_id: int,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
):
    """Open a new payment session for a pending order"""
    result = await container.order_creator.retry_payment(order_id, identity)
    session = result.payment_session
    return OrderCreated(
        order=Order.model_validate(result.order),
        payment_session_id=session.session_id if session else None,
        payment_url=session.url if session else None,
    )


@router.post("/{order_id}/send-email")
async def send_order_email(
    order_id: int,
    request: OrderEmailRequest,
    staff: Identity = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
):
    order = await container.order_status.resend_approval_receipt(order_id, staff)
    return {
        "message": f"{request.email_type.capitalize()} email queued",
        "order_id": order.id,
        "locale": order.locale,
    }
