from fastapi import APIRouter, Depends, Request

from storefront.api.dependencies import get_container
from storefront.services.container import ServiceContainer
from storefront.services.integrations import WEBHOOK_SIGNATURE_HEADER, parse_webhook_event

router = APIRouter()


@router.post("/webhook")
async def payment_webhook(request: Request, container: ServiceContainer = Depends(get_container)):
    """Payment provider callback: settles or cancels the order behind a checkout session"""
    event = parse_webhook_event(
        await request.body(),
        request.headers.get(WEBHOOK_SIGNATURE_HEADER),
        container.settings.payment_webhook_secret,
    )
    order = await container.order_status.apply_payment_event(event)
    return {"received": True, "order_id": order.id if order else None}
