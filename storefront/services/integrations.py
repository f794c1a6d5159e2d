"""External collaborators: the payment gateway and the customer notifier."""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import httpx

from storefront.core.errors import InvalidStateError, PaymentGatewayError, ValidationError

logger = logging.getLogger(__name__)

WEBHOOK_SIGNATURE_HEADER = "X-Payment-Signature"
PAYMENT_SUCCEEDED_EVENTS = ("checkout.session.completed", "payment_intent.succeeded")
PAYMENT_FAILED_EVENTS = ("checkout.session.expired", "payment_intent.payment_failed")


@dataclass
class PaymentLineItem:
    name: str
    unit_amount: int  # minor units (cents)
    quantity: int


@dataclass
class PaymentDiscount:
    code: str
    amount_off: int  # minor units (cents)


@dataclass
class PaymentSession:
    session_id: str
    url: str


class PaymentGateway(Protocol):
    async def create_session(
        self,
        line_items: List[PaymentLineItem],
        discounts: List[PaymentDiscount],
        success_url: str,
        cancel_url: str,
        idempotency_key: str,
    ) -> PaymentSession:
        ...


class HttpPaymentGateway:
    """Creates hosted checkout sessions on a payment provider's HTTP API.

    Each call is bounded by timeout_seconds and carries an Idempotency-Key
    header, so retrying the same order never opens a second session.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        currency: str = "eur",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.currency = currency
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def create_session(
        self,
        line_items: List[PaymentLineItem],
        discounts: List[PaymentDiscount],
        success_url: str,
        cancel_url: str,
        idempotency_key: str,
    ) -> PaymentSession:
        headers = {"Idempotency-Key": idempotency_key}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {
            "mode": "payment",
            "currency": self.currency,
            "line_items": [
                {"name": item.name, "unit_amount": item.unit_amount, "quantity": item.quantity}
                for item in line_items
            ],
            "discounts": [{"code": d.code, "amount_off": d.amount_off} for d in discounts],
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout_seconds, transport=self._transport
        ) as client:
            try:
                response = await client.post("/checkout/sessions", json=payload, headers=headers)
                response.raise_for_status()
            except httpx.TimeoutException as e:
                raise PaymentGatewayError(f"Payment gateway timed out: {e}") from e
            except httpx.HTTPError as e:
                raise PaymentGatewayError(f"Payment gateway request failed: {e}") from e

        body = response.json()
        try:
            return PaymentSession(session_id=body["id"], url=body["url"])
        except KeyError as e:
            raise PaymentGatewayError(f"Payment gateway response missing {e}") from e


@dataclass
class PaymentEvent:
    event_type: str
    session_id: Optional[str]
    data: dict = field(default_factory=dict)


def sign_webhook_payload(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def parse_webhook_event(payload: bytes, signature: Optional[str], secret: Optional[str]) -> PaymentEvent:
    """Verify a provider callback and decode it into a PaymentEvent.

    The signature header holds a hex HMAC-SHA256 of the raw body, keyed with
    the shared webhook secret. Checkout events name their session in
    data.object.id; payment intent events in data.object.checkout_session.
    """
    if not secret:
        raise InvalidStateError("Payment webhook secret is not configured")
    if not signature:
        raise ValidationError(
            "Missing webhook signature", {"signature": f"{WEBHOOK_SIGNATURE_HEADER} header required"}
        )
    if not hmac.compare_digest(sign_webhook_payload(secret, payload), signature.strip()):
        logger.warning("Payment webhook signature verification failed")
        raise ValidationError("Invalid webhook signature", {"signature": "does not match payload"})

    try:
        body = json.loads(payload)
        event_type = body["type"]
        obj = body.get("data", {}).get("object", {})
        if event_type.startswith("checkout.session."):
            session_id = obj.get("id")
        else:
            session_id = obj.get("checkout_session")
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise ValidationError(f"Malformed webhook payload: {e}", {"payload": "not a payment event"}) from e
    return PaymentEvent(event_type=event_type, session_id=session_id, data=obj)


class Notifier(Protocol):
    async def send_order_approval_receipt(self, order_id: int, locale: str) -> None:
        ...

    async def send_repair_completion_email(self, recipient_email: str, repair: dict) -> None:
        ...


class LoggingNotifier:
    """Notifier that writes the outgoing message to the log instead of a mail server"""

    async def send_order_approval_receipt(self, order_id: int, locale: str) -> None:
        logger.info(f"Order approval receipt: order={order_id} locale={locale}")

    async def send_repair_completion_email(self, recipient_email: str, repair: dict) -> None:
        logger.info(
            f"Repair completion email to {recipient_email}: "
            f"repair={repair.get('repair_id')} final_cost={repair.get('final_cost')}"
        )
