from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.core.config import Settings
from storefront.core.database import Database
from storefront.core.errors import PaymentGatewayError
from storefront.core.security import Identity
from storefront.core.unit_of_work import UnitOfWork
from storefront.models.database import Component, PromoCode, utcnow
from storefront.models.enums import ProductType, Role
from storefront.models.schemas import OrderCreate
from storefront.services.audit import AuditRecorder
from storefront.services.configuration_service import ConfigurationService
from storefront.services.integrations import PaymentSession
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.order_service import OrderCreator, OrderStatusManager
from storefront.services.pricing import PricingAggregator
from storefront.services.repair_service import RepairTicketManager
from storefront.services.side_effects import SideEffectDispatcher


class RecordingNotifier:
    """Collects outgoing messages; set fail to make every send raise"""

    def __init__(self):
        self.fail = False
        self.receipts = []
        self.repair_emails = []

    async def send_order_approval_receipt(self, order_id, locale):
        if self.fail:
            raise RuntimeError("SMTP server unavailable")
        self.receipts.append((order_id, locale))

    async def send_repair_completion_email(self, recipient_email, repair):
        if self.fail:
            raise RuntimeError("SMTP server unavailable")
        self.repair_emails.append((recipient_email, repair))


class BrokenSessionFactory:
    """Session factory for a database that is down"""

    def __call__(self):
        raise RuntimeError("database unavailable")


class FakePaymentGateway:
    def __init__(self):
        self.fail = False
        self.calls = []

    async def create_session(self, line_items, discounts, success_url, cancel_url, idempotency_key):
        self.calls.append(
            {
                "line_items": line_items,
                "discounts": discounts,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "idempotency_key": idempotency_key,
            }
        )
        if self.fail:
            raise PaymentGatewayError("Payment gateway is down")
        return PaymentSession(
            session_id=f"cs_{idempotency_key}", url=f"https://pay.example.com/{idempotency_key}"
        )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'storefront_test.db'}",
        public_base_url="https://shop.example.com",
        payment_timeout_seconds=2.0,
    )


@pytest.fixture
def database(settings):
    db = Database(settings.database_url)
    db.create_all()
    yield db
    db.drop_all()
    db.close()


@pytest.fixture
def uow(database):
    return UnitOfWork(database.session_factory)


@pytest.fixture
def pricing():
    return PricingAggregator()


@pytest.fixture
def ledger():
    return InventoryLedger()


@pytest.fixture
def audit(uow):
    return AuditRecorder(uow)


@pytest.fixture
def broken_audit():
    return AuditRecorder(UnitOfWork(BrokenSessionFactory()))


@pytest.fixture
def dispatcher():
    return SideEffectDispatcher()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def payment_gateway():
    return FakePaymentGateway()


@pytest.fixture
def order_creator(uow, pricing, ledger, audit, settings, payment_gateway):
    return OrderCreator(uow, pricing, ledger, audit, settings, payment_gateway)


@pytest.fixture
def order_status(uow, ledger, audit, notifier, dispatcher):
    return OrderStatusManager(uow, ledger, audit, notifier, dispatcher)


@pytest.fixture
def repair_manager(uow, ledger, pricing, audit, notifier, dispatcher):
    return RepairTicketManager(uow, ledger, pricing, audit, notifier, dispatcher)


@pytest.fixture
def configuration_service(uow, pricing, audit):
    return ConfigurationService(uow, pricing, audit)


@pytest.fixture
def admin():
    return Identity(id="admin-1", role=Role.ADMIN, email="admin@example.com")


@pytest.fixture
def specialist():
    return Identity(id="spec-1", role=Role.SPECIALIST, email="spec@example.com")


@pytest.fixture
def customer():
    return Identity(id="user-1", role=Role.CUSTOMER, email="customer@example.com")


@pytest.fixture
def other_customer():
    return Identity(id="user-2", role=Role.CUSTOMER, email="other@example.com")


@pytest.fixture
def sample_components(uow):
    """Catalog with limited stock, keyed by SKU"""
    with uow.transaction() as tx:
        components = [
            Component(sku="CPU-001", name="Ryzen 7 7800X3D", price=Decimal("100.00"), stock=10),
            Component(sku="GPU-001", name="GeForce RTX 4070", price=Decimal("50.00"), stock=5),
            Component(
                sku="KB-001",
                name="Mechanical Keyboard",
                product_type=ProductType.PERIPHERAL,
                price=Decimal("25.00"),
                stock=3,
            ),
            Component(
                sku="RAM-001",
                name="DDR5 32GB",
                price=Decimal("40.00"),
                discount_price=Decimal("30.00"),
                discount_expires_at=utcnow() + timedelta(days=7),
                stock=20,
            ),
            Component(sku="PSU-001", name="750W PSU", price=Decimal("25.00"), stock=1),
        ]
        for component in components:
            tx.components.add(component)
    return {c.sku: c for c in components}


@pytest.fixture
def promo_codes(uow):
    now = utcnow()
    with uow.transaction() as tx:
        promos = [
            PromoCode(code="SAVE10", discount_percentage=10, expires_at=now + timedelta(days=30)),
            PromoCode(
                code="CAPPED",
                discount_percentage=50,
                max_discount_amount=Decimal("15.00"),
                expires_at=now + timedelta(days=30),
            ),
            PromoCode(
                code="ONCE", discount_percentage=10, max_usage=1, expires_at=now + timedelta(days=30)
            ),
            PromoCode(
                code="USEDUP",
                discount_percentage=10,
                max_usage=3,
                usage_count=3,
                expires_at=now + timedelta(days=30),
            ),
            PromoCode(code="OLD", discount_percentage=10, expires_at=now - timedelta(days=1)),
            PromoCode(
                code="BIGSPEND",
                discount_percentage=10,
                min_order_value=Decimal("1000.00"),
                expires_at=now + timedelta(days=30),
            ),
            PromoCode(
                code="PAUSED",
                discount_percentage=10,
                is_active=False,
                expires_at=now + timedelta(days=30),
            ),
        ]
        for promo in promos:
            tx.promo_codes.add(promo)
    return {p.code: p for p in promos}


@pytest.fixture
def shipping():
    return {
        "full_name": "Janis Berzins",
        "email": "janis@example.com",
        "phone": "+371 20000000",
        "address": "Brivibas iela 1",
        "city": "Riga",
        "postal_code": "LV-1010",
        "country": "Latvia",
        "method": "standard",
        "cost": 10.00,
    }


@pytest.fixture
def make_order(shipping):
    """Build an OrderCreate from (component, quantity) pairs"""

    def _make(*lines, promo_code=None, proceed_without_invalid_promo=False, locale=None):
        return OrderCreate(
            items=[
                {"product_id": c.id, "product_type": c.product_type, "quantity": q} for c, q in lines
            ],
            shipping=shipping,
            promo_code=promo_code,
            proceed_without_invalid_promo=proceed_without_invalid_promo,
            locale=locale,
        )

    return _make


@pytest.fixture
def stock_of(uow):
    def _stock(component_id):
        with uow.transaction() as tx:
            return tx.components.current_stock(component_id)

    return _stock
