import logging
from dataclasses import dataclass
from typing import Optional

from storefront.core.config import Settings
from storefront.core.database import Database
from storefront.core.security import AuthorizationGuard, StaticTokenGuard
from storefront.core.unit_of_work import UnitOfWork
from storefront.services.audit import AuditRecorder
from storefront.services.configuration_service import ConfigurationService
from storefront.services.integrations import (
    HttpPaymentGateway,
    LoggingNotifier,
    Notifier,
    PaymentGateway,
)
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.order_service import OrderCreator, OrderStatusManager
from storefront.services.pricing import PricingAggregator
from storefront.services.repair_service import RepairTicketManager
from storefront.services.side_effects import SideEffectDispatcher

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything a request handler needs, wired once per process"""

    settings: Settings
    database: Database
    uow: UnitOfWork
    guard: AuthorizationGuard
    dispatcher: SideEffectDispatcher
    pricing: PricingAggregator
    ledger: InventoryLedger
    audit: AuditRecorder
    order_creator: OrderCreator
    order_status: OrderStatusManager
    repairs: RepairTicketManager
    configurations: ConfigurationService

    @classmethod
    def build(
        cls,
        settings: Settings,
        database: Database,
        guard: Optional[AuthorizationGuard] = None,
        notifier: Optional[Notifier] = None,
        payment_gateway: Optional[PaymentGateway] = None,
    ) -> "ServiceContainer":
        uow = UnitOfWork(database.session_factory)
        guard = guard or StaticTokenGuard.from_spec(settings.api_tokens)
        notifier = notifier or LoggingNotifier()
        if payment_gateway is None and settings.payment_gateway_url:
            payment_gateway = HttpPaymentGateway(
                settings.payment_gateway_url,
                api_key=settings.payment_gateway_api_key,
                currency=settings.payment_currency,
                timeout_seconds=settings.payment_timeout_seconds,
            )
        if payment_gateway is None:
            logger.warning("No payment gateway configured; orders will not open payment sessions")

        dispatcher = SideEffectDispatcher()
        pricing = PricingAggregator()
        ledger = InventoryLedger()
        audit = AuditRecorder(uow)
        return cls(
            settings=settings,
            database=database,
            uow=uow,
            guard=guard,
            dispatcher=dispatcher,
            pricing=pricing,
            ledger=ledger,
            audit=audit,
            order_creator=OrderCreator(uow, pricing, ledger, audit, settings, payment_gateway),
            order_status=OrderStatusManager(uow, ledger, audit, notifier, dispatcher),
            repairs=RepairTicketManager(uow, ledger, pricing, audit, notifier, dispatcher),
            configurations=ConfigurationService(uow, pricing, audit),
        )
