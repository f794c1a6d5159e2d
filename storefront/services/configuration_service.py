import logging
from typing import Dict, List, Tuple

from storefront.core.errors import (
    ForbiddenError,
    InvalidStateError,
    InvalidTransitionError,
    ValidationError,
)
from storefront.core.security import Identity
from storefront.core.unit_of_work import TransactionScope, UnitOfWork
from storefront.models.database import Configuration, ConfigurationItem
from storefront.models.enums import ConfigurationStatus
from storefront.models.schemas import ConfigurationComponent, ConfigurationCreate
from storefront.services.audit import AuditRecorder
from storefront.services.pricing import PricingAggregator

logger = logging.getLogger(__name__)

CONFIGURATION_TRANSITIONS: Dict[ConfigurationStatus, Tuple[ConfigurationStatus, ...]] = {
    ConfigurationStatus.DRAFT: (ConfigurationStatus.SUBMITTED,),
    ConfigurationStatus.SUBMITTED: (ConfigurationStatus.APPROVED, ConfigurationStatus.REJECTED),
    ConfigurationStatus.APPROVED: (),
    ConfigurationStatus.REJECTED: (ConfigurationStatus.DRAFT,),
}

# Decisions on a submitted configuration belong to staff.
STAFF_ONLY_TARGETS = (ConfigurationStatus.APPROVED, ConfigurationStatus.REJECTED)

OWNER_EDITABLE = (ConfigurationStatus.DRAFT, ConfigurationStatus.REJECTED)


class ConfigurationService:
    """Customer and staff PC configurations; total_price follows the component list."""

    def __init__(self, uow: UnitOfWork, pricing: PricingAggregator, audit: AuditRecorder):
        self.uow = uow
        self.pricing = pricing
        self.audit = audit

    def create(self, identity: Identity, data: ConfigurationCreate) -> Configuration:
        with self.uow.transaction() as tx:
            configuration = Configuration(
                name=data.name,
                description=data.description,
                owner_id=identity.id,
                status=ConfigurationStatus.DRAFT,
                items=[],
            )
            self._set_components(tx, configuration, data.components)
            tx.configurations.add(configuration)
        logger.info(f"Configuration {configuration.id} created by {identity.id}: {configuration.total_price}")
        self.audit.record(
            identity.id,
            "CREATE",
            "CONFIGURATION",
            configuration.id,
            {"total_price": configuration.total_price},
        )
        return configuration

    def get(self, configuration_id: int, identity: Identity) -> Configuration:
        with self.uow.transaction() as tx:
            configuration = tx.configurations.get(configuration_id)
        self._ensure_visible(configuration, identity)
        return configuration

    def replace_components(
        self, configuration_id: int, components: List[ConfigurationComponent], identity: Identity
    ) -> Configuration:
        with self.uow.transaction() as tx:
            configuration = tx.configurations.get(configuration_id)
            if not identity.is_staff:
                if configuration.owner_id != identity.id:
                    raise ForbiddenError("You do not own this configuration")
                if configuration.status not in OWNER_EDITABLE:
                    raise InvalidStateError(
                        f"Configuration is {configuration.status.value} and can no longer be edited"
                    )
            previous_total = configuration.total_price
            configuration.items.clear()
            tx.session.flush()
            self._set_components(tx, configuration, components)
        self.audit.record(
            identity.id,
            "UPDATE_COMPONENTS",
            "CONFIGURATION",
            configuration_id,
            {"previous_total": previous_total, "new_total": configuration.total_price},
        )
        return configuration

    def change_status(
        self, configuration_id: int, new_status: ConfigurationStatus, identity: Identity
    ) -> Configuration:
        with self.uow.transaction() as tx:
            configuration = tx.configurations.get(configuration_id)
            if not identity.is_staff:
                if configuration.owner_id != identity.id or new_status in STAFF_ONLY_TARGETS:
                    raise ForbiddenError()
            previous = configuration.status
            if new_status not in CONFIGURATION_TRANSITIONS[previous]:
                raise InvalidTransitionError("configuration", previous, new_status)
            configuration.status = new_status
        logger.info(f"Configuration {configuration_id}: {previous.value} -> {new_status.value}")
        self.audit.record(
            identity.id,
            "UPDATE_STATUS",
            "CONFIGURATION",
            configuration_id,
            {"previous_status": previous.value, "new_status": new_status.value},
        )
        return configuration

    def publish(self, configuration_id: int, identity: Identity) -> Configuration:
        """List an approved configuration as a public ready-made template"""
        if not identity.is_staff:
            raise ForbiddenError()
        with self.uow.transaction() as tx:
            configuration = tx.configurations.get(configuration_id)
            if configuration.is_template and configuration.is_public:
                raise InvalidStateError("Configuration is already published")
            if configuration.status != ConfigurationStatus.APPROVED:
                raise InvalidStateError("Only approved configurations can be published")
            configuration.is_template = True
            configuration.is_public = True
        self.audit.record(identity.id, "PUBLISH", "CONFIGURATION", configuration_id)
        return configuration

    def recompute_for_component(self, tx: TransactionScope, component_id: int) -> int:
        """Refresh total_price of every configuration using a component; returns how many changed."""
        changed = 0
        for configuration in tx.configurations.containing_component(component_id):
            components = tx.components.get_many(item.component_id for item in configuration.items)
            total = self.pricing.compute_subtotal(
                (self.pricing.effective_price(components[item.component_id]), item.quantity)
                for item in configuration.items
            )
            if total != configuration.total_price:
                configuration.total_price = total
                changed += 1
        return changed

    def _set_components(
        self, tx: TransactionScope, configuration: Configuration, components: List[ConfigurationComponent]
    ) -> None:
        catalog = tx.components.get_many(c.component_id for c in components)
        lines = []
        for position, entry in enumerate(components):
            component = catalog.get(entry.component_id)
            if component is None:
                raise ValidationError(
                    f"Component {entry.component_id} not found",
                    {"component_id": "unknown component"},
                )
            configuration.items.append(
                ConfigurationItem(
                    component_id=component.id, quantity=entry.quantity, position=position
                )
            )
            lines.append((self.pricing.effective_price(component), entry.quantity))
        configuration.total_price = self.pricing.compute_subtotal(lines)

    @staticmethod
    def _ensure_visible(configuration: Configuration, identity: Identity) -> None:
        if configuration.is_public or identity.is_staff or configuration.owner_id == identity.id:
            return
        raise ForbiddenError("You do not have access to this configuration")
