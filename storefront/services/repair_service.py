import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from storefront.core.errors import (
    ForbiddenError,
    InvalidStateError,
    InvalidTransitionError,
    ValidationError,
)
from storefront.core.security import Identity
from storefront.core.unit_of_work import TransactionScope, UnitOfWork
from storefront.models.database import Repair, RepairPart, RepairSpecialist, utcnow
from storefront.models.enums import RepairStatus
from storefront.models.schemas import RepairCreate, RepairPartCreate, RepairUpdate
from storefront.services.audit import AuditRecorder
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.pricing import PricingAggregator, to_money
from storefront.services.side_effects import SideEffectDispatcher

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (RepairStatus.COMPLETED, RepairStatus.CANCELLED)

# COMPLETED is reachable only through complete(), which sets final_cost.
REPAIR_TRANSITIONS: Dict[RepairStatus, Tuple[RepairStatus, ...]] = {
    RepairStatus.PENDING: (RepairStatus.DIAGNOSING, RepairStatus.CANCELLED),
    RepairStatus.DIAGNOSING: (RepairStatus.WAITING_FOR_PARTS, RepairStatus.CANCELLED),
    RepairStatus.WAITING_FOR_PARTS: (RepairStatus.IN_PROGRESS, RepairStatus.CANCELLED),
    RepairStatus.IN_PROGRESS: (RepairStatus.COMPLETED, RepairStatus.CANCELLED),
    RepairStatus.COMPLETED: (),
    RepairStatus.CANCELLED: (),
}


class RepairTicketManager:
    """
    Repair tickets: status workflow, parts consumption and cost tracking.

    Adding parts reserves stock through the InventoryLedger in the same
    transaction that inserts the RepairPart rows and bumps estimated_cost;
    one short part aborts the whole batch. Specialists may only touch
    repairs they are assigned to.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        ledger: InventoryLedger,
        pricing: PricingAggregator,
        audit: AuditRecorder,
        notifier,
        dispatcher: SideEffectDispatcher,
    ):
        self.uow = uow
        self.ledger = ledger
        self.pricing = pricing
        self.audit = audit
        self.notifier = notifier
        self.dispatcher = dispatcher

    async def create(self, identity: Identity, repair_data: RepairCreate) -> Repair:
        with self.uow.transaction() as tx:
            repair = tx.repairs.add(
                Repair(
                    title=repair_data.title,
                    description=repair_data.description,
                    priority=repair_data.priority,
                    status=RepairStatus.PENDING,
                    estimated_cost=Decimal("0.00"),
                    owner_id=identity.id,
                    contact_email=repair_data.contact_email or identity.email,
                    parts=[],
                    specialists=[],
                )
            )
        logger.info(f"Repair {repair.id} requested by {identity.id}")
        self.audit.record(identity.id, "CREATE", "REPAIR", repair.id, {"title": repair.title})
        return repair

    def get(self, repair_id: int, actor: Identity) -> Repair:
        with self.uow.transaction() as tx:
            repair = tx.repairs.get(repair_id)
        if not actor.is_staff and repair.owner_id != actor.id:
            raise ForbiddenError("You do not have access to this repair")
        if actor.is_staff:
            self._ensure_assigned(repair, actor)
        return repair

    def list_own(self, identity: Identity, page: int, limit: int) -> Tuple[List[Repair], int]:
        with self.uow.transaction() as tx:
            return tx.repairs.list_for_owner(identity.id, page, limit)

    def list_queue(
        self, actor: Identity, page: int, limit: int, status: Optional[RepairStatus] = None
    ) -> Tuple[List[Repair], int]:
        """Admins see every repair; specialists only the ones assigned to them."""
        if not actor.is_staff:
            raise ForbiddenError()
        specialist_id = None if actor.is_admin else actor.id
        with self.uow.transaction() as tx:
            return tx.repairs.list_queue(page, limit, specialist_id=specialist_id, status=status)

    async def transition(self, repair_id: int, new_status: RepairStatus, actor: Identity) -> Repair:
        with self.uow.transaction() as tx:
            repair = self._load_for_staff(tx, repair_id, actor)
            previous = repair.status
            self._apply_transition(repair, new_status)
            tx.flush("Repair", repair_id)
        logger.info(f"Repair {repair_id}: {previous.value} -> {new_status.value}")
        self.audit.record(
            actor.id,
            "UPDATE_STATUS",
            "REPAIR",
            repair_id,
            {"previous_status": previous.value, "new_status": new_status.value},
        )
        return repair

    async def add_parts(self, repair_id: int, parts: List[RepairPartCreate], actor: Identity) -> Repair:
        if not parts:
            raise ValidationError("At least one part is required", {"parts": "must not be empty"})

        with self.uow.transaction() as tx:
            repair = self._load_for_staff(tx, repair_id, actor)
            if repair.status in TERMINAL_STATUSES:
                raise InvalidStateError(
                    f"Cannot add parts to a repair that is already {repair.status.value.lower()}"
                )
            previous = repair.status
            added_cost = Decimal("0.00")
            wanted: Dict[int, int] = {}
            for part in parts:
                component = tx.components.get(part.component_id)
                price = (
                    to_money(part.price)
                    if part.price is not None
                    else self.pricing.effective_price(component)
                )
                tx.repairs.add_part(
                    repair, RepairPart(component_id=component.id, quantity=part.quantity, price=price)
                )
                wanted[component.id] = wanted.get(component.id, 0) + part.quantity
                added_cost += price * part.quantity

            # Same lock order as order creation: one reservation per component, by id.
            for component_id in sorted(wanted):
                self.ledger.reserve(tx, component_id, wanted[component_id], repair_id=repair.id)

            repair.estimated_cost = to_money((repair.estimated_cost or 0) + added_cost)
            if repair.status == RepairStatus.PENDING:
                repair.status = RepairStatus.IN_PROGRESS
            tx.flush("Repair", repair_id)

        logger.info(f"Added {len(parts)} part(s) to repair {repair_id}, cost +{added_cost}")
        self.audit.record(
            actor.id,
            "ADD_PARTS",
            "REPAIR",
            repair_id,
            {
                "parts": [{"component_id": p.component_id, "quantity": p.quantity} for p in parts],
                "added_cost": added_cost,
                "previous_status": previous.value,
                "new_status": repair.status.value,
            },
        )
        return repair

    async def complete(
        self, repair_id: int, final_cost, notes: Optional[str], actor: Identity
    ) -> Repair:
        with self.uow.transaction() as tx:
            repair = self._load_for_staff(tx, repair_id, actor)
            previous = repair.status
            self._apply_completion(repair, final_cost, notes)
            tx.flush("Repair", repair_id)

        self._after_completion(repair, previous, actor)
        return repair

    async def assign_specialist(
        self, repair_id: int, specialist_id: str, actor: Identity, notes: Optional[str] = None
    ) -> Repair:
        if not actor.is_admin:
            raise ForbiddenError("Admin access required")
        with self.uow.transaction() as tx:
            repair = tx.repairs.get(repair_id)
            if specialist_id in repair.specialist_ids:
                return repair
            repair.specialists.append(RepairSpecialist(specialist_id=specialist_id, notes=notes))
            tx.flush("Repair", repair_id)
        logger.info(f"Specialist {specialist_id} assigned to repair {repair_id}")
        self.audit.record(
            actor.id, "ASSIGN_SPECIALIST", "REPAIR", repair_id, {"specialist_id": specialist_id}
        )
        return repair

    async def update(self, repair_id: int, changes: RepairUpdate, actor: Identity) -> Repair:
        """Partial staff edit; a status in the payload goes through the transition table."""
        with self.uow.transaction() as tx:
            repair = self._load_for_staff(tx, repair_id, actor)
            previous = repair.status
            changed = []

            if changes.priority is not None:
                repair.priority = changes.priority
                changed.append("priority")
            if changes.estimated_cost is not None:
                repair.estimated_cost = to_money(changes.estimated_cost)
                changed.append("estimated_cost")
            if changes.diagnostic_notes is not None:
                repair.diagnostic_notes = changes.diagnostic_notes
                changed.append("diagnostic_notes")

            if changes.status == RepairStatus.COMPLETED:
                if changes.final_cost is None:
                    raise ValidationError(
                        "final_cost is required to complete a repair",
                        {"final_cost": "required when status is COMPLETED"},
                    )
                self._apply_completion(repair, changes.final_cost, None)
                changed.append("status")
            elif changes.status is not None:
                self._apply_transition(repair, changes.status)
                changed.append("status")
                if changes.final_cost is not None:
                    raise ValidationError(
                        "final_cost can only be set when completing a repair",
                        {"final_cost": "only allowed with status COMPLETED"},
                    )
            elif changes.final_cost is not None:
                raise ValidationError(
                    "final_cost can only be set when completing a repair",
                    {"final_cost": "only allowed with status COMPLETED"},
                )

            tx.flush("Repair", repair_id)

        if repair.status == RepairStatus.COMPLETED and previous != RepairStatus.COMPLETED:
            self._after_completion(repair, previous, actor)
        else:
            self.audit.record(
                actor.id,
                "UPDATE",
                "REPAIR",
                repair_id,
                {"fields": changed, "previous_status": previous.value, "new_status": repair.status.value},
            )
        return repair

    def _load_for_staff(self, tx: TransactionScope, repair_id: int, actor: Identity) -> Repair:
        if not actor.is_staff:
            raise ForbiddenError()
        repair = tx.repairs.get(repair_id)
        self._ensure_assigned(repair, actor)
        return repair

    @staticmethod
    def _ensure_assigned(repair: Repair, actor: Identity) -> None:
        if not actor.is_admin and actor.id not in repair.specialist_ids:
            raise ForbiddenError("You are not assigned to this repair")

    @staticmethod
    def _apply_transition(repair: Repair, new_status: RepairStatus) -> None:
        if new_status == RepairStatus.COMPLETED or new_status not in REPAIR_TRANSITIONS[repair.status]:
            raise InvalidTransitionError("repair", repair.status, new_status)
        repair.status = new_status

    @staticmethod
    def _apply_completion(repair: Repair, final_cost, notes: Optional[str]) -> None:
        if repair.status in TERMINAL_STATUSES:
            raise InvalidStateError(f"Repair is already {repair.status.value.lower()}")
        cost = to_money(final_cost)
        if cost < 0:
            raise ValidationError("final_cost must not be negative", {"final_cost": "must be >= 0"})
        repair.final_cost = cost
        repair.completion_date = utcnow()
        repair.status = RepairStatus.COMPLETED
        if notes:
            completion = f"Completion Notes:\n{notes}"
            repair.diagnostic_notes = (
                f"{repair.diagnostic_notes}\n\n{completion}" if repair.diagnostic_notes else completion
            )

    def _after_completion(self, repair: Repair, previous: RepairStatus, actor: Identity) -> None:
        logger.info(f"Repair {repair.id} completed with final cost {repair.final_cost}")
        self.audit.record(
            actor.id,
            "COMPLETE",
            "REPAIR",
            repair.id,
            {"previous_status": previous.value, "final_cost": repair.final_cost},
        )
        if not repair.contact_email:
            logger.warning(f"Repair {repair.id} has no contact email, skipping completion email")
            return
        self.dispatcher.dispatch(
            f"repair completion email for repair {repair.id}",
            self.notifier.send_repair_completion_email,
            repair.contact_email,
            {
                "repair_id": repair.id,
                "description": repair.description or repair.title,
                "final_cost": repair.final_cost,
            },
        )
