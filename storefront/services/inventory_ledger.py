import logging
from typing import Optional

from storefront.core.errors import InsufficientStockError, NotFoundError, ValidationError
from storefront.core.unit_of_work import TransactionScope
from storefront.models.database import StockReservation

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Atomic stock reservation for components.

    Always runs inside the caller's transaction: if the caller fails later,
    the reservation rolls back with it. The decrement is a single
    conditional UPDATE, so the store serialises concurrent reservations on
    the component row and stock can never go negative.
    """

    def reserve(
        self,
        tx: TransactionScope,
        component_id: int,
        quantity: int,
        *,
        order_id: Optional[int] = None,
        repair_id: Optional[int] = None,
    ) -> int:
        """Take quantity units of a component and return the new stock level."""
        if quantity <= 0:
            raise ValidationError(
                f"Reservation quantity must be positive, got {quantity}",
                {"quantity": "must be greater than 0"},
            )

        if not tx.components.decrement_stock(component_id, quantity):
            available = tx.components.current_stock(component_id)
            if available is None:
                raise NotFoundError("Component", component_id)
            logger.warning(
                f"Reservation rejected for component {component_id}: "
                f"requested {quantity}, available {available}"
            )
            raise InsufficientStockError(component_id, quantity, available)

        tx.reservations.add(
            StockReservation(
                component_id=component_id,
                quantity=quantity,
                order_id=order_id,
                repair_id=repair_id,
            )
        )
        new_stock = tx.components.current_stock(component_id)
        logger.info(f"Reserved {quantity} of component {component_id}: new stock = {new_stock}")
        return new_stock

    def release(self, tx: TransactionScope, component_id: int, quantity: int) -> int:
        """Return quantity units to stock and return the new stock level."""
        if quantity <= 0:
            raise ValidationError(
                f"Release quantity must be positive, got {quantity}",
                {"quantity": "must be greater than 0"},
            )
        if not tx.components.increment_stock(component_id, quantity):
            raise NotFoundError("Component", component_id)
        new_stock = tx.components.current_stock(component_id)
        logger.info(f"Released {quantity} of component {component_id}: new stock = {new_stock}")
        return new_stock

    def release_order(self, tx: TransactionScope, order_id: int) -> int:
        """Return everything an order reserved; returns the number of units restocked."""
        restocked = 0
        for reservation in tx.reservations.open_for_order(order_id):
            self.release(tx, reservation.component_id, reservation.quantity)
            reservation.released = True
            restocked += reservation.quantity
        return restocked
