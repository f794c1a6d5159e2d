from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.models.database import StockReservation


class StockReservationRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, reservation: StockReservation) -> StockReservation:
        self.session.add(reservation)
        return reservation

    def open_for_order(self, order_id: int) -> List[StockReservation]:
        rows = self.session.execute(
            select(StockReservation)
            .where(StockReservation.order_id == order_id, StockReservation.released.is_(False))
            .order_by(StockReservation.component_id)
        ).scalars()
        return list(rows)
