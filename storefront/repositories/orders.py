from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from storefront.core.errors import NotFoundError
from storefront.models.database import Order


class OrderRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, order_id: int) -> Order:
        order = self.session.execute(
            select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
        ).scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def add(self, order: Order) -> Order:
        self.session.add(order)
        self.session.flush()
        return order

    def list_for_user(self, user_id: str, page: int, limit: int) -> Tuple[List[Order], int]:
        total = self.session.execute(
            select(func.count(Order.id)).where(Order.user_id == user_id)
        ).scalar_one()
        orders = self.session.execute(
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        return list(orders), total

    def find_by_payment_session(self, session_id: str) -> Optional[Order]:
        return self.session.execute(
            select(Order).where(Order.payment_session_id == session_id)
        ).scalar_one_or_none()
