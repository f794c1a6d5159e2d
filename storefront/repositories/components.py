from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.core.errors import NotFoundError
from storefront.models.database import Component, utcnow


class ComponentRepository:
    def __init__(self, session: Session):
        self.session = session

    def find(self, component_id: int) -> Optional[Component]:
        return self.session.get(Component, component_id)

    def get(self, component_id: int) -> Component:
        component = self.find(component_id)
        if component is None:
            raise NotFoundError("Component", component_id)
        return component

    def get_many(self, component_ids: Iterable[int]) -> Dict[int, Component]:
        ids = set(component_ids)
        if not ids:
            return {}
        rows = self.session.execute(select(Component).where(Component.id.in_(ids))).scalars()
        return {c.id: c for c in rows}

    def list(self) -> List[Component]:
        return list(self.session.execute(select(Component).order_by(Component.id)).scalars())

    def add(self, component: Component) -> Component:
        self.session.add(component)
        self.session.flush()
        return component

    def current_stock(self, component_id: int) -> Optional[int]:
        return self.session.execute(
            select(Component.stock).where(Component.id == component_id)
        ).scalar_one_or_none()

    def decrement_stock(self, component_id: int, quantity: int) -> bool:
        """Conditionally take stock; False means the row is missing or short."""
        result = self.session.execute(
            update(Component)
            .where(Component.id == component_id, Component.stock >= quantity)
            .values(
                stock=Component.stock - quantity,
                version=Component.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def increment_stock(self, component_id: int, quantity: int) -> bool:
        result = self.session.execute(
            update(Component)
            .where(Component.id == component_id)
            .values(
                stock=Component.stock + quantity,
                version=Component.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
