from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from storefront.core.errors import NotFoundError
from storefront.models.database import Repair, RepairPart, RepairSpecialist
from storefront.models.enums import RepairStatus


class RepairRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, repair_id: int) -> Repair:
        repair = self.session.execute(
            select(Repair)
            .options(selectinload(Repair.parts), selectinload(Repair.specialists))
            .where(Repair.id == repair_id)
        ).scalar_one_or_none()
        if repair is None:
            raise NotFoundError("Repair", repair_id)
        return repair

    def add(self, repair: Repair) -> Repair:
        self.session.add(repair)
        self.session.flush()
        return repair

    def add_part(self, repair: Repair, part: RepairPart) -> RepairPart:
        repair.parts.append(part)
        return part

    def list_for_owner(self, owner_id: str, page: int, limit: int) -> Tuple[List[Repair], int]:
        return self._page(select(Repair).where(Repair.owner_id == owner_id), page, limit)

    def list_queue(
        self,
        page: int,
        limit: int,
        specialist_id: Optional[str] = None,
        status: Optional[RepairStatus] = None,
    ) -> Tuple[List[Repair], int]:
        """Staff work queue; pass specialist_id to keep only that specialist's assignments"""
        query = select(Repair)
        if specialist_id is not None:
            query = query.where(
                Repair.specialists.any(RepairSpecialist.specialist_id == specialist_id)
            )
        if status is not None:
            query = query.where(Repair.status == status)
        return self._page(query, page, limit)

    def _page(self, query, page: int, limit: int) -> Tuple[List[Repair], int]:
        total = self.session.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()
        repairs = self.session.execute(
            query.options(selectinload(Repair.parts), selectinload(Repair.specialists))
            .order_by(Repair.created_at.desc(), Repair.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        return list(repairs), total
