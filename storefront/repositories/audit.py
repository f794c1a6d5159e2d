from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storefront.models.database import AuditLogEntry


@dataclass
class AuditFilters:
    actor_id: Optional[str] = None
    action: Optional[str] = None
    entity_type: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def as_dict(self) -> dict:
        return {
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
        }


class AuditLogRepository:
    """Append and read only; entries are never updated or deleted."""

    def __init__(self, session: Session):
        self.session = session

    def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        self.session.add(entry)
        return entry

    def _where(self, filters: AuditFilters):
        clauses = []
        if filters.actor_id:
            clauses.append(AuditLogEntry.actor_id == filters.actor_id)
        if filters.action:
            clauses.append(AuditLogEntry.action == filters.action)
        if filters.entity_type:
            clauses.append(AuditLogEntry.entity_type == filters.entity_type)
        if filters.date_from:
            clauses.append(AuditLogEntry.timestamp >= filters.date_from)
        if filters.date_to:
            clauses.append(AuditLogEntry.timestamp <= filters.date_to)
        return clauses

    def search(
        self, filters: AuditFilters, offset: int = 0, limit: Optional[int] = None
    ) -> Tuple[List[AuditLogEntry], int]:
        clauses = self._where(filters)
        total = self.session.execute(
            select(func.count(AuditLogEntry.id)).where(*clauses)
        ).scalar_one()
        query = (
            select(AuditLogEntry)
            .where(*clauses)
            .order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars()), total
