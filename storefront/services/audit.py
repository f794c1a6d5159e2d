import csv
import io
import json
import logging
import math
from typing import Any, Dict, Optional

from storefront.core.unit_of_work import UnitOfWork
from storefront.models.database import AuditLogEntry
from storefront.repositories.audit import AuditFilters

logger = logging.getLogger(__name__)

CSV_COLUMNS = ["id", "timestamp", "actor_id", "action", "entity_type", "entity_id", "details", "ip_address"]


class AuditRecorder:
    """
    Append-only audit trail.

    Entries are written in their own short transaction after the business
    operation has committed. A failed append is logged and swallowed: the
    audit trail is advisory and must never undo or fail the operation it
    describes.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def record(
        self,
        actor_id: Optional[str],
        action: str,
        entity_type: str,
        entity_id: Optional[object] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        try:
            with self.uow.transaction() as tx:
                tx.audit_log.append(
                    AuditLogEntry(
                        actor_id=actor_id,
                        action=action,
                        entity_type=entity_type,
                        entity_id=str(entity_id) if entity_id is not None else None,
                        details=json.dumps(details or {}, default=str),
                        ip_address=ip_address,
                        user_agent=user_agent,
                    )
                )
            return True
        except Exception:
            logger.exception(f"Failed to append audit entry {action} {entity_type} {entity_id}")
            return False

    def query(self, filters: AuditFilters, page: int = 1, limit: int = 100) -> dict:
        page = max(page, 1)
        limit = max(limit, 1)
        with self.uow.transaction() as tx:
            entries, total = tx.audit_log.search(filters, offset=(page - 1) * limit, limit=limit)
            logs = [self._to_dict(e) for e in entries]
        total_pages = math.ceil(total / limit) if total else 0
        return {
            "logs": logs,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": total_pages,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
        }

    def export_csv(self, filters: AuditFilters) -> str:
        with self.uow.transaction() as tx:
            entries, _ = tx.audit_log.search(filters)
            rows = [self._to_dict(e) for e in entries]

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            row["details"] = json.dumps(row["details"])
            writer.writerow(row)
        return buffer.getvalue()

    @staticmethod
    def _to_dict(entry: AuditLogEntry) -> dict:
        try:
            details = json.loads(entry.details or "{}")
        except ValueError:
            details = {"raw": entry.details}
        return {
            "id": entry.id,
            "actor_id": entry.actor_id,
            "action": entry.action,
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "details": details,
            "ip_address": entry.ip_address,
            "user_agent": entry.user_agent,
            "timestamp": entry.timestamp.isoformat() if entry.timestamp else None,
        }
