from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from storefront.api.dependencies import client_info, get_container, require_admin
from storefront.core.security import Identity
from storefront.models.database import utcnow
from storefront.repositories.audit import AuditFilters
from storefront.services.container import ServiceContainer

router = APIRouter()


def audit_filters(
    actor_id: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> AuditFilters:
    return AuditFilters(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        date_from=date_from,
        date_to=date_to,
    )


@router.get("/")
async def get_audit_logs(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    filters: AuditFilters = Depends(audit_filters),
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """Filtered, paginated audit trail; reading it is itself audited"""
    limit = min(limit, container.settings.audit_page_limit)
    result = container.audit.query(filters, page, limit)
    container.audit.record(
        admin.id,
        "VIEW",
        "AUDIT_LOG",
        None,
        {"filters": filters.as_dict(), "page": page, "limit": limit},
        **client_info(request),
    )
    return result


@router.get("/export")
async def export_audit_logs(
    request: Request,
    filters: AuditFilters = Depends(audit_filters),
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    content = container.audit.export_csv(filters)
    container.audit.record(
        admin.id, "EXPORT", "AUDIT_LOG", None, {"filters": filters.as_dict()}, **client_info(request)
    )
    filename = f"audit-log-{utcnow().strftime('%Y%m%d%H%M%S')}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
