from typing import Optional

from fastapi import APIRouter, Depends, Query

from storefront.api.dependencies import get_container, get_identity, require_admin, require_staff
from storefront.core.security import Identity
from storefront.models.enums import RepairStatus
from storefront.models.schemas import (
    Pagination,
    Repair,
    RepairComplete,
    RepairCreate,
    RepairList,
    RepairPartsAdd,
    RepairUpdate,
    SpecialistAssign,
)
from storefront.services.container import ServiceContainer

router = APIRouter()


@router.post("/", response_model=Repair, status_code=201)
async def create_repair(
    repair_data: RepairCreate,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
):
    """Open a repair request for the calling user"""
    repair = await container.repairs.create(identity, repair_data)
    return Repair.model_validate(repair)


@router.get("/", response_model=RepairList)
async def get_my_repairs(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
):
    """Repairs requested by the calling user, newest first"""
    repairs, total = container.repairs.list_own(identity, page, limit)
    return RepairList(
        repairs=[Repair.model_validate(r) for r in repairs],
        pagination=Pagination.for_page(page, limit, total),
    )


@router.get("/queue", response_model=RepairList)
async def get_repair_queue(
    status: Optional[RepairStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    staff: Identity = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
):
    """Staff work queue; specialists only get repairs assigned to them"""
    repairs, total = container.repairs.list_queue(staff, page, limit, status)
    return RepairList(
        repairs=[Repair.model_validate(r) for r in repairs],
        pagination=Pagination.for_page(page, limit, total),
    )


@router.get("/{repair_id}", response_model=Repair)
async def get_repair(
    repair_id: int,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
):
    return Repair.model_validate(container.repairs.get(repair_id, identity))


@router.patch("/{repair_id}", response_model=Repair)
async def update_repair(
    repair_id: int,
    changes: RepairUpdate,
    staff: Identity = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
):
    repair = await container.repairs.update(repair_id, changes, staff)
    return Repair.model_validate(repair)


@router.post("/{repair_id}/parts", response_model=Repair)
async def add_repair_parts(
    repair_id: int,
    request: RepairPartsAdd,
    staff: Identity = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
):
    """Consume parts from stock for a repair"""
    repair = await container.repairs.add_parts(repair_id, request.parts, staff)
    return Repair.model_validate(repair)


@router.post("/{repair_id}/complete", response_model=Repair)
async def complete_repair(
    repair_id: int,
    request: RepairComplete,
    staff: Identity = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
):
    repair = await container.repairs.complete(
        repair_id, request.final_cost, request.completion_notes, staff
    )
    return Repair.model_validate(repair)


@router.post("/{repair_id}/specialists", response_model=Repair)
async def assign_specialist(
    repair_id: int,
    request: SpecialistAssign,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    repair = await container.repairs.assign_specialist(
        repair_id, request.specialist_id, admin, request.notes
    )
    return Repair.model_validate(repair)
