import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.dependencies import get_container, require_admin
from storefront.core.database import get_db
from storefront.core.errors import NotFoundError, ValidationError
from storefront.core.security import Identity
from storefront.core.unit_of_work import TransactionScope
from storefront.models.database import Component as DBComponent
from storefront.models.schemas import Component, ComponentCreate, ComponentUpdate
from storefront.services.container import ServiceContainer
from storefront.services.pricing import to_money

logger = logging.getLogger(__name__)

router = APIRouter()

PRICE_FIELDS = ("price", "discount_price", "discount_expires_at")


@router.post("/", response_model=Component, status_code=201)
async def create_component(
    item_data: ComponentCreate,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """Create a new catalog component"""
    with container.uow.transaction() as tx:
        existing = tx.session.query(DBComponent).filter(DBComponent.sku == item_data.sku).first()
        if existing:
            raise ValidationError("SKU already exists", {"sku": "must be unique"})
        values = item_data.model_dump()
        values["price"] = to_money(values["price"])
        if values["discount_price"] is not None:
            values["discount_price"] = to_money(values["discount_price"])
        component = tx.components.add(DBComponent(**values))
    container.audit.record(admin.id, "CREATE", "COMPONENT", component.id, {"sku": component.sku})
    return Component.model_validate(component)


@router.get("/", response_model=List[Component])
async def get_components(db: Session = Depends(get_db)):
    """Get all catalog components"""
    return [Component.model_validate(c) for c in TransactionScope(db).components.list()]


@router.get("/{component_id}", response_model=Component)
async def get_component(component_id: int, db: Session = Depends(get_db)):
    component = db.query(DBComponent).filter(DBComponent.id == component_id).first()
    if not component:
        raise NotFoundError("Component", component_id)
    return Component.model_validate(component)


@router.put("/{component_id}", response_model=Component)
async def update_component(
    component_id: int,
    item_data: ComponentUpdate,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """Update a component; price changes re-price every configuration that uses it"""
    changes = item_data.model_dump(exclude_unset=True)
    for required in ("name", "price", "stock"):
        if required in changes and changes[required] is None:
            raise ValidationError(f"{required} cannot be null", {required: "required"})
    with container.uow.transaction() as tx:
        component = tx.components.get(component_id)
        for field, value in changes.items():
            if field in ("price", "discount_price") and value is not None:
                value = to_money(value)
            setattr(component, field, value)
        tx.flush("Component", component_id)

        repriced = 0
        if any(field in changes for field in PRICE_FIELDS):
            repriced = container.configurations.recompute_for_component(tx, component_id)
            logger.info(f"Component {component_id} price change re-priced {repriced} configuration(s)")

    container.audit.record(
        admin.id,
        "UPDATE",
        "COMPONENT",
        component_id,
        {"fields": sorted(changes), "repriced_configurations": repriced},
    )
    return Component.model_validate(component)
