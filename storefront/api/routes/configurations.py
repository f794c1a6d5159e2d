from fastapi import APIRouter, Depends

from storefront.api.dependencies import get_container, get_identity, require_staff
from storefront.core.security import Identity
from storefront.models.schemas import (
    Configuration,
    ConfigurationComponentsReplace,
    ConfigurationCreate,
    ConfigurationStatusUpdate,
)
from storefront.services.container import ServiceContainer

router = APIRouter()


@router.post("/", response_model=Configuration, status_code=201)
async def create_configuration(
    data: ConfigurationCreate,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
):
    return Configuration.model_validate(container.configurations.create(identity, data))


@router.get("/{configuration_id}", response_model=Configuration)
async def get_configuration(
    configuration_id: int,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
):
    return Configuration.model_validate(container.configurations.get(configuration_id, identity))


@router.put("/{configuration_id}/components", response_model=Configuration)
async def replace_components(
    configuration_id: int,
    data: ConfigurationComponentsReplace,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
):
    """Replace the component list and recompute the total price"""
    configuration = container.configurations.replace_components(
        configuration_id, data.components, identity
    )
    return Configuration.model_validate(configuration)


@router.patch("/{configuration_id}/status", response_model=Configuration)
async def change_status(
    configuration_id: int,
    data: ConfigurationStatusUpdate,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
):
    configuration = container.configurations.change_status(configuration_id, data.status, identity)
    return Configuration.model_validate(configuration)


@router.post("/{configuration_id}/publish", response_model=Configuration)
async def publish_configuration(
    configuration_id: int,
    staff: Identity = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
):
    """List an approved configuration as a public template"""
    return Configuration.model_validate(container.configurations.publish(configuration_id, staff))
