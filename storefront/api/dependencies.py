from typing import Optional

from fastapi import Depends, Request

from storefront.core.security import Identity, require_role
from storefront.models.enums import Role
from storefront.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def get_identity(request: Request, container: ServiceContainer = Depends(get_container)) -> Identity:
    return container.guard.verify(_bearer_token(request))


def get_optional_identity(
    request: Request, container: ServiceContainer = Depends(get_container)
) -> Optional[Identity]:
    """Guest checkout: no credential means no identity, a bad credential is still rejected"""
    if request.headers.get("Authorization") is None:
        return None
    return container.guard.verify(_bearer_token(request))


def require_staff(identity: Identity = Depends(get_identity)) -> Identity:
    return require_role(identity, Role.ADMIN, Role.SPECIALIST)


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    return require_role(identity, Role.ADMIN)


def client_info(request: Request) -> dict:
    return {
        "ip_address": request.headers.get("x-forwarded-for")
        or (request.client.host if request.client else None),
        "user_agent": request.headers.get("user-agent"),
    }
