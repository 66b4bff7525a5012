from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from storefront.api.deps import (
    EMPLOYEE_ONLY,
    authenticate,
    check_any_permission,
    check_permission,
    get_identity_service,
    get_permission_service,
    require_role,
)
from storefront.domain.models import (
    Identity,
    PermissionGridRead,
    PermissionGridUpdate,
    UserRead,
    UserStatusUpdate,
)
from storefront.domain.permissions import Role, UserType
from storefront.services.identity_service import IdentityService, NotFoundError
from storefront.services.permission_service import (
    PermissionNotFoundError,
    PermissionService,
    PermissionTargetError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

Service = Annotated[IdentityService, Depends(get_identity_service)]


def _permission_service(service: PermissionService | None) -> PermissionService:
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="database not available")
    return service


Permissions = Annotated[PermissionService | None, Depends(get_permission_service)]


@router.get(
    "/users",
    response_model=list[UserRead],
    dependencies=[
        Depends(authenticate),
        Depends(EMPLOYEE_ONLY),
        Depends(check_any_permission(["users.canRead", "customers.canRead"])),
    ],
)
def list_users(service: Service, user_type: UserType | None = None) -> list[UserRead]:
    return [UserRead.model_validate(item) for item in service.list_users(user_type)]


@router.patch(
    "/users/{user_id}/status",
    response_model=UserRead,
    dependencies=[Depends(authenticate)],
)
def update_user_status(
    user_id: int,
    payload: UserStatusUpdate,
    service: Service,
    actor: Annotated[Identity, Depends(require_role([Role.ADMIN.value, Role.USER_MANAGER.value]))],
) -> UserRead:
    if actor.id == user_id and not payload.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="cannot deactivate your own account")
    try:
        user = service.set_active(user_id, payload.is_active)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    logger.info("user_id=%s set is_active=%s by user_id=%s", user_id, payload.is_active, actor.id)
    return UserRead.model_validate(user)


@router.get(
    "/users/{user_id}/permissions",
    response_model=PermissionGridRead,
    dependencies=[Depends(check_permission("users.canRead"))],
)
def get_user_permissions(user_id: int, service: Service, permissions: Permissions) -> PermissionGridRead:
    try:
        service.get_user(user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    grid = _permission_service(permissions).get_grid(user_id)
    return PermissionGridRead(user_id=user_id, permissions=grid)


@router.put(
    "/users/{user_id}/permissions",
    response_model=PermissionGridRead,
)
def update_user_permissions(
    request: Request,
    user_id: int,
    payload: PermissionGridUpdate,
    service: Service,
    permissions: Permissions,
    actor: Annotated[Identity, Depends(check_permission("users.canUpdate"))],
) -> PermissionGridRead:
    if actor.role is not Role.ADMIN:
        if actor.id == user_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="cannot change your own permissions")
        try:
            target = service.get_user(user_id)
        except NotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        if target.role == Role.ADMIN.value:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="cannot change an admin's permissions")
    try:
        grid = _permission_service(permissions).update_grid(user_id, payload.permissions)
    except PermissionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionTargetError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    logger.info("permission grid of user_id=%s updated by user_id=%s path=%s", user_id, actor.id, request.url.path)
    return PermissionGridRead(user_id=user_id, permissions=grid)
