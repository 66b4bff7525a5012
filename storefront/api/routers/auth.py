from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from storefront.api.deps import (
    AnyIdentity,
    Codec,
    CurrentUser,
    get_identity_service,
    get_permission_service,
    get_settings,
)
from storefront.api.errors import ErrorCode, unauthorized
from storefront.client.permission_model import ClientPermissionModel
from storefront.domain.models import (
    Identity,
    IdentityRead,
    LoginRequest,
    LoginResponse,
    MeResponse,
    NavigationItemRead,
    PermissionSnapshot,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    TokenInfo,
    TokenTimesRead,
)
from storefront.domain.permissions import PermissionGrid
from storefront.infra.config import AuthSettings
from storefront.infra.tokens import TokenError, TokenExpiredError
from storefront.services.identity_service import (
    AccountDisabledError,
    AuthError,
    ConflictError,
    IdentityService,
    NotFoundError,
)
from storefront.services.permission_service import PermissionService

logger = logging.getLogger(__name__)

router = APIRouter()

Service = Annotated[IdentityService, Depends(get_identity_service)]
Permissions = Annotated[PermissionService | None, Depends(get_permission_service)]
Settings = Annotated[AuthSettings, Depends(get_settings)]


def _grid_for(identity: Identity, permissions: PermissionService | None) -> PermissionGrid:
    if not identity.is_employee or permissions is None:
        return {}
    return permissions.get_grid(identity.id)


@router.post("/register", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, service: Service, codec: Codec) -> LoginResponse:
    try:
        user = service.register_customer(payload)
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    identity = Identity.from_user(user)
    logger.info("customer registered user_id=%s", identity.id)
    return LoginResponse(
        user=IdentityRead.from_identity(identity),
        tokens=codec.generate_token_pair(identity),
    )


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, service: Service, permissions: Permissions, codec: Codec) -> LoginResponse:
    try:
        user = service.authenticate(payload.email, payload.password)
    except AccountDisabledError as exc:
        raise unauthorized("Account is deactivated", ErrorCode.AUTH_FAILED) from exc
    except AuthError as exc:
        logger.info("login failed for %s", payload.email.strip().lower())
        raise unauthorized("Invalid email or password", ErrorCode.INVALID_CREDENTIALS) from exc
    identity = Identity.from_user(user)
    logger.info("login user_id=%s role=%s", identity.id, identity.role.value)
    return LoginResponse(
        user=IdentityRead.from_identity(identity),
        tokens=codec.generate_token_pair(identity),
        permissions=_grid_for(identity, permissions),
    )


@router.post("/refresh-token", response_model=RefreshResponse)
def refresh_token(payload: RefreshRequest, service: Service, codec: Codec) -> RefreshResponse:
    try:
        claims = codec.verify_token(payload.refresh_token)
        user_id = claims.get("id")
        if not isinstance(user_id, int):
            raise unauthorized("Invalid refresh token", ErrorCode.REFRESH_FAILED)
        identity = service.current_identity(user_id)
        access_token = codec.refresh_access_token(payload.refresh_token, identity)
    except TokenExpiredError as exc:
        logger.warning("refresh rejected: %s", exc)
        raise unauthorized("Refresh token expired", ErrorCode.REFRESH_FAILED) from exc
    except TokenError as exc:
        logger.warning("refresh rejected: %s", exc)
        raise unauthorized("Invalid refresh token", ErrorCode.REFRESH_FAILED) from exc
    except (NotFoundError, AuthError) as exc:
        logger.warning("refresh rejected for unavailable account: %s", exc)
        raise unauthorized("Account is not available", ErrorCode.REFRESH_FAILED) from exc
    return RefreshResponse(
        access_token=access_token,
        expires_in=int(codec.settings.access_token_ttl.total_seconds()),
    )


@router.get("/me", response_model=MeResponse)
def me(request: Request, user: CurrentUser) -> MeResponse:
    token: TokenInfo = request.state.token
    return MeResponse(
        user=IdentityRead.from_identity(user),
        token=TokenTimesRead(expires_at=token.expires_at, issued_at=token.issued_at),
    )


@router.get("/permissions", response_model=PermissionSnapshot)
def permissions_snapshot(identity: AnyIdentity, permissions: Permissions, settings: Settings) -> PermissionSnapshot:
    if identity is None:
        raise unauthorized("Authentication required", ErrorCode.AUTH_REQUIRED)
    grid = _grid_for(identity, permissions)
    model = ClientPermissionModel(identity, grid, max_age=settings.client_permission_ttl)
    return PermissionSnapshot(
        user_id=identity.id,
        user_role=identity.role,
        user_type=identity.type,
        permissions=grid,
        effective_permissions=model.effective_permissions(),
        dashboard_sections=model.accessible_dashboard_sections(),
        navigation=[
            NavigationItemRead(key=item.key, label=item.label, path=item.path) for item in model.navigation_items()
        ],
        refresh_after=int(settings.client_permission_ttl.total_seconds()),
    )
