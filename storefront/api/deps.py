from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Annotated

from fastapi import Depends, Request, status
from fastapi.security import OAuth2PasswordBearer

from storefront.api.errors import AuthHTTPError, ErrorCode, forbidden, unauthorized
from storefront.domain.models import Identity, TokenInfo
from storefront.domain.permissions import SUPERUSER_ROLE, Role, UserType, role_at_least
from storefront.infra.audit import set_audit_context
from storefront.infra.config import AuthSettings
from storefront.infra.tokens import InvalidTokenError, TokenCodec, TokenExpiredError
from storefront.services.identity_service import IdentityService
from storefront.services.permission_service import PermissionService

logger = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = "Access denied. You do not have permission to access this resource."

bearer_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_settings(request: Request) -> AuthSettings:
    return request.app.state.settings


def get_codec(request: Request) -> TokenCodec:
    return request.app.state.codec


def get_identity_service(request: Request) -> IdentityService:
    settings: AuthSettings = request.app.state.settings
    return IdentityService(request.app.state.engine, bcrypt_rounds=settings.bcrypt_rounds)


def get_permission_service(request: Request) -> PermissionService | None:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return None
    return PermissionService(engine)


Codec = Annotated[TokenCodec, Depends(get_codec)]
BearerToken = Annotated[str | None, Depends(bearer_scheme)]


def _establish(request: Request, codec: TokenCodec, token: str, claims: dict) -> Identity:
    identity = Identity.from_claims(claims)
    request.state.user = identity
    request.state.token = TokenInfo(
        token=token,
        expires_at=codec.get_token_expiration(token),
        issued_at=codec.get_token_issued_at(token),
    )
    return identity


def _verify_bearer(request: Request, codec: TokenCodec, token: str | None) -> Identity:
    if not token:
        raise unauthorized("Access token required", ErrorCode.MISSING_TOKEN)
    try:
        claims = codec.verify_access_token(token)
        return _establish(request, codec, token, claims)
    except TokenExpiredError as exc:
        logger.warning("access token rejected: %s", exc)
        raise unauthorized("Access token expired", ErrorCode.TOKEN_EXPIRED, requiresRefresh=True) from exc
    except InvalidTokenError as exc:
        logger.warning("access token rejected: %s", exc)
        raise unauthorized("Invalid access token", ErrorCode.INVALID_TOKEN) from exc
    except Exception as exc:
        logger.warning("authentication failed: %s", exc)
        raise unauthorized("Authentication failed", ErrorCode.AUTH_FAILED) from exc


def authenticate(request: Request, codec: Codec, token: BearerToken) -> Identity:
    return _verify_bearer(request, codec, token)


def optional_authenticate(request: Request, codec: Codec, token: BearerToken) -> Identity | None:
    if not token:
        return None
    try:
        return _verify_bearer(request, codec, token)
    except AuthHTTPError as exc:
        logger.warning("optional authentication ignored: %s", exc.message)
        return None


def session_identity(request: Request, codec: Codec) -> Identity | None:
    settings: AuthSettings = request.app.state.settings
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    try:
        claims = codec.verify_access_token(token)
        return _establish(request, codec, token, claims)
    except Exception as exc:
        logger.info("session cookie rejected: %s", exc)
        return None


def current_identity(request: Request, codec: Codec, token: BearerToken) -> Identity | None:
    """The caller's identity from whichever credential the request carries.

    A previously established identity wins, then a bearer header (strict: a
    bad header is a 401), then the employee session cookie.
    """
    user = getattr(request.state, "user", None)
    if isinstance(user, Identity):
        return user
    if request.headers.get("Authorization"):
        return _verify_bearer(request, codec, token)
    return session_identity(request, codec)


def _as_list(allowed: str | Sequence[str]) -> list[str]:
    if isinstance(allowed, str):
        return [str(allowed)]
    return [str(item) for item in allowed]


def _established_user(request: Request) -> Identity:
    user = getattr(request.state, "user", None)
    if not isinstance(user, Identity):
        raise unauthorized("Authentication required", ErrorCode.AUTH_REQUIRED)
    return user


def require_role(allowed_roles: str | Sequence[str]) -> Callable[[Request], Identity]:
    roles = _as_list(allowed_roles)

    def _checker(request: Request) -> Identity:
        user = _established_user(request)
        if user.role.value not in roles:
            raise forbidden(
                "Insufficient permissions",
                ErrorCode.INSUFFICIENT_PERMISSIONS,
                required=roles,
                current=user.role.value,
            )
        return user

    return _checker


def require_role_at_least(minimum: Role) -> Callable[[Request], Identity]:
    def _checker(request: Request) -> Identity:
        user = _established_user(request)
        if not role_at_least(user.role, minimum):
            raise forbidden(
                "Insufficient permissions",
                ErrorCode.INSUFFICIENT_PERMISSIONS,
                required=[minimum.value],
                current=user.role.value,
            )
        return user

    return _checker


def require_user_type(allowed_types: str | Sequence[str]) -> Callable[[Request], Identity]:
    types = _as_list(allowed_types)

    def _checker(request: Request) -> Identity:
        user = _established_user(request)
        if user.type.value not in types:
            raise forbidden(
                "Invalid user type",
                ErrorCode.INVALID_USER_TYPE,
                required=types,
                current=user.type.value,
            )
        return user

    return _checker


def _denied(status_code: int, message: str) -> AuthHTTPError:
    return AuthHTTPError(status_code, message, redirect_html=True)


def _gate(
    request: Request,
    identity: Identity | None,
    service: PermissionService | None,
    permissions: list[str],
    lookup: Callable[[PermissionService, int], bool],
) -> Identity:
    if identity is not None and identity.role is SUPERUSER_ROLE:
        logger.debug("permission %s granted to admin user_id=%s", permissions, identity.id)
        return identity
    if identity is None:
        raise AuthHTTPError(status.HTTP_401_UNAUTHORIZED, "Authentication required")
    if identity.type is not UserType.EMPLOYEE:
        logger.info("permission %s denied for %s user_id=%s", permissions, identity.type.value, identity.id)
        set_audit_context(request, action="permission.denied", detail={"required": permissions})
        raise _denied(status.HTTP_403_FORBIDDEN, PERMISSION_DENIED_MESSAGE)
    if service is None:
        logger.error("permission check %s without a database for user_id=%s", permissions, identity.id)
        raise _denied(status.HTTP_500_INTERNAL_SERVER_ERROR, "Database connection not available")
    try:
        granted = lookup(service, identity.id)
    except Exception:
        logger.exception(
            "permission check failed user_id=%s permissions=%s path=%s",
            identity.id,
            permissions,
            request.url.path,
        )
        raise _denied(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error checking permissions") from None
    if granted is not True:
        logger.info("permission %s denied for user_id=%s path=%s", permissions, identity.id, request.url.path)
        set_audit_context(request, action="permission.denied", detail={"required": permissions})
        raise _denied(status.HTTP_403_FORBIDDEN, PERMISSION_DENIED_MESSAGE)
    logger.debug("permission %s granted to user_id=%s", permissions, identity.id)
    return identity


def check_permission(required_permission: str) -> Callable[..., Identity]:
    def _checker(
        request: Request,
        identity: Annotated[Identity | None, Depends(current_identity)],
        service: Annotated[PermissionService | None, Depends(get_permission_service)],
    ) -> Identity:
        return _gate(
            request,
            identity,
            service,
            [required_permission],
            lambda svc, user_id: svc.has_permission(user_id, required_permission),
        )

    return _checker


def check_any_permission(required_permissions: Sequence[str]) -> Callable[..., Identity]:
    expected = [item for item in required_permissions if item]

    def _checker(
        request: Request,
        identity: Annotated[Identity | None, Depends(current_identity)],
        service: Annotated[PermissionService | None, Depends(get_permission_service)],
    ) -> Identity:
        return _gate(
            request,
            identity,
            service,
            expected,
            lambda svc, user_id: svc.count_granted(user_id, expected) > 0,
        )

    return _checker


CurrentUser = Annotated[Identity, Depends(authenticate)]
OptionalUser = Annotated[Identity | None, Depends(optional_authenticate)]
AnyIdentity = Annotated[Identity | None, Depends(current_identity)]

EMPLOYEE_ONLY = require_user_type(UserType.EMPLOYEE.value)
