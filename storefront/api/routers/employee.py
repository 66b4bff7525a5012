from __future__ import annotations

import logging
import secrets
from pathlib import Path
from typing import Annotated, Any
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from storefront.api.deps import (
    Codec,
    check_any_permission,
    check_permission,
    current_identity,
    get_identity_service,
    get_permission_service,
)
from storefront.api.errors import AuthHTTPError, ErrorCode, LoginRequiredError
from storefront.client.permission_model import ClientPermissionModel
from storefront.domain.models import Identity
from storefront.domain.permissions import UserType
from storefront.infra.config import AuthSettings
from storefront.services.identity_service import AccountDisabledError, AuthError, IdentityService
from storefront.services.permission_service import PermissionService

logger = logging.getLogger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parents[2] / "web" / "templates"))

DEFAULT_NEXT_PATH = "/Employee"


def _settings(request: Request) -> AuthSettings:
    return request.app.state.settings


def _sanitize_next_path(next_path: str | None) -> str:
    if not next_path:
        return DEFAULT_NEXT_PATH
    parsed = urlparse(next_path)
    if parsed.scheme or parsed.netloc:
        return DEFAULT_NEXT_PATH
    if not parsed.path.startswith(DEFAULT_NEXT_PATH) or parsed.path.startswith("//"):
        return DEFAULT_NEXT_PATH
    sanitized = parsed.path
    if parsed.query:
        sanitized = f"{sanitized}?{parsed.query}"
    return sanitized


def _new_csrf_token() -> str:
    return secrets.token_urlsafe(24)


def _set_session_cookie(request: Request, response: Response, token: str) -> None:
    settings = _settings(request)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        max_age=int(settings.session_max_age.total_seconds()),
        path="/",
    )


def _clear_session_cookie(request: Request, response: Response) -> None:
    response.delete_cookie(key=_settings(request).session_cookie_name, path="/")


def _set_csrf_cookie(request: Request, response: Response, csrf_token: str) -> None:
    settings = _settings(request)
    response.set_cookie(
        key=settings.csrf_cookie_name,
        value=csrf_token,
        httponly=False,
        samesite="strict",
        secure=settings.is_production,
        max_age=int(settings.session_max_age.total_seconds()),
        path="/",
    )


def _verify_csrf(request: Request, csrf_token: str) -> None:
    csrf_cookie = request.cookies.get(_settings(request).csrf_cookie_name)
    if not csrf_cookie or not csrf_token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid csrf token")
    if not secrets.compare_digest(csrf_cookie, csrf_token):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid csrf token")


def _render_login(
    request: Request,
    *,
    next_path: str,
    email: str = "",
    error_message: str | None = None,
    status_code: int = status.HTTP_200_OK,
) -> Response:
    csrf_token = request.cookies.get(_settings(request).csrf_cookie_name) or _new_csrf_token()
    response = templates.TemplateResponse(
        request=request,
        name="login.html",
        context={
            "next_path": next_path,
            "email": email,
            "error_message": error_message,
            "csrf_token": csrf_token,
        },
        status_code=status_code,
    )
    _set_csrf_cookie(request, response, csrf_token)
    return response


def require_employee_page(
    request: Request,
    identity: Annotated[Identity | None, Depends(current_identity)],
) -> Identity:
    if identity is None:
        requested_path = request.url.path
        if request.url.query:
            requested_path = f"{requested_path}?{request.url.query}"
        raise LoginRequiredError(requested_path)
    if identity.type is not UserType.EMPLOYEE:
        raise AuthHTTPError(
            status.HTTP_403_FORBIDDEN,
            "Invalid user type",
            ErrorCode.INVALID_USER_TYPE,
            redirect_html=True,
        )
    return identity


PageUser = Annotated[Identity, Depends(require_employee_page)]
Permissions = Annotated[PermissionService | None, Depends(get_permission_service)]


def _page_model(
    identity: Identity,
    permissions: PermissionService | None,
    settings: AuthSettings,
) -> ClientPermissionModel:
    grid = permissions.get_grid(identity.id) if permissions is not None else {}
    return ClientPermissionModel(identity, grid, max_age=settings.client_permission_ttl)


def _page_context(
    request: Request,
    model: ClientPermissionModel,
    *,
    active_nav: str,
    title: str,
    **extra: Any,
) -> dict[str, Any]:
    identity = model.identity
    assert identity is not None
    nav_rows = [
        {"key": item.key, "label": item.label, "href": item.path, "active": item.key == active_nav}
        for item in model.navigation_items()
    ]
    context: dict[str, Any] = {
        "page_title": title,
        "user": identity,
        "csrf_token": request.cookies.get(_settings(request).csrf_cookie_name, ""),
        "nav_items": nav_rows,
        "sections": model.accessible_dashboard_sections(),
    }
    context.update(extra)
    return context


def _render_section(
    request: Request,
    identity: Identity,
    permissions: PermissionService | None,
    *,
    section: str,
    title: str,
) -> Response:
    settings = _settings(request)
    model = _page_model(identity, permissions, settings)
    return templates.TemplateResponse(
        request=request,
        name="section.html",
        context=_page_context(
            request,
            model,
            active_nav=section,
            title=title,
            can_create=model.has_section_permission(section, "create"),
            can_update=model.has_section_permission(section, "update"),
            can_delete=model.has_section_permission(section, "delete"),
        ),
    )


@router.get("/Employee/login")
def employee_login(
    request: Request,
    identity: Annotated[Identity | None, Depends(current_identity)],
    next_path: str | None = Query(default=None, alias="next"),
) -> Response:
    safe_next = _sanitize_next_path(next_path)
    if identity is not None and identity.type is UserType.EMPLOYEE:
        return RedirectResponse(url=safe_next, status_code=status.HTTP_303_SEE_OTHER)
    return _render_login(request, next_path=safe_next)


@router.post("/Employee/login")
def employee_login_submit(
    request: Request,
    codec: Codec,
    service: Annotated[IdentityService, Depends(get_identity_service)],
    email: str = Form(...),
    password: str = Form(...),
    csrf_token: str = Form(...),
    next_path: str = Form(DEFAULT_NEXT_PATH, alias="next"),
) -> Response:
    safe_next = _sanitize_next_path(next_path)
    try:
        _verify_csrf(request, csrf_token)
    except HTTPException as exc:
        return _render_login(
            request,
            next_path=safe_next,
            email=email,
            error_message=str(exc.detail),
            status_code=exc.status_code,
        )

    try:
        user = service.authenticate(email, password)
    except AccountDisabledError:
        return _render_login(
            request,
            next_path=safe_next,
            email=email,
            error_message="Account is deactivated",
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    except AuthError:
        return _render_login(
            request,
            next_path=safe_next,
            email=email,
            error_message="Invalid email or password",
            status_code=status.HTTP_401_UNAUTHORIZED,
        )

    identity = Identity.from_user(user)
    if identity.type is not UserType.EMPLOYEE:
        logger.info("employee login refused for customer user_id=%s", identity.id)
        return _render_login(
            request,
            next_path=safe_next,
            email=email,
            error_message="Employee access only",
            status_code=status.HTTP_403_FORBIDDEN,
        )

    token = codec.generate_access_token(identity, expires_in=_settings(request).session_max_age)
    logger.info("employee session started user_id=%s", identity.id)
    response = RedirectResponse(url=safe_next, status_code=status.HTTP_303_SEE_OTHER)
    _set_session_cookie(request, response, token)
    _set_csrf_cookie(request, response, _new_csrf_token())
    return response


@router.post("/Employee/logout")
def employee_logout(request: Request, csrf_token: str = Form(...)) -> RedirectResponse:
    _verify_csrf(request, csrf_token)
    response = RedirectResponse(url=_settings(request).login_path, status_code=status.HTTP_303_SEE_OTHER)
    _clear_session_cookie(request, response)
    _set_csrf_cookie(request, response, _new_csrf_token())
    return response


@router.get("/Employee/Forbidden")
def employee_forbidden(request: Request) -> Response:
    return templates.TemplateResponse(
        request=request,
        name="forbidden.html",
        context={"login_path": _settings(request).login_path},
        status_code=status.HTTP_403_FORBIDDEN,
    )


@router.get("/Employee")
def employee_dashboard(request: Request, identity: PageUser, permissions: Permissions) -> Response:
    model = _page_model(identity, permissions, _settings(request))
    return templates.TemplateResponse(
        request=request,
        name="dashboard.html",
        context=_page_context(request, model, active_nav="dashboard", title="Dashboard"),
    )


@router.get(
    "/Employee/Products",
    dependencies=[Depends(require_employee_page), Depends(check_permission("products.canAccess"))],
)
def employee_products(request: Request, identity: PageUser, permissions: Permissions) -> Response:
    return _render_section(request, identity, permissions, section="products", title="Products")


@router.get(
    "/Employee/Inventory",
    dependencies=[Depends(require_employee_page), Depends(check_permission("inventory.canAccess"))],
)
def employee_inventory(request: Request, identity: PageUser, permissions: Permissions) -> Response:
    return _render_section(request, identity, permissions, section="inventory", title="Inventory")


@router.get(
    "/Employee/Orders",
    dependencies=[Depends(require_employee_page), Depends(check_permission("orders.canAccess"))],
)
def employee_orders(request: Request, identity: PageUser, permissions: Permissions) -> Response:
    return _render_section(request, identity, permissions, section="orders", title="Orders")


@router.get(
    "/Employee/Transactions",
    dependencies=[Depends(require_employee_page), Depends(check_permission("transactions.canAccess"))],
)
def employee_transactions(request: Request, identity: PageUser, permissions: Permissions) -> Response:
    return _render_section(request, identity, permissions, section="transactions", title="Transactions")


@router.get(
    "/Employee/Users",
    dependencies=[
        Depends(require_employee_page),
        Depends(check_any_permission(["users.canAccess", "customers.canAccess"])),
    ],
)
def employee_users(request: Request, identity: PageUser, permissions: Permissions) -> Response:
    return _render_section(request, identity, permissions, section="users", title="Users")
