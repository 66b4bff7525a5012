from __future__ import annotations

from enum import StrEnum
from typing import Any
from urllib.parse import quote

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

DEFAULT_FORBIDDEN_PATH = "/Employee/Forbidden"
DEFAULT_LOGIN_PATH = "/Employee/login"


class ErrorCode(StrEnum):
    MISSING_TOKEN = "MISSING_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    AUTH_FAILED = "AUTH_FAILED"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    INVALID_USER_TYPE = "INVALID_USER_TYPE"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    REFRESH_FAILED = "REFRESH_FAILED"


class AuthHTTPError(Exception):
    """An authentication/authorization failure rendered as the uniform error body.

    ``redirect_html`` makes browsers that accept HTML land on the forbidden
    page instead of receiving JSON.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        code: ErrorCode | None = None,
        *,
        extra: dict[str, Any] | None = None,
        redirect_html: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code
        self.extra = extra or {}
        self.redirect_html = redirect_html

    def body(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "message": self.message}
        if self.code is not None:
            payload["code"] = self.code.value
        payload.update(self.extra)
        return payload


class LoginRequiredError(Exception):
    """Raised by employee pages when no session is present."""

    def __init__(self, next_path: str) -> None:
        super().__init__(next_path)
        self.next_path = next_path


def unauthorized(message: str, code: ErrorCode | None, **extra: Any) -> AuthHTTPError:
    return AuthHTTPError(status.HTTP_401_UNAUTHORIZED, message, code, extra=extra)


def forbidden(message: str, code: ErrorCode | None, **extra: Any) -> AuthHTTPError:
    return AuthHTTPError(status.HTTP_403_FORBIDDEN, message, code, extra=extra)


def accepts_html(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "text/html" in accept or "application/xhtml+xml" in accept


def _forbidden_path(request: Request) -> str:
    settings = getattr(request.app.state, "settings", None)
    return getattr(settings, "forbidden_path", DEFAULT_FORBIDDEN_PATH)


async def auth_error_handler(request: Request, exc: Exception) -> Response:
    assert isinstance(exc, AuthHTTPError)
    if exc.redirect_html and accepts_html(request):
        return RedirectResponse(url=_forbidden_path(request), status_code=status.HTTP_302_FOUND)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=headers)


async def login_required_handler(request: Request, exc: Exception) -> Response:
    assert isinstance(exc, LoginRequiredError)
    settings = getattr(request.app.state, "settings", None)
    login_path = getattr(settings, "login_path", DEFAULT_LOGIN_PATH)
    return RedirectResponse(
        url=f"{login_path}?next={quote(exc.next_path, safe='')}",
        status_code=status.HTTP_303_SEE_OTHER,
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthHTTPError, auth_error_handler)
    app.add_exception_handler(LoginRequiredError, login_required_handler)
