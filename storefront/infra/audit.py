from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from storefront.domain.models import AuditLog, Identity, now_utc

logger = logging.getLogger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
SKIPPED_PATHS = {"/healthz", "/readyz"}


def write_audit_log(
    engine: Engine,
    *,
    actor: Identity | None,
    action: str,
    resource: str,
    method: str,
    status_code: int,
    outcome: str,
    detail: dict[str, Any],
) -> None:
    log = AuditLog(
        actor_id=actor.id if actor is not None else None,
        actor_role=actor.role.value if actor is not None else None,
        action=action,
        resource=resource,
        method=method,
        status_code=status_code,
        outcome=outcome,
        detail=detail,
    )
    with Session(engine) as session:
        session.add(log)
        session.commit()


def status_outcome(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403}:
        return "denied"
    if status_code >= 400:
        return "rejected"
    return "success"


def set_audit_context(
    request: Request,
    *,
    action: str,
    outcome: str = "denied",
    detail: dict[str, Any] | None = None,
) -> None:
    """Force an audit row for this request, e.g. a denial answered with a redirect."""
    request.state.audit_action = action
    request.state.audit_outcome = outcome
    request.state.audit_detail = detail or {}


class AuditMiddleware(BaseHTTPMiddleware):
    """Records state-changing, denied and failed requests in ``audit_logs``."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        path = request.url.path
        method = request.method
        status_code = response.status_code
        if path in SKIPPED_PATHS:
            return response
        action = getattr(request.state, "audit_action", None)
        if action is None and method not in WRITE_METHODS and status_code not in {401, 403} and status_code < 500:
            return response

        engine = getattr(request.app.state, "engine", None)
        if engine is None:
            return response

        user = getattr(request.state, "user", None)
        actor = user if isinstance(user, Identity) else None
        outcome = getattr(request.state, "audit_outcome", None) or status_outcome(status_code)
        detail: dict[str, Any] = {
            "request_ts": now_utc().isoformat(),
            "path": path,
            "query": request.url.query or None,
            "client_ip": request.client.host if request.client is not None else None,
            **getattr(request.state, "audit_detail", {}),
        }
        try:
            write_audit_log(
                engine,
                actor=actor,
                action=action or f"{method}:{path}",
                resource=path,
                method=method,
                status_code=status_code,
                outcome=outcome,
                detail=detail,
            )
        except Exception:
            logger.exception("audit write failed for %s %s", method, path)
        return response
