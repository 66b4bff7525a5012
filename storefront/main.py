from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from storefront.api.errors import install_error_handlers
from storefront.api.routers import admin, auth, employee
from storefront.infra.audit import AuditMiddleware
from storefront.infra.config import AuthSettings
from storefront.infra.db import build_engine, check_db_ready
from storefront.infra.tokens import TokenCodec

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(settings: AuthSettings) -> None:
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)


def create_app(settings: AuthSettings | None = None, engine: Engine | None = None) -> FastAPI:
    settings = (settings or AuthSettings.from_env()).validate()
    configure_logging(settings)

    app = FastAPI(
        title="designxcel-auth",
        description="Authentication and authorization core of the DesignXcel storefront.",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.codec = TokenCodec(settings)
    app.state.engine = engine if engine is not None else build_engine(settings.database_url)

    install_error_handlers(app)
    app.add_middleware(AuditMiddleware)
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
    app.include_router(employee.router, tags=["employee"])

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz")
    def readyz(request: Request) -> dict[str, object]:
        db_ok = check_db_ready(request.app.state.engine)
        checks = {"db": "ok" if db_ok else "fail"}
        if not db_ok:
            raise HTTPException(
                status_code=503,
                detail={"status": "not_ready", "checks": checks},
            )
        return {"status": "ready", "checks": checks}

    return app


app = create_app()
