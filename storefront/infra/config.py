from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "dev-secret-change-me"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {
    "": "seconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


def parse_duration(raw: str) -> timedelta:
    """Parse ``15m`` / ``7d`` / ``3600`` style durations."""
    match = _DURATION_RE.match(raw)
    if match is None:
        raise ValueError(f"invalid duration: {raw!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


@dataclass(frozen=True)
class AuthSettings:
    environment: str = "development"
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    access_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_ttl: timedelta = timedelta(days=7)
    issuer: str = "designxcel"
    audience: str = "designxcel-users"
    database_url: str = "sqlite:///./designxcel.db"
    session_cookie_name: str = "designxcel_session"
    csrf_cookie_name: str = "designxcel_csrf"
    session_max_age: timedelta = timedelta(hours=24)
    client_permission_ttl: timedelta = timedelta(minutes=5)
    forbidden_path: str = "/Employee/Forbidden"
    login_path: str = "/Employee/login"
    bcrypt_rounds: int = 12
    log_level: str = "DEBUG"
    cors_origins: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AuthSettings:
        env = os.environ if environ is None else environ
        environment = env.get("APP_ENV", "development")
        default_level = "DEBUG" if environment == "development" else "INFO"
        origins = [item.strip() for item in env.get("CORS_ORIGINS", "").split(",") if item.strip()]
        return cls(
            environment=environment,
            jwt_secret=env.get("JWT_SECRET", DEFAULT_JWT_SECRET),
            jwt_algorithm=env.get("JWT_ALGORITHM", "HS256"),
            access_token_ttl=parse_duration(env.get("JWT_ACCESS_TOKEN_EXPIRES_IN", "15m")),
            refresh_token_ttl=parse_duration(env.get("JWT_REFRESH_TOKEN_EXPIRES_IN", "7d")),
            issuer=env.get("JWT_ISSUER", "designxcel"),
            audience=env.get("JWT_AUDIENCE", "designxcel-users"),
            database_url=env.get("DATABASE_URL", "sqlite:///./designxcel.db"),
            session_cookie_name=env.get("SESSION_COOKIE_NAME", "designxcel_session"),
            session_max_age=parse_duration(env.get("SESSION_MAX_AGE", "24h")),
            client_permission_ttl=parse_duration(env.get("CLIENT_PERMISSION_TTL", "5m")),
            bcrypt_rounds=int(env.get("BCRYPT_ROUNDS", "12")),
            log_level=env.get("LOG_LEVEL", default_level).upper(),
            cors_origins=tuple(origins),
        )

    def validate(self) -> AuthSettings:
        if self.jwt_secret == DEFAULT_JWT_SECRET:
            if self.is_production:
                raise ValueError("JWT_SECRET must be set in production")
            logger.warning("JWT_SECRET is not configured, using the development default")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")
        if self.access_token_ttl <= timedelta(0) or self.refresh_token_ttl <= timedelta(0):
            raise ValueError("token lifetimes must be positive")
        return self
