from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from storefront.domain.models import Identity, TokenPair
from storefront.infra.config import AuthSettings

REFRESH_TOKEN_TYPE = "refresh"


class TokenError(Exception):
    pass


class TokenExpiredError(TokenError):
    pass


class InvalidTokenError(TokenError):
    pass


class TokenCodec:
    """Signs and verifies the access/refresh JWTs.

    ``verify_*`` are the only trusted entry points. ``decode_token`` and the
    expiry helpers read claims without checking the signature and must never
    feed an authorization decision.
    """

    def __init__(self, settings: AuthSettings) -> None:
        self.settings = settings

    def _sign(self, claims: dict[str, Any], now: datetime, ttl: timedelta) -> str:
        payload = {
            **claims,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "iss": self.settings.issuer,
            "aud": self.settings.audience,
        }
        return jwt.encode(payload, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    def generate_access_token(self, identity: Identity, expires_in: timedelta | None = None) -> str:
        ttl = expires_in if expires_in is not None else self.settings.access_token_ttl
        return self._sign(identity.to_claims(), datetime.now(UTC), ttl)

    def generate_refresh_token(self, identity: Identity) -> str:
        claims = {
            "id": identity.id,
            "email": identity.email,
            "type": identity.type.value,
            "tokenType": REFRESH_TOKEN_TYPE,
        }
        return self._sign(claims, datetime.now(UTC), self.settings.refresh_token_ttl)

    def generate_token_pair(self, identity: Identity) -> TokenPair:
        return TokenPair(
            access_token=self.generate_access_token(identity),
            refresh_token=self.generate_refresh_token(identity),
            token_type="Bearer",
            expires_in=int(self.settings.access_token_ttl.total_seconds()),
        )

    def verify_token(self, token: str) -> dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
                issuer=self.settings.issuer,
                audience=self.settings.audience,
                options={"require": ["exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError(f"Token verification failed: {exc}") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidTokenError(f"Token verification failed: {exc}") from exc
        if not isinstance(claims, dict):
            raise InvalidTokenError("Token verification failed: invalid payload")
        return claims

    def verify_access_token(self, token: str) -> dict[str, Any]:
        claims = self.verify_token(token)
        if claims.get("tokenType") == REFRESH_TOKEN_TYPE:
            raise InvalidTokenError("Token verification failed: refresh token used as access token")
        return claims

    def refresh_access_token(self, refresh_token: str, identity: Identity) -> str:
        claims = self.verify_token(refresh_token)
        if claims.get("tokenType") != REFRESH_TOKEN_TYPE:
            raise InvalidTokenError("Invalid token type")
        if claims.get("id") != identity.id:
            raise InvalidTokenError("Refresh token does not belong to this user")
        # Claims come from the re-supplied identity so role changes apply at once.
        return self.generate_access_token(identity)

    def decode_token(self, token: str) -> dict[str, Any] | None:
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
        return claims if isinstance(claims, dict) else None

    def get_token_expiration(self, token: str) -> datetime | None:
        claims = self.decode_token(token)
        if claims is None:
            return None
        exp = claims.get("exp")
        if not isinstance(exp, int | float):
            return None
        return datetime.fromtimestamp(exp, tz=UTC)

    def get_token_issued_at(self, token: str) -> datetime | None:
        claims = self.decode_token(token)
        if claims is None:
            return None
        iat = claims.get("iat")
        if not isinstance(iat, int | float):
            return None
        return datetime.fromtimestamp(iat, tz=UTC)

    def is_token_expired(self, token: str) -> bool:
        expires_at = self.get_token_expiration(token)
        if expires_at is None:
            return True
        return expires_at < datetime.now(UTC)
