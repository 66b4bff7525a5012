from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta

import jwt
import pytest

from storefront.domain.models import Identity
from storefront.domain.permissions import Role, UserType
from storefront.infra.config import AuthSettings
from storefront.infra.tokens import (
    REFRESH_TOKEN_TYPE,
    InvalidTokenError,
    TokenCodec,
    TokenError,
    TokenExpiredError,
)

SECRET = "test-secret-0123456789-abcdefghijklmnop"


@pytest.fixture()
def settings() -> AuthSettings:
    return AuthSettings(jwt_secret=SECRET, bcrypt_rounds=4)


@pytest.fixture()
def codec(settings: AuthSettings) -> TokenCodec:
    return TokenCodec(settings)


def _identity(role: Role = Role.INVENTORY_MANAGER, user_id: int = 7) -> Identity:
    return Identity(
        id=user_id,
        email="ops@designxcel.test",
        role=role,
        type=UserType.EMPLOYEE,
        full_name="Ops Person",
    )


def test_access_token_carries_identity_claims(codec: TokenCodec) -> None:
    token = codec.generate_access_token(_identity())
    claims = codec.verify_token(token)

    assert claims["id"] == 7
    assert claims["email"] == "ops@designxcel.test"
    assert claims["role"] == "InventoryManager"
    assert claims["type"] == "employee"
    assert claims["fullName"] == "Ops Person"
    assert claims["iss"] == "designxcel"
    assert claims["aud"] == "designxcel-users"
    assert claims["exp"] - claims["iat"] == 15 * 60
    assert "tokenType" not in claims


def test_access_token_custom_lifetime(codec: TokenCodec) -> None:
    token = codec.generate_access_token(_identity(), expires_in=timedelta(hours=2))
    claims = codec.verify_token(token)
    assert claims["exp"] - claims["iat"] == 2 * 60 * 60


def test_refresh_token_claims(codec: TokenCodec) -> None:
    token = codec.generate_refresh_token(_identity())
    claims = codec.verify_token(token)

    assert claims["tokenType"] == REFRESH_TOKEN_TYPE
    assert claims["id"] == 7
    assert claims["type"] == "employee"
    assert "role" not in claims
    assert claims["exp"] - claims["iat"] == 7 * 24 * 60 * 60


def test_token_pair_shape(codec: TokenCodec) -> None:
    pair = codec.generate_token_pair(_identity())
    assert pair.token_type == "Bearer"
    assert pair.expires_in == 900
    assert codec.verify_access_token(pair.access_token)["id"] == 7
    assert codec.verify_token(pair.refresh_token)["tokenType"] == "refresh"


def test_expired_token_raises_expired_error(codec: TokenCodec) -> None:
    token = codec.generate_access_token(_identity(), expires_in=timedelta(seconds=-5))
    with pytest.raises(TokenExpiredError) as exc_info:
        codec.verify_token(token)
    assert str(exc_info.value).startswith("Token verification failed: ")
    assert isinstance(exc_info.value, TokenError)


def test_bad_signature_raises_invalid_error(codec: TokenCodec, settings: AuthSettings) -> None:
    other = TokenCodec(replace(settings, jwt_secret="another-secret-0123456789-abcdefghij"))
    token = other.generate_access_token(_identity())
    with pytest.raises(InvalidTokenError) as exc_info:
        codec.verify_token(token)
    assert str(exc_info.value).startswith("Token verification failed: ")


def test_wrong_audience_and_issuer_rejected(codec: TokenCodec, settings: AuthSettings) -> None:
    wrong_audience = TokenCodec(replace(settings, audience="someone-else"))
    wrong_issuer = TokenCodec(replace(settings, issuer="someone-else"))
    with pytest.raises(InvalidTokenError):
        codec.verify_token(wrong_audience.generate_access_token(_identity()))
    with pytest.raises(InvalidTokenError):
        codec.verify_token(wrong_issuer.generate_access_token(_identity()))


def test_malformed_token_rejected(codec: TokenCodec) -> None:
    with pytest.raises(InvalidTokenError):
        codec.verify_token("not-a-jwt")


def test_token_without_exp_rejected(codec: TokenCodec) -> None:
    token = jwt.encode(
        {"id": 7, "iat": int(datetime.now(UTC).timestamp()), "iss": "designxcel", "aud": "designxcel-users"},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(InvalidTokenError):
        codec.verify_token(token)


def test_refresh_token_is_not_an_access_token(codec: TokenCodec) -> None:
    refresh = codec.generate_refresh_token(_identity())
    with pytest.raises(InvalidTokenError):
        codec.verify_access_token(refresh)


def test_refresh_access_token_rejects_access_token(codec: TokenCodec) -> None:
    access = codec.generate_access_token(_identity())
    with pytest.raises(InvalidTokenError) as exc_info:
        codec.refresh_access_token(access, _identity())
    assert str(exc_info.value) == "Invalid token type"


def test_refresh_access_token_rejects_foreign_identity(codec: TokenCodec) -> None:
    refresh = codec.generate_refresh_token(_identity(user_id=7))
    with pytest.raises(InvalidTokenError):
        codec.refresh_access_token(refresh, _identity(user_id=8))


def test_refresh_access_token_uses_current_role(codec: TokenCodec) -> None:
    refresh = codec.generate_refresh_token(_identity(role=Role.EMPLOYEE))
    access = codec.refresh_access_token(refresh, _identity(role=Role.ADMIN))
    assert codec.verify_access_token(access)["role"] == "Admin"


def test_expired_refresh_token_rejected(codec: TokenCodec, settings: AuthSettings) -> None:
    short = TokenCodec(replace(settings, refresh_token_ttl=timedelta(seconds=-5)))
    refresh = short.generate_refresh_token(_identity())
    with pytest.raises(TokenExpiredError):
        codec.refresh_access_token(refresh, _identity())


def test_inspection_helpers_do_not_raise(codec: TokenCodec) -> None:
    token = codec.generate_access_token(_identity())

    assert codec.decode_token("garbage") is None
    assert codec.is_token_expired("garbage") is True
    assert codec.get_token_expiration("garbage") is None
    assert codec.is_token_expired(token) is False

    expires_at = codec.get_token_expiration(token)
    issued_at = codec.get_token_issued_at(token)
    assert expires_at is not None and expires_at.tzinfo is not None
    assert issued_at is not None
    assert expires_at - issued_at == timedelta(minutes=15)


def test_expired_token_is_reported_expired(codec: TokenCodec) -> None:
    token = codec.generate_access_token(_identity(), expires_in=timedelta(seconds=-5))
    assert codec.is_token_expired(token) is True
    decoded = codec.decode_token(token)
    assert decoded is not None
    assert decoded["id"] == 7
