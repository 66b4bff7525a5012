from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from pydantic.alias_generators import to_camel
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from storefront.domain.permissions import PermissionGrid, Role, UserType


def now_utc() -> datetime:
    return datetime.now(UTC)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    full_name: str = ""
    role: str = Field(default=Role.CUSTOMER.value, index=True)
    user_type: str = Field(default=UserType.CUSTOMER.value, index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserPermission(SQLModel, table=True):
    __tablename__ = "user_permissions"

    user_id: int = Field(foreign_key="users.id", primary_key=True, ondelete="CASCADE")
    permission_name: str = Field(primary_key=True)
    can_access: bool = Field(default=False)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: int | None = Field(default=None, index=True)
    actor_role: str | None = None
    action: str
    resource: str
    method: str
    status_code: int
    outcome: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


@dataclass(frozen=True)
class Identity:
    id: int
    email: str
    role: Role
    type: UserType
    full_name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_employee(self) -> bool:
        return self.type is UserType.EMPLOYEE

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> Identity:
        user_id = claims.get("id")
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise ValueError("token claims carry no integer id")
        return cls(
            id=user_id,
            email=str(claims.get("email") or ""),
            role=Role(claims.get("role")),
            type=UserType(claims.get("type")),
            full_name=str(claims.get("fullName") or ""),
        )

    @classmethod
    def from_user(cls, user: User) -> Identity:
        if user.id is None:
            raise ValueError("user is not persisted")
        return cls(
            id=user.id,
            email=user.email,
            role=Role(user.role),
            type=UserType(user.user_type),
            full_name=user.full_name,
        )

    def to_claims(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "type": self.type.value,
            "fullName": self.full_name,
        }


@dataclass(frozen=True)
class TokenInfo:
    token: str
    expires_at: datetime | None
    issued_at: datetime | None


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int


class IdentityRead(CamelModel):
    id: int
    email: str
    role: Role
    type: UserType
    full_name: str

    @classmethod
    def from_identity(cls, identity: Identity) -> IdentityRead:
        return cls(
            id=identity.id,
            email=identity.email,
            role=identity.role,
            type=identity.type,
            full_name=identity.full_name,
        )


class UserRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    email: str
    full_name: str
    role: str
    user_type: str
    is_active: bool
    created_at: datetime


class LoginRequest(CamelModel):
    email: str
    password: str


class RegisterRequest(CamelModel):
    email: str
    password: str = PydanticField(min_length=8)
    full_name: str = PydanticField(min_length=1)


class EmployeeCreate(CamelModel):
    email: str
    password: str = PydanticField(min_length=8)
    full_name: str = PydanticField(min_length=1)
    role: Role = Role.EMPLOYEE


class RefreshRequest(CamelModel):
    refresh_token: str


class LoginResponse(CamelModel):
    success: bool = True
    user: IdentityRead
    tokens: TokenPair
    permissions: PermissionGrid = PydanticField(default_factory=dict)


class RefreshResponse(CamelModel):
    success: bool = True
    access_token: str
    token_type: str = "Bearer"
    expires_in: int


class TokenTimesRead(CamelModel):
    expires_at: datetime | None
    issued_at: datetime | None


class MeResponse(CamelModel):
    success: bool = True
    user: IdentityRead
    token: TokenTimesRead


class NavigationItemRead(CamelModel):
    key: str
    label: str
    path: str


class PermissionSnapshot(CamelModel):
    success: bool = True
    user_id: int
    user_role: Role
    user_type: UserType
    permissions: PermissionGrid
    effective_permissions: list[str]
    dashboard_sections: list[str]
    navigation: list[NavigationItemRead]
    refresh_after: int


class UserStatusUpdate(CamelModel):
    is_active: bool


class PermissionGridUpdate(CamelModel):
    permissions: PermissionGrid


class PermissionGridRead(CamelModel):
    success: bool = True
    user_id: int
    permissions: PermissionGrid
