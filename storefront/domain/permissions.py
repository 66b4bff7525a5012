from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum


class Role(StrEnum):
    CUSTOMER = "Customer"
    EMPLOYEE = "Employee"
    ORDER_SUPPORT = "OrderSupport"
    INVENTORY_MANAGER = "InventoryManager"
    USER_MANAGER = "UserManager"
    TRANSACTION_MANAGER = "TransactionManager"
    ADMIN = "Admin"


class UserType(StrEnum):
    EMPLOYEE = "employee"
    CUSTOMER = "customer"


SUPERUSER_ROLE = Role.ADMIN

# Higher number = more authority. The three manager roles share a rank.
ROLE_HIERARCHY: dict[Role, int] = {
    Role.CUSTOMER: 1,
    Role.EMPLOYEE: 2,
    Role.ORDER_SUPPORT: 3,
    Role.INVENTORY_MANAGER: 4,
    Role.USER_MANAGER: 4,
    Role.TRANSACTION_MANAGER: 4,
    Role.ADMIN: 5,
}

FLAG_ACCESS = "canAccess"
FLAG_CREATE = "canCreate"
FLAG_READ = "canRead"
FLAG_UPDATE = "canUpdate"
FLAG_DELETE = "canDelete"

PERMISSION_FLAGS: tuple[str, ...] = (
    FLAG_ACCESS,
    FLAG_CREATE,
    FLAG_READ,
    FLAG_UPDATE,
    FLAG_DELETE,
)

SECTIONS: tuple[str, ...] = (
    "products",
    "inventory",
    "orders",
    "customers",
    "users",
    "transactions",
    "reviews",
    "chat",
    "cms",
    "alerts",
    "logs",
)

PermissionGrid = dict[str, dict[str, bool]]


def role_level(role: str | None) -> int:
    try:
        return ROLE_HIERARCHY[Role(role)]
    except ValueError:
        return 0


def role_at_least(role: str | None, minimum: str) -> bool:
    return role_level(role) >= role_level(minimum)


def permission_name(section: str, flag: str) -> str:
    return f"{section}.{flag}"


def split_permission_name(name: str) -> tuple[str, str]:
    section, sep, flag = name.partition(".")
    if not sep or section not in SECTIONS or flag not in PERMISSION_FLAGS:
        raise ValueError(f"unknown permission: {name}")
    return section, flag


def is_known_permission(name: str) -> bool:
    try:
        split_permission_name(name)
    except ValueError:
        return False
    return True


def all_permission_names() -> list[str]:
    return [permission_name(section, flag) for section in SECTIONS for flag in PERMISSION_FLAGS]


def grid_from_rows(rows: Iterable[tuple[str, bool]]) -> PermissionGrid:
    """Fold ``(permission_name, can_access)`` rows into ``{section: {flag: bool}}``.

    Rows with names outside the known sections/flags are ignored.
    """
    grid: PermissionGrid = {}
    for name, can_access in rows:
        if not is_known_permission(name):
            continue
        section, flag = split_permission_name(name)
        grid.setdefault(section, {})[flag] = bool(can_access)
    return grid


def rows_from_grid(grid: dict[str, dict[str, bool]]) -> list[tuple[str, bool]]:
    rows: list[tuple[str, bool]] = []
    for section, flags in grid.items():
        for flag, value in flags.items():
            name = permission_name(section, flag)
            split_permission_name(name)
            rows.append((name, bool(value)))
    return rows
