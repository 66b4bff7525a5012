"""Mirror of the server's authorization decisions for UI rendering.

The tables below are a cache of what the server gates enforce. They decide
which controls and navigation entries a frontend (or the server-rendered
employee pages) shows. They are never an authorization check on their own:
every state-changing request is re-checked by the role and permission gates.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from storefront.domain.models import Identity
from storefront.domain.permissions import (
    FLAG_ACCESS,
    FLAG_CREATE,
    FLAG_DELETE,
    FLAG_READ,
    FLAG_UPDATE,
    ROLE_HIERARCHY,
    PermissionGrid,
    Role,
    UserType,
    role_level,
)

_CUSTOMER_BASE = [
    "view_products",
    "add_to_cart",
    "place_orders",
    "view_own_orders",
    "update_profile",
]

ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.CUSTOMER: frozenset([*_CUSTOMER_BASE, "view_order_history", "cancel_own_orders"]),
    Role.EMPLOYEE: frozenset(["view_products", "access_employee_dashboard", "view_basic_reports"]),
    Role.ORDER_SUPPORT: frozenset(
        [
            "view_products",
            "access_employee_dashboard",
            "view_all_orders",
            "manage_orders",
            "customer_support",
            "update_order_status",
            "view_customer_details",
            "process_refunds",
        ]
    ),
    Role.INVENTORY_MANAGER: frozenset(
        [
            "view_products",
            "access_employee_dashboard",
            "manage_inventory",
            "manage_products",
            "view_inventory_reports",
            "update_stock_levels",
            "manage_suppliers",
            "view_product_analytics",
        ]
    ),
    Role.USER_MANAGER: frozenset(
        [
            "view_products",
            "access_employee_dashboard",
            "manage_customers",
            "view_user_reports",
            "customer_support",
            "manage_customer_accounts",
            "view_customer_analytics",
        ]
    ),
    Role.TRANSACTION_MANAGER: frozenset(
        [
            "view_products",
            "access_employee_dashboard",
            "manage_transactions",
            "view_financial_reports",
            "manage_payments",
            "process_refunds",
            "view_payment_analytics",
            "manage_pricing",
        ]
    ),
    Role.ADMIN: frozenset(
        [
            *_CUSTOMER_BASE,
            "access_employee_dashboard",
            "access_admin_dashboard",
            "manage_inventory",
            "manage_products",
            "view_all_orders",
            "manage_orders",
            "manage_users",
            "manage_customers",
            "manage_transactions",
            "view_analytics",
            "system_settings",
            "manage_roles",
            "view_all_reports",
            "manage_cms",
            "manage_site_settings",
            "view_audit_logs",
            "manage_permissions",
            "backup_restore",
            "manage_employees",
        ]
    ),
}

DASHBOARD_SECTIONS: dict[str, tuple[str, ...]] = {
    "overview": ("access_employee_dashboard",),
    "products": ("manage_products",),
    "inventory": ("manage_inventory",),
    "orders": ("view_all_orders",),
    "customers": ("manage_customers",),
    "users": ("manage_users",),
    "transactions": ("manage_transactions",),
    "analytics": ("view_analytics",),
    "reports": ("view_all_reports",),
    "settings": ("system_settings",),
    "cms": ("manage_cms",),
    "support": ("customer_support",),
}

SECTION_PERMISSIONS: dict[str, dict[str, tuple[str, ...]]] = {
    "dashboard": {
        "view": ("access_employee_dashboard",),
        "admin": ("access_admin_dashboard",),
    },
    "products": {
        "view": ("view_products", "read_products"),
        "create": ("manage_products", "create_products"),
        "update": ("manage_products", "update_products"),
        "delete": ("manage_products", "delete_products"),
    },
    "inventory": {
        "view": ("view_products", "read_inventory"),
        "create": ("manage_inventory", "create_inventory"),
        "update": ("manage_inventory", "update_inventory"),
        "delete": ("manage_inventory", "delete_inventory"),
    },
    "orders": {
        "view": ("view_all_orders", "read_orders"),
        "create": ("manage_orders", "create_orders"),
        "update": ("manage_orders", "update_orders"),
        "delete": ("manage_orders", "delete_orders"),
        "viewOwn": ("view_own_orders",),
    },
    "customers": {
        "view": ("manage_customers", "read_customers"),
        "create": ("manage_customers", "create_customers"),
        "update": ("manage_customers", "update_customers"),
        "delete": ("manage_customers", "delete_customers"),
    },
    "users": {
        "view": ("manage_users", "read_users"),
        "create": ("manage_users", "create_users"),
        "update": ("manage_users", "update_users"),
        "delete": ("manage_users", "delete_users"),
    },
    "transactions": {
        "view": ("manage_transactions", "read_transactions"),
        "create": ("manage_transactions", "create_transactions"),
        "update": ("manage_transactions", "update_transactions"),
        "delete": ("manage_transactions", "delete_transactions"),
    },
    "analytics": {
        "view": ("view_analytics",),
    },
    "reports": {
        "view": ("view_all_reports",),
    },
    "settings": {
        "view": ("system_settings",),
        "update": ("system_settings",),
    },
}

# granular flag -> prefix of the derived capability name
_GRANULAR_PREFIXES: dict[str, str] = {
    FLAG_ACCESS: "access",
    FLAG_CREATE: "create",
    FLAG_READ: "read",
    FLAG_UPDATE: "update",
    FLAG_DELETE: "delete",
}


@dataclass(frozen=True)
class NavigationItem:
    key: str
    label: str
    path: str
    section: str


NAVIGATION: tuple[NavigationItem, ...] = (
    NavigationItem(key="dashboard", label="Dashboard", path="/Employee", section="overview"),
    NavigationItem(key="products", label="Products", path="/Employee/Products", section="products"),
    NavigationItem(key="inventory", label="Inventory", path="/Employee/Inventory", section="inventory"),
    NavigationItem(key="orders", label="Orders", path="/Employee/Orders", section="orders"),
    NavigationItem(key="customers", label="Customers", path="/Employee/Users", section="customers"),
    NavigationItem(key="users", label="Users", path="/Employee/Users", section="users"),
    NavigationItem(key="transactions", label="Transactions", path="/Employee/Transactions", section="transactions"),
    NavigationItem(key="analytics", label="Analytics", path="/Employee/Analytics", section="analytics"),
    NavigationItem(key="reports", label="Reports", path="/Employee/Reports", section="reports"),
    NavigationItem(key="settings", label="Settings", path="/Employee/Settings", section="settings"),
)


def granular_capabilities(grid: PermissionGrid) -> set[str]:
    capabilities: set[str] = set()
    for section, flags in grid.items():
        for flag, prefix in _GRANULAR_PREFIXES.items():
            if flags.get(flag):
                capabilities.add(f"{prefix}_{section}")
    return capabilities


class ClientPermissionModel:
    def __init__(
        self,
        identity: Identity | None,
        granular: PermissionGrid | None = None,
        *,
        max_age: timedelta = timedelta(minutes=5),
        fetched_at: datetime | None = None,
    ) -> None:
        self.identity = identity
        self.granular: PermissionGrid = dict(granular or {})
        self.max_age = max_age
        self.fetched_at = fetched_at or datetime.now(UTC)
        self._denied_since_fetch = False
        self._effective = self._compute_effective()

    def _compute_effective(self) -> frozenset[str]:
        if self.identity is None:
            return frozenset()
        role_permissions = ROLE_PERMISSIONS.get(self.identity.role, frozenset())
        if self.identity.type is UserType.EMPLOYEE and self.granular:
            return role_permissions | granular_capabilities(self.granular)
        return role_permissions

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    def effective_permissions(self) -> list[str]:
        return sorted(self._effective)

    def has_permission(self, permission: str) -> bool:
        if self.identity is None:
            return False
        if self.identity.role is Role.ADMIN:
            return True
        return permission in self._effective

    def has_any_permission(self, permissions: Iterable[str]) -> bool:
        return any(self.has_permission(permission) for permission in permissions)

    def has_all_permissions(self, permissions: Iterable[str]) -> bool:
        if self.identity is None:
            return False
        return all(self.has_permission(permission) for permission in permissions)

    def has_role(self, role: str) -> bool:
        if self.identity is None:
            return False
        return self.identity.role == role

    def has_role_or_higher(self, role: str) -> bool:
        if self.identity is None:
            return False
        return role_level(self.identity.role) >= role_level(role)

    def role_level(self) -> int:
        if self.identity is None:
            return 0
        return ROLE_HIERARCHY.get(self.identity.role, 0)

    def has_section_permission(self, section: str, action: str = "view") -> bool:
        if self.identity is None:
            return False
        if self.identity.role is Role.ADMIN:
            return True
        required = SECTION_PERMISSIONS.get(section, {}).get(action)
        if not required:
            return False
        return self.has_any_permission(required)

    def can_access_dashboard_section(self, section: str) -> bool:
        if self.identity is None or self.identity.role is Role.CUSTOMER:
            return False
        if self.identity.role is Role.ADMIN:
            return True
        required = DASHBOARD_SECTIONS.get(section)
        if not required:
            return False
        if f"access_{section}" in self._effective:
            return True
        return self.has_all_permissions(required)

    def accessible_dashboard_sections(self) -> list[str]:
        return [section for section in DASHBOARD_SECTIONS if self.can_access_dashboard_section(section)]

    def navigation_items(self) -> list[NavigationItem]:
        items: list[NavigationItem] = []
        seen_paths: set[str] = set()
        for item in NAVIGATION:
            if item.path in seen_paths or not self.can_access_dashboard_section(item.section):
                continue
            seen_paths.add(item.path)
            items.append(item)
        return items

    def is_admin(self) -> bool:
        return self.has_role(Role.ADMIN)

    def is_customer(self) -> bool:
        return self.has_role(Role.CUSTOMER)

    def is_employee(self) -> bool:
        return self.has_role_or_higher(Role.EMPLOYEE) and not self.is_customer()

    def is_manager(self) -> bool:
        return self.has_role_or_higher(Role.INVENTORY_MANAGER)

    def is_support(self) -> bool:
        return self.has_role_or_higher(Role.ORDER_SUPPORT)

    def can_access_other_user_data(self, target_user_id: int) -> bool:
        if self.identity is None:
            return False
        if self.identity.id == target_user_id:
            return True
        return self.is_admin() or self.is_manager()

    # Refresh protocol: the server may change a live user's grid at any time.

    def mark_denied(self) -> None:
        """Record a 403 from the server; the cached grid is now suspect."""
        self._denied_since_fetch = True

    def is_stale(self, now: datetime | None = None) -> bool:
        if self._denied_since_fetch:
            return True
        current = now or datetime.now(UTC)
        return current - self.fetched_at >= self.max_age

    def refresh(self, granular: PermissionGrid, *, fetched_at: datetime | None = None) -> None:
        self.granular = dict(granular)
        self.fetched_at = fetched_at or datetime.now(UTC)
        self._denied_since_fetch = False
        self._effective = self._compute_effective()
