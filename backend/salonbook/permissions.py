"""
Role Permission Matrix

Static role -> capability table used by checkout authorization.

DESIGN PRINCIPLES:
- Capabilities are "resource:action" strings ("bills:write")
- "resource:*" grants every action on a resource, "*" grants everything
- The table is passed explicitly to has_permission(); nothing reads it from
  module state at request time, so tests and tenants can swap it out
"""

from __future__ import annotations

from typing import Mapping, Iterable


# =============================================================================
# CAPABILITIES
# =============================================================================

PERMISSIONS = {
    "ALL": "*",

    "BRANCH_READ": "branch:read",
    "BRANCH_WRITE": "branch:write",

    "USERS_READ": "users:read",
    "USERS_WRITE": "users:write",

    "APPOINTMENTS_READ_OWN": "appointments:read:own",
    "APPOINTMENTS_MANAGE": "appointments:*",

    "CUSTOMERS_READ": "customers:read",
    "CUSTOMERS_WRITE": "customers:write",
    "CUSTOMERS_READ_LIMITED": "customers:read:limited",
    "CUSTOMERS_MANAGE": "customers:*",

    "SERVICES_READ": "services:read",

    "BILLS_READ": "bills:read",
    "BILLS_WRITE": "bills:write",
    "BILLS_READ_OWN": "bills:read:own",
    "BILLS_MANAGE": "bills:*",

    "REPORTS_READ": "reports:read",
    "REPORTS_READ_BRANCH": "reports:read:branch",
    "REPORTS_READ_FINANCIAL": "reports:read:financial",

    "INVENTORY_READ": "inventory:read",
    "INVENTORY_MANAGE": "inventory:*",

    "EXPENSES_READ": "expenses:read",
    "EXPENSES_WRITE": "expenses:write",
    "EXPENSES_MANAGE": "expenses:*",

    "MARKETING_WRITE_BRANCH": "marketing:write:branch",
    "MARKETING_MANAGE": "marketing:*",
}


# =============================================================================
# DEFAULT ROLE MAPPING
# =============================================================================

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "super_owner": frozenset({PERMISSIONS["ALL"]}),

    "regional_manager": frozenset({
        PERMISSIONS["BRANCH_READ"],
        PERMISSIONS["BRANCH_WRITE"],
        PERMISSIONS["USERS_READ"],
        PERMISSIONS["USERS_WRITE"],
        PERMISSIONS["APPOINTMENTS_MANAGE"],
        PERMISSIONS["CUSTOMERS_MANAGE"],
        PERMISSIONS["SERVICES_READ"],
        PERMISSIONS["BILLS_MANAGE"],
        PERMISSIONS["REPORTS_READ"],
        PERMISSIONS["INVENTORY_MANAGE"],
        PERMISSIONS["EXPENSES_MANAGE"],
        PERMISSIONS["MARKETING_MANAGE"],
    }),

    "branch_manager": frozenset({
        PERMISSIONS["BRANCH_READ"],
        PERMISSIONS["USERS_READ"],
        PERMISSIONS["APPOINTMENTS_MANAGE"],
        PERMISSIONS["CUSTOMERS_MANAGE"],
        PERMISSIONS["SERVICES_READ"],
        PERMISSIONS["BILLS_MANAGE"],
        PERMISSIONS["REPORTS_READ_BRANCH"],
        PERMISSIONS["INVENTORY_MANAGE"],
        PERMISSIONS["EXPENSES_WRITE"],
        PERMISSIONS["MARKETING_WRITE_BRANCH"],
    }),

    "receptionist": frozenset({
        PERMISSIONS["APPOINTMENTS_MANAGE"],
        PERMISSIONS["CUSTOMERS_READ"],
        PERMISSIONS["CUSTOMERS_WRITE"],
        PERMISSIONS["BILLS_READ"],
        PERMISSIONS["BILLS_WRITE"],
        PERMISSIONS["SERVICES_READ"],
    }),

    "stylist": frozenset({
        PERMISSIONS["APPOINTMENTS_READ_OWN"],
        PERMISSIONS["CUSTOMERS_READ_LIMITED"],
        PERMISSIONS["SERVICES_READ"],
        PERMISSIONS["BILLS_READ_OWN"],
    }),

    "accountant": frozenset({
        PERMISSIONS["BILLS_READ"],
        PERMISSIONS["REPORTS_READ"],
        PERMISSIONS["REPORTS_READ_FINANCIAL"],
        PERMISSIONS["EXPENSES_READ"],
        PERMISSIONS["INVENTORY_READ"],
    }),
}


def has_permission(role: str | None, permission_code: str, table: Mapping[str, Iterable[str]]) -> bool:
    """
    Check whether a role holds a capability in the given table.

    "bills:*" covers "bills:write" and "bills:read:own"; "*" covers everything.
    Unknown roles hold nothing.
    """
    if not role:
        return False

    granted = set(table.get(role, ()))
    if not granted:
        return False

    if PERMISSIONS["ALL"] in granted or permission_code in granted:
        return True

    resource = permission_code.split(":", 1)[0]
    return f"{resource}:*" in granted


def get_role_permissions(role: str, table: Mapping[str, Iterable[str]]) -> list[str]:
    """Sorted capability list for a role (empty for unknown roles)."""
    return sorted(table.get(role, ()))
