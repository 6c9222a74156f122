# Overview: Role to capability table; the one place role logic lives.

"""
Capabilities

WHY: Routes and client screens ask "can this role do X?" instead of
re-deriving role rules. Both the API decorator and GET /api/auth/me use
this table.
"""

from __future__ import annotations

from .models.auth import ROLE_CASHIER, ROLE_OWNER, ROLE_STOCK_MANAGER


CAP_VIEW = "view"
CAP_SALES = "sales"
CAP_CUSTOMERS = "customers"
CAP_INVENTORY = "inventory"
CAP_FINANCE = "finance"
CAP_PARTNERS = "partners"
CAP_ADMIN = "admin"

ALL_CAPABILITIES = (
    CAP_VIEW,
    CAP_SALES,
    CAP_CUSTOMERS,
    CAP_INVENTORY,
    CAP_FINANCE,
    CAP_PARTNERS,
    CAP_ADMIN,
)

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    ROLE_OWNER: frozenset(ALL_CAPABILITIES),
    ROLE_CASHIER: frozenset({CAP_SALES, CAP_CUSTOMERS, CAP_VIEW}),
    ROLE_STOCK_MANAGER: frozenset({CAP_INVENTORY, CAP_VIEW}),
}


def can(role: str | None, capability: str) -> bool:
    """Unknown roles and unknown capabilities are always denied."""
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def capabilities_for(role: str | None) -> list[str]:
    granted = ROLE_CAPABILITIES.get(role, frozenset())
    return [cap for cap in ALL_CAPABILITIES if cap in granted]
