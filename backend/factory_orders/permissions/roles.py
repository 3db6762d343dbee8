# Overview: Role catalogue, role -> capability table, and the Actor value object.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..models.orders import (
    STATUS_SUBMITTED_TO_MANUFACTURER,
    STATUS_PRICED_BY_MANUFACTURER,
    STATUS_SUBMITTED_TO_CLIENT,
    STATUS_CLIENT_APPROVED,
    STATUS_REJECTED,
)


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    ORDER_APPROVER = "order_approver"
    ORDER_CREATOR = "order_creator"
    MANUFACTURER = "manufacturer"
    CLIENT = "client"
    # Scheduler / cron caller, never a human login
    SYSTEM = "system"

    @classmethod
    def parse(cls, value) -> "Role | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


STAFF_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.ORDER_APPROVER, Role.ORDER_CREATOR})

_STATUS_FLOW = {
    "UPDATE_ORDER_STATUS",
    "SEND_TO_MANUFACTURER",
    "SUBMIT_PRICING",
    "SEND_TO_CLIENT",
}

DEFAULT_ROLE_CAPABILITIES: dict[Role, frozenset[str]] = {
    Role.SUPER_ADMIN: frozenset({
        "CREATE_ORDERS", "EDIT_ORDERS", "DELETE_PRODUCTS", "DELETE_INVOICED_PRODUCTS",
        "ROUTE_PRODUCTS", "LOCK_PRODUCTS",
        "EDIT_MANUFACTURER_PRICING", "MANAGE_MARGINS", "MANAGE_SYSTEM_CONFIG", "VIEW_COSTS",
        "APPROVE_ITEMS", "REJECT_ITEMS",
        *_STATUS_FLOW,
        "RECORD_PAYMENTS",
        "RUN_MAINTENANCE", "VIEW_DIAGNOSTICS", "VIEW_DELETED_ITEMS",
        "VIEW_AUDIT_LOG",
    }),
    Role.ADMIN: frozenset({
        "CREATE_ORDERS", "EDIT_ORDERS", "DELETE_PRODUCTS",
        "ROUTE_PRODUCTS", "LOCK_PRODUCTS",
        "APPROVE_ITEMS", "REJECT_ITEMS",
        *_STATUS_FLOW,
        "RECORD_PAYMENTS",
        "VIEW_DIAGNOSTICS", "VIEW_DELETED_ITEMS",
        "VIEW_AUDIT_LOG",
    }),
    Role.ORDER_APPROVER: frozenset({
        "CREATE_ORDERS", "EDIT_ORDERS",
        "ROUTE_PRODUCTS",
        "MANAGE_MARGINS",
        "APPROVE_ITEMS", "REJECT_ITEMS",
        *_STATUS_FLOW,
        "VIEW_AUDIT_LOG",
    }),
    Role.ORDER_CREATOR: frozenset({
        "CREATE_ORDERS", "EDIT_ORDERS",
        "VIEW_AUDIT_LOG",
    }),
    Role.MANUFACTURER: frozenset({
        "EDIT_MANUFACTURER_PRICING", "VIEW_COSTS",
        "REJECT_ITEMS",
        "SUBMIT_PRICING",
        "VIEW_AUDIT_LOG",
    }),
    Role.CLIENT: frozenset({
        "APPROVE_ITEMS", "REJECT_ITEMS",
    }),
    Role.SYSTEM: frozenset({
        "RUN_MAINTENANCE", "VIEW_DIAGNOSTICS",
        "RECORD_PAYMENTS",
    }),
}

# Roles limited to specific (from, to) status moves. Roles absent here are unscoped.
ROLE_TRANSITION_SCOPES: dict[Role, frozenset[tuple[str, str]]] = {
    Role.MANUFACTURER: frozenset({
        (STATUS_SUBMITTED_TO_MANUFACTURER, STATUS_PRICED_BY_MANUFACTURER),
        (STATUS_SUBMITTED_TO_MANUFACTURER, STATUS_REJECTED),
    }),
    Role.CLIENT: frozenset({
        (STATUS_SUBMITTED_TO_CLIENT, STATUS_CLIENT_APPROVED),
        (STATUS_SUBMITTED_TO_CLIENT, STATUS_REJECTED),
    }),
    Role.SYSTEM: frozenset(),
}


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation. Identity comes from the auth gateway."""
    user_id: int | None
    role: Role
    name: str | None = None

    @classmethod
    def system(cls, name: str = "system") -> "Actor":
        return cls(user_id=None, role=Role.SYSTEM, name=name)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "role": self.role.value, "name": self.name}
