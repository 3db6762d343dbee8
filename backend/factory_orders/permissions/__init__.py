# Overview: Permission model package.
# Role is a tagged enum; capabilities are plain string codes looked up in a
# table, so adding a role is one entry in roles.py.

from .categories import CapabilityCategory
from .definitions import (
    CAPABILITY_DEFINITIONS,
    ORDER_CAPABILITIES,
    ROUTING_CAPABILITIES,
    PRICING_CAPABILITIES,
    APPROVAL_CAPABILITIES,
    STATUS_CAPABILITIES,
    BILLING_CAPABILITIES,
    MAINTENANCE_CAPABILITIES,
    AUDIT_CAPABILITIES,
)
from .roles import Actor, Role, STAFF_ROLES, DEFAULT_ROLE_CAPABILITIES, ROLE_TRANSITION_SCOPES
from .transitions import SUCCESSORS, is_reachable, required_capability
from .helpers import (
    get_all_capability_codes,
    get_capability_definition,
    get_capabilities,
    has_capability,
    require_capability,
    can_transition,
)

__all__ = [
    "CapabilityCategory",
    "CAPABILITY_DEFINITIONS",
    "ORDER_CAPABILITIES",
    "ROUTING_CAPABILITIES",
    "PRICING_CAPABILITIES",
    "APPROVAL_CAPABILITIES",
    "STATUS_CAPABILITIES",
    "BILLING_CAPABILITIES",
    "MAINTENANCE_CAPABILITIES",
    "AUDIT_CAPABILITIES",
    "Actor",
    "Role",
    "STAFF_ROLES",
    "DEFAULT_ROLE_CAPABILITIES",
    "ROLE_TRANSITION_SCOPES",
    "SUCCESSORS",
    "is_reachable",
    "required_capability",
    "get_all_capability_codes",
    "get_capability_definition",
    "get_capabilities",
    "has_capability",
    "require_capability",
    "can_transition",
]
