# Overview: Utility functions for capability lookups and checks.

from __future__ import annotations

from ..errors import PermissionDeniedError
from .definitions import CAPABILITY_DEFINITIONS
from .roles import DEFAULT_ROLE_CAPABILITIES, ROLE_TRANSITION_SCOPES, Actor, Role
from .transitions import required_capability


def get_all_capability_codes():
    """Get list of all capability codes."""
    return [cap[0] for cap in CAPABILITY_DEFINITIONS]


def get_capability_definition(code):
    """Get full definition for a capability code."""
    for cap in CAPABILITY_DEFINITIONS:
        if cap[0] == code:
            return {
                "code": cap[0],
                "name": cap[1],
                "description": cap[2],
                "category": cap[3],
            }
    return None


def get_capabilities(role) -> frozenset[str]:
    """Capability set for a role; unknown or missing roles get nothing."""
    parsed = Role.parse(role) if role is not None else None
    if parsed is None:
        return frozenset()
    return DEFAULT_ROLE_CAPABILITIES.get(parsed, frozenset())


def has_capability(role, code: str) -> bool:
    return code in get_capabilities(role)


def require_capability(actor: Actor, code: str) -> None:
    if not has_capability(actor.role, code):
        raise PermissionDeniedError(
            f"Role '{actor.role.value}' lacks capability {code}",
            {"required_capability": code, "role": actor.role.value},
        )


def can_transition(role, from_status: str, to_status: str) -> bool:
    """
    Role check for one status move: the role must hold the move's capability
    and, when the role is scoped, the move must be inside its scope.
    """
    parsed = Role.parse(role)
    if parsed is None:
        return False
    code = required_capability(from_status, to_status)
    if code is None or code not in get_capabilities(parsed):
        return False
    scope = ROLE_TRANSITION_SCOPES.get(parsed)
    if scope is not None and (from_status, to_status) not in scope:
        return False
    return True
