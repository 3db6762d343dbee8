"""
Permission model tests.

Verifies:
- Every capability granted to a role is defined
- Role lookups are total (unknown roles get nothing)
- Transition checks combine the capability with the role's scope
"""

import pytest

from factory_orders.errors import PermissionDeniedError
from factory_orders.permissions import (
    Actor,
    CAPABILITY_DEFINITIONS,
    DEFAULT_ROLE_CAPABILITIES,
    Role,
    SUCCESSORS,
    can_transition,
    get_all_capability_codes,
    get_capabilities,
    get_capability_definition,
    has_capability,
    is_reachable,
    require_capability,
    required_capability,
)


class TestCapabilityCatalogue:

    def test_codes_are_unique(self):
        codes = get_all_capability_codes()
        assert len(codes) == len(set(codes))

    def test_every_granted_capability_is_defined(self):
        defined = set(get_all_capability_codes())
        for role, capabilities in DEFAULT_ROLE_CAPABILITIES.items():
            assert capabilities <= defined, f"{role.value} grants undefined {capabilities - defined}"

    def test_every_role_has_an_entry(self):
        assert set(DEFAULT_ROLE_CAPABILITIES) == set(Role)

    def test_definition_lookup(self):
        definition = get_capability_definition("MANAGE_MARGINS")
        assert definition["code"] == "MANAGE_MARGINS"
        assert definition["category"] == "PRICING"
        assert get_capability_definition("NOPE") is None

    def test_definitions_have_four_fields(self):
        assert all(len(cap) == 4 for cap in CAPABILITY_DEFINITIONS)


class TestRoleLookup:

    def test_unknown_role_has_no_capabilities(self):
        assert get_capabilities("janitor") == frozenset()
        assert get_capabilities(None) == frozenset()
        assert not has_capability("janitor", "CREATE_ORDERS")

    def test_role_parse_accepts_strings(self):
        assert Role.parse(" Admin ") == Role.ADMIN
        assert Role.parse("manufacturer") == Role.MANUFACTURER
        assert Role.parse("") is None

    def test_only_super_admin_manages_system_config(self):
        holders = {role for role in Role if has_capability(role, "MANAGE_SYSTEM_CONFIG")}
        assert holders == {Role.SUPER_ADMIN}

    def test_only_super_admin_deletes_invoiced_products(self):
        assert has_capability(Role.SUPER_ADMIN, "DELETE_INVOICED_PRODUCTS")
        assert not has_capability(Role.ADMIN, "DELETE_INVOICED_PRODUCTS")

    def test_client_cannot_see_costs(self):
        assert not has_capability(Role.CLIENT, "VIEW_COSTS")
        assert has_capability(Role.MANUFACTURER, "VIEW_COSTS")

    def test_require_capability_raises_with_details(self):
        actor = Actor(user_id=9, role=Role.ORDER_CREATOR)
        with pytest.raises(PermissionDeniedError) as exc_info:
            require_capability(actor, "MANAGE_MARGINS")
        assert exc_info.value.details == {"required_capability": "MANAGE_MARGINS", "role": "order_creator"}

    def test_system_actor_is_not_staff(self):
        assert not Actor.system().is_staff
        assert Actor(user_id=1, role=Role.ORDER_APPROVER).is_staff


class TestTransitionTable:

    def test_successor_chain_ends_at_completed(self):
        status = "draft"
        visited = [status]
        while status in SUCCESSORS:
            status = SUCCESSORS[status]
            visited.append(status)
        assert visited[-1] == "completed"
        assert len(visited) == 8

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            ("draft", "priced_by_manufacturer"),
            ("submitted_to_manufacturer", "client_approved"),
            ("submitted_to_client", "submitted_to_manufacturer"),
            ("draft", "draft"),
            ("completed", "rejected"),
            ("rejected", "draft"),
        ],
    )
    def test_unreachable_moves(self, from_status, to_status):
        assert not is_reachable(from_status, to_status)
        assert required_capability(from_status, to_status) is None

    @pytest.mark.parametrize("from_status", ["draft", "priced_by_manufacturer", "in_production"])
    def test_rejection_reachable_before_completion(self, from_status):
        assert is_reachable(from_status, "rejected")
        assert required_capability(from_status, "rejected") == "REJECT_ITEMS"


class TestCanTransition:

    def test_manufacturer_scope(self):
        assert can_transition(Role.MANUFACTURER, "submitted_to_manufacturer", "priced_by_manufacturer")
        assert can_transition(Role.MANUFACTURER, "submitted_to_manufacturer", "rejected")
        assert not can_transition(Role.MANUFACTURER, "submitted_to_client", "rejected")
        assert not can_transition(Role.MANUFACTURER, "draft", "submitted_to_manufacturer")

    def test_client_scope(self):
        assert can_transition(Role.CLIENT, "submitted_to_client", "client_approved")
        assert can_transition(Role.CLIENT, "submitted_to_client", "rejected")
        assert not can_transition(Role.CLIENT, "client_approved", "ready_for_production")

    @pytest.mark.parametrize("role", [Role.SUPER_ADMIN, Role.ADMIN, Role.ORDER_APPROVER])
    def test_staff_may_take_every_forward_step(self, role):
        for from_status, to_status in SUCCESSORS.items():
            assert can_transition(role, from_status, to_status), f"{role.value}: {from_status} -> {to_status}"

    def test_order_creator_cannot_move_orders(self):
        assert not can_transition(Role.ORDER_CREATOR, "draft", "submitted_to_manufacturer")

    def test_system_role_never_transitions(self):
        assert not can_transition(Role.SYSTEM, "draft", "rejected")

    def test_unknown_role(self):
        assert not can_transition("janitor", "draft", "submitted_to_manufacturer")
