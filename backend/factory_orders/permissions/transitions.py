# Overview: Order status successor table and the capability each move requires.

from ..models.orders import (
    STATUS_DRAFT,
    STATUS_SUBMITTED_TO_MANUFACTURER,
    STATUS_PRICED_BY_MANUFACTURER,
    STATUS_SUBMITTED_TO_CLIENT,
    STATUS_CLIENT_APPROVED,
    STATUS_READY_FOR_PRODUCTION,
    STATUS_IN_PRODUCTION,
    STATUS_COMPLETED,
    STATUS_REJECTED,
    TERMINAL_STATUSES,
)


SUCCESSORS = {
    STATUS_DRAFT: STATUS_SUBMITTED_TO_MANUFACTURER,
    STATUS_SUBMITTED_TO_MANUFACTURER: STATUS_PRICED_BY_MANUFACTURER,
    STATUS_PRICED_BY_MANUFACTURER: STATUS_SUBMITTED_TO_CLIENT,
    STATUS_SUBMITTED_TO_CLIENT: STATUS_CLIENT_APPROVED,
    STATUS_CLIENT_APPROVED: STATUS_READY_FOR_PRODUCTION,
    STATUS_READY_FOR_PRODUCTION: STATUS_IN_PRODUCTION,
    STATUS_IN_PRODUCTION: STATUS_COMPLETED,
}

# Capability needed to perform each forward move
FORWARD_CAPABILITIES = {
    STATUS_SUBMITTED_TO_MANUFACTURER: "SEND_TO_MANUFACTURER",
    STATUS_PRICED_BY_MANUFACTURER: "SUBMIT_PRICING",
    STATUS_SUBMITTED_TO_CLIENT: "SEND_TO_CLIENT",
    STATUS_CLIENT_APPROVED: "APPROVE_ITEMS",
    STATUS_READY_FOR_PRODUCTION: "UPDATE_ORDER_STATUS",
    STATUS_IN_PRODUCTION: "UPDATE_ORDER_STATUS",
    STATUS_COMPLETED: "UPDATE_ORDER_STATUS",
}

REJECT_CAPABILITY = "REJECT_ITEMS"


def is_reachable(from_status: str, to_status: str) -> bool:
    """
    A move is reachable when it is the direct successor, or a rejection
    from any non-terminal state. Same-state moves are not transitions.
    """
    if from_status in TERMINAL_STATUSES:
        return False
    if to_status == STATUS_REJECTED:
        return True
    return SUCCESSORS.get(from_status) == to_status


def required_capability(from_status: str, to_status: str) -> str | None:
    if not is_reachable(from_status, to_status):
        return None
    if to_status == STATUS_REJECTED:
        return REJECT_CAPABILITY
    return FORWARD_CAPABILITIES[to_status]
