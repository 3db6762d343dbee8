# Overview: Domain error taxonomy shared by services and routes.

"""
Every error raised by the engine derives from OrderEngineError so the HTTP
layer can map it to a status code and a machine-readable `code`.

Batch operations (draft sweep, margin repair) do not raise for per-order
failures; they return report objects instead (see cleanup_service and
margin_service).
"""

from __future__ import annotations


class OrderEngineError(Exception):
    """Base class for domain errors."""
    code = "error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": str(self), "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(OrderEngineError):
    """400-level input problem. Raised before any mutation."""
    code = "validation_error"


class NotFoundError(OrderEngineError):
    code = "not_found"


class PermissionDeniedError(OrderEngineError):
    """Actor's role lacks the capability required by the operation."""
    code = "permission_denied"


# PreconditionFailed reasons
REASON_INVALID_TRANSITION = "invalid_transition"
REASON_PERMISSION_DENIED = "permission_denied"
REASON_UNRESOLVED_PRICING = "unresolved_pricing"
REASON_STALE_STATE = "stale_state"
REASON_ALREADY_PAID = "already_paid"
REASON_INVOICE_PROTECTED = "invoice_protected"
REASON_TERMINAL_ORDER = "terminal_order"


class PreconditionFailed(OrderEngineError):
    """
    Operation is illegal for the current state, role or pricing completeness.

    `reason` tells the caller which precondition failed so the UI can render
    a specific message.
    """
    code = "precondition_failed"

    def __init__(self, reason: str, message: str, details: dict | None = None):
        super().__init__(message, details)
        self.reason = reason

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["reason"] = self.reason
        return payload


class ConfigurationMissing(OrderEngineError):
    """A SystemConfig default was needed for price resolution but is absent."""
    code = "configuration_missing"

    def __init__(self, key: str):
        super().__init__(
            f"System configuration '{key}' is not set; seed defaults before pricing",
            {"config_key": key},
        )
        self.key = key


class Locked(OrderEngineError):
    """Manufacturer-facing price edit attempted on a locked product."""
    code = "locked"


class IntegrityFault(OrderEngineError):
    """
    A guard that should be unreachable was bypassed (orphaned dependency,
    audit mutation). Treated as a bug signal.
    """
    code = "integrity_fault"
