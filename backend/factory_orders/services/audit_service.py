# Overview: Service-layer operations for the audit trail.

"""
Append-only audit logging.

record() is called on every mutating path, success or refusal. It must
never break the operation it describes: the insert runs inside a SAVEPOINT
and any failure is logged and dropped, leaving the caller's transaction
intact.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import AuditLogEntry
from ..permissions import Actor


# Action types
ACTION_STATUS_CHANGED = "order_status_changed"
ACTION_STATUS_REJECTED = "order_status_rejected"
ACTION_ORDER_CREATED = "order_created"
ACTION_PRODUCT_ADDED = "product_added"
ACTION_PRODUCT_DELETED = "product_deleted"
ACTION_PRODUCT_ROUTED = "product_routed"
ACTION_PRODUCT_LOCKED = "product_locked"
ACTION_PRODUCT_UNLOCKED = "product_unlocked"
ACTION_PRICE_UPDATED = "manufacturer_price_updated"
ACTION_PRICE_BLOCKED = "locked_price_edit_blocked"
ACTION_MARGIN_OVERRIDE = "product_margin_override_set"
ACTION_ORDER_MARGIN = "order_margin_set"
ACTION_SYSTEM_CONFIG = "system_config_set"
ACTION_MARGIN_REPAIR = "margin_repair"
ACTION_ITEM_APPROVAL = "item_approval_set"
ACTION_SAMPLE_UPDATED = "sample_updated"
ACTION_INVOICE_PAID = "invoice_paid"
ACTION_DRAFT_PURGED = "draft_order_purged"


def _serialize(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str, sort_keys=True)


def record(
    actor: Actor | None,
    action_type: str,
    target_type: str,
    target_id: int | None,
    old_value: Any = None,
    new_value: Any = None,
) -> AuditLogEntry | None:
    """
    Append one audit entry. Returns the entry, or None when the write failed.

    The entry is flushed within a SAVEPOINT; it becomes durable with the
    caller's commit.
    """
    try:
        nested = db.session.begin_nested()
        try:
            entry = AuditLogEntry(
                actor_user_id=actor.user_id if actor else None,
                actor_name=actor.name if actor else None,
                actor_role=actor.role.value if actor else None,
                action_type=action_type,
                target_type=target_type,
                target_id=target_id,
                old_value=_serialize(old_value),
                new_value=_serialize(new_value),
            )
            db.session.add(entry)
            nested.commit()
        except Exception:
            nested.rollback()
            raise
        return entry
    except Exception:
        current_app.logger.warning(
            "Audit write failed for %s on %s %s", action_type, target_type, target_id, exc_info=True
        )
        return None


def list_entries(
    *,
    target_type: str | None = None,
    target_id: int | None = None,
    action_type: str | None = None,
    actor_user_id: int | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[AuditLogEntry], int]:
    """Newest-first audit entries with optional filters. Returns (entries, total)."""
    query = db.session.query(AuditLogEntry)
    if target_type:
        query = query.filter(AuditLogEntry.target_type == target_type)
    if target_id is not None:
        query = query.filter(AuditLogEntry.target_id == target_id)
    if action_type:
        query = query.filter(AuditLogEntry.action_type == action_type)
    if actor_user_id is not None:
        query = query.filter(AuditLogEntry.actor_user_id == actor_user_id)
    if since is not None:
        query = query.filter(AuditLogEntry.occurred_at >= since)
    if until is not None:
        query = query.filter(AuditLogEntry.occurred_at <= until)

    total = query.count()
    entries = (
        query.order_by(AuditLogEntry.occurred_at.desc(), AuditLogEntry.id.desc())
        .limit(max(1, min(limit, 500)))
        .offset(max(0, offset))
        .all()
    )
    return entries, total
