# Overview: Service-layer operations for notifications; appends to the outbox table.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Notification


TYPE_INFO = "info"
TYPE_WARNING = "warning"
TYPE_ACTION_REQUIRED = "action_required"


def notify(user_id: int | None, type: str, message: str, related_order_id: int | None = None) -> Notification | None:
    """
    Queue an in-app notification. Fire-and-forget: a failure is logged and
    never propagates to the operation that triggered it.
    """
    if user_id is None:
        return None
    try:
        nested = db.session.begin_nested()
        try:
            note = Notification(user_id=user_id, type=type, message=message, order_id=related_order_id)
            db.session.add(note)
            nested.commit()
        except Exception:
            nested.rollback()
            raise
        return note
    except Exception:
        current_app.logger.warning("Notification to user %s failed (%s)", user_id, type, exc_info=True)
        return None
