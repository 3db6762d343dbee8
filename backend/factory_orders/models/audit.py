from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..errors import IntegrityFault
from ..time_utils import to_utc_z, utcnow


class AuditLogEntry(db.Model):
    """
    Append-only record of every mutating action.

    IMMUTABLE: never updated or deleted by normal flow. target_id may point
    at a row that no longer exists; entries deliberately outlive their
    targets. old_value/new_value are JSON snapshots for display only.
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_target", "target_type", "target_id"),
        db.Index("ix_audit_log_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(db.Integer, nullable=True, index=True)
    actor_name = db.Column(db.String(160), nullable=True)
    actor_role = db.Column(db.String(32), nullable=True)

    action_type = db.Column(db.String(64), nullable=False, index=True)
    target_type = db.Column(db.String(32), nullable=False)
    target_id = db.Column(db.Integer, nullable=True)

    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "actor_name": self.actor_name,
            "actor_role": self.actor_role,
            "action_type": self.action_type,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "occurred_at": to_utc_z(self.occurred_at),
        }


@event.listens_for(AuditLogEntry, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise IntegrityFault(f"Audit entry {target.id} is immutable")


@event.listens_for(AuditLogEntry, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise IntegrityFault(f"Audit entry {target.id} cannot be deleted")
