from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Client(db.Model):
    """
    Client organization that places orders.

    order_prefix drives the human-readable order number (e.g. "ACM-000042").
    user_id is the login that receives client-facing notifications.
    """
    __tablename__ = "clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    order_prefix = db.Column(db.String(8), nullable=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "order_prefix": self.order_prefix,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Manufacturer(db.Model):
    """Factory partner that prices and produces order products."""
    __tablename__ = "manufacturers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
