from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


DEFAULT_MARGIN_KEY = "default_margin_percentage"
DEFAULT_SHIPPING_MARGIN_KEY = "default_shipping_margin_percentage"
MARGIN_CONFIG_KEYS = (DEFAULT_MARGIN_KEY, DEFAULT_SHIPPING_MARGIN_KEY)


class SystemConfig(db.Model):
    """
    Process-wide key/value configuration.

    Read-mostly; only administrative actions write here. Services never read
    it mid-computation: margin_service.load_margin_config() takes a typed
    snapshot once per operation.
    """
    __tablename__ = "system_config"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    config_key = db.Column(db.String(128), nullable=False, unique=True, index=True)
    config_value = db.Column(db.Text, nullable=True)
    updated_by_user_id = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "config_key": self.config_key,
            "config_value": self.config_value,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
