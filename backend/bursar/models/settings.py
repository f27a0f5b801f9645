from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class FinanceSetting(db.Model):
    """
    Typed key-value finance settings (VAT rate, approval threshold, ...).

    value_json holds the coerced value; the catalog in settings_catalog.py
    describes each supported key, its type and default.
    """
    __tablename__ = "finance_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False, unique=True, index=True)
    value_json = db.Column(db.JSON, nullable=True)
    value_type = db.Column(db.String(16), nullable=False)  # bool, decimal, string
    description = db.Column(db.Text, nullable=True)

    updated_by_user_id = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value_json,
            "value_type": self.value_type,
            "description": self.description,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
