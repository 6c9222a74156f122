from __future__ import annotations

from ..extensions import db
from mdcars.time_utils import to_utc_z, utcnow


SETTING_TYPES = ("string", "number", "boolean")


class Setting(db.Model):
    """
    Runtime business settings (store name, exchange rate, default currency).

    Values are stored as text; value_type tells the service how to
    validate an update.
    """
    __tablename__ = "settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False, unique=True)
    value = db.Column(db.Text, nullable=False)
    value_type = db.Column(db.String(16), nullable=False, default="string")
    description = db.Column(db.Text, nullable=True)

    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "type": self.value_type,
            "description": self.description,
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Sequence(db.Model):
    """
    Named counters for human-readable numbers.

    WHY: count(*)+1 hands out duplicates under concurrent inserts. The
    counter row is bumped with an atomic UPDATE inside the caller's
    transaction (services/sequence_service.py).
    """
    __tablename__ = "sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    # e.g. "sale:20250115", "expense", "revenue", "sku"
    name = db.Column(db.String(64), nullable=False, unique=True)
    next_value = db.Column(db.Integer, nullable=False, default=1)
