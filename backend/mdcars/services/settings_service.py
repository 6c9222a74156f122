from __future__ import annotations

import logging
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Setting
from ..money import CURRENCIES, format_rate, parse_rate
from ..validation import NotFoundError, ValidationError, coerce_str
from .concurrency import atomic


logger = logging.getLogger(__name__)


KEY_STORE_NAME = "store_name"
KEY_EXCHANGE_RATE = "exchange_rate"
KEY_CURRENCY_DEFAULT = "currency_default"

# key -> (type, description)
DEFAULT_SETTINGS = {
    KEY_STORE_NAME: ("string", "Store name shown on invoices"),
    KEY_EXCHANGE_RATE: ("number", "USD to LYD exchange rate"),
    KEY_CURRENCY_DEFAULT: ("string", "Default currency for new sales"),
}


def _default_value(key: str) -> str:
    if key == KEY_STORE_NAME:
        return current_app.config["STORE_NAME"]
    if key == KEY_EXCHANGE_RATE:
        return format_rate(parse_rate(current_app.config["DEFAULT_EXCHANGE_RATE"]))
    return "LYD"


def seed_default_settings() -> list[str]:
    """Insert any missing default settings. Returns the keys created. Does not commit."""
    existing = {key for (key,) in db.session.query(Setting.key).all()}
    created = []
    for key, (value_type, description) in DEFAULT_SETTINGS.items():
        if key in existing:
            continue
        db.session.add(Setting(key=key, value=_default_value(key), value_type=value_type, description=description))
        created.append(key)
    db.session.flush()
    return created


def list_settings() -> list[Setting]:
    return db.session.query(Setting).order_by(Setting.key.asc()).all()


def get_setting(key: str) -> Setting:
    setting = db.session.query(Setting).filter_by(key=key).first()
    if not setting:
        raise NotFoundError("Setting not found", {"key": key})
    return setting


def _validate_value(key: str, value_type: str, value) -> str:
    if key == KEY_EXCHANGE_RATE:
        return format_rate(parse_rate(value, "exchange_rate"))
    if key == KEY_CURRENCY_DEFAULT:
        if value not in CURRENCIES:
            raise ValidationError(f"Invalid currency: {value}. Must be one of {list(CURRENCIES)}")
        return value
    if value_type == "number":
        try:
            return str(Decimal(str(value)))
        except ArithmeticError:
            raise ValidationError(f"{key} must be a number")
    if value_type == "boolean":
        if str(value).lower() not in ("true", "false"):
            raise ValidationError(f"{key} must be true or false")
        return str(value).lower()
    return coerce_str(value, key, required=True, max_length=500)


def upsert_setting(key: str, value, *, actor_user_id: int, description: str | None = None) -> Setting:
    key = coerce_str(key, "key", required=True, max_length=128)

    def _op():
        setting = db.session.query(Setting).filter_by(key=key).first()
        if setting is None:
            value_type = DEFAULT_SETTINGS.get(key, ("string", None))[0]
            setting = Setting(key=key, value_type=value_type, description=description)
            db.session.add(setting)
        setting.value = _validate_value(key, setting.value_type, value)
        if description is not None:
            setting.description = description
        setting.updated_by_user_id = actor_user_id
        db.session.flush()
        return setting

    setting = atomic(_op)
    logger.info("Setting %s updated by user %s", key, actor_user_id)
    return setting


def get_exchange_rate() -> Decimal:
    """Current USD->LYD rate: the exchange_rate setting, else the configured default."""
    setting = db.session.query(Setting).filter_by(key=KEY_EXCHANGE_RATE).first()
    if setting is not None:
        return parse_rate(setting.value)
    return parse_rate(current_app.config["DEFAULT_EXCHANGE_RATE"])


def get_default_currency() -> str:
    setting = db.session.query(Setting).filter_by(key=KEY_CURRENCY_DEFAULT).first()
    if setting is not None and setting.value in CURRENCIES:
        return setting.value
    return "LYD"
