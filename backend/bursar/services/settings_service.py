# Overview: Typed finance settings backed by the finance_settings table.

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import FinanceSetting
from ..settings_catalog import CATALOG_BY_KEY, SETTINGS_CATALOG
from .concurrency import run_with_retry


VAT_RATE = "default_vat_rate"
APPROVAL_THRESHOLD = "expense_approval_threshold"
DEFAULT_CURRENCY = "default_currency"
APPROVAL_REQUIRED = "expense_approval_required"
ALLOW_OVERDRAFT = "allow_overdraft"


def ensure_settings_seeded() -> int:
    """Insert catalog rows that are missing. Safe to call repeatedly."""
    def _op() -> int:
        existing = {key for (key,) in db.session.query(FinanceSetting.key).all()}
        to_add = [row for row in SETTINGS_CATALOG if row["key"] not in existing]
        for row in to_add:
            db.session.add(
                FinanceSetting(
                    key=row["key"],
                    value_json=row["default_value_json"],
                    value_type=row["type"],
                    description=row.get("description"),
                )
            )
        return len(to_add)

    return run_with_retry(_op)


def _catalog_row(key: str) -> dict:
    row = CATALOG_BY_KEY.get(key)
    if not row:
        raise NotFoundError(f"Unknown setting: {key}")
    return row


def _coerce_value(row: dict, raw_value: Any) -> Any:
    t = row["type"]
    key = row["key"]
    rules = row.get("validation_json") or {}
    v = raw_value
    if t == "bool":
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            s = v.strip().lower()
            if s in {"true", "1", "yes", "on"}:
                return True
            if s in {"false", "0", "no", "off"}:
                return False
        raise ValidationError(f"{key}: expected boolean")
    if t == "decimal":
        if isinstance(v, bool):
            raise ValidationError(f"{key}: expected number")
        try:
            d = Decimal(str(v).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{key}: expected number")
        if not d.is_finite():
            raise ValidationError(f"{key}: expected number")
        if "min" in rules and d < Decimal(str(rules["min"])):
            raise ValidationError(f"{key}: must be >= {rules['min']}")
        if "max" in rules and d > Decimal(str(rules["max"])):
            raise ValidationError(f"{key}: must be <= {rules['max']}")
        # Stored as a string so JSON never rounds it through a float
        return str(d)
    if t == "string":
        if v is None:
            raise ValidationError(f"{key}: expected string")
        s = str(v).strip()
        pattern = rules.get("pattern")
        if pattern and not re.match(pattern, s):
            raise ValidationError(f"{key}: invalid format")
        return s
    raise ValidationError(f"{key}: unsupported type {t}")


def _typed(row: dict, stored: Any) -> Any:
    if row["type"] == "decimal":
        return Decimal(str(stored))
    return stored


def get_setting(key: str) -> Any:
    """
    Effective value for a setting key.

    decimal -> Decimal, bool -> bool, string -> str. Falls back to the catalog
    default when the row has not been seeded.
    """
    row = _catalog_row(key)
    setting = db.session.query(FinanceSetting).filter_by(key=key).first()
    if setting is None or setting.value_json is None:
        return _typed(row, row["default_value_json"])
    return _typed(row, setting.value_json)


def set_setting(key: str, value: Any, user_id: int | None = None) -> FinanceSetting:
    row = _catalog_row(key)
    coerced = _coerce_value(row, value)

    def _op():
        setting = db.session.query(FinanceSetting).filter_by(key=key).first()
        if setting is None:
            setting = FinanceSetting(key=key, value_type=row["type"], description=row.get("description"))
            db.session.add(setting)
        setting.value_json = coerced
        setting.updated_by_user_id = user_id
        db.session.flush()
        return setting

    return run_with_retry(_op)


def list_settings() -> dict[str, dict]:
    stored = {s.key: s for s in db.session.query(FinanceSetting).all()}
    result = {}
    for row in SETTINGS_CATALOG:
        setting = stored.get(row["key"])
        result[row["key"]] = {
            "value": _typed(row, setting.value_json if setting and setting.value_json is not None else row["default_value_json"]),
            "type": row["type"],
            "description": row.get("description"),
            "source": "stored" if setting else "default",
        }
    return result
