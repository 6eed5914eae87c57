"""
Free-form catalog metadata stored in ``app_info``.
"""

from __future__ import annotations

from typing import Optional

from catalog.db import DB
from catalog.models import AppInfo
from catalog.services.shared import (
    _validate_optional_text,
    _validate_required_text,
    MAX_LABEL_LENGTH,
    MAX_TEXT_LENGTH,
)


def get_app_info(label: str) -> Optional[str]:
    _validate_required_text(label, "label", MAX_LABEL_LENGTH)
    db = DB.SessionLocal()
    try:
        row = db.get(AppInfo, label)
        return row.value if row else None
    finally:
        db.close()


def set_app_info(label: str, value: Optional[str]) -> dict:
    _validate_required_text(label, "label", MAX_LABEL_LENGTH)
    _validate_optional_text(value, "value", MAX_TEXT_LENGTH)
    db = DB.SessionLocal()
    try:
        db.merge(AppInfo(label=label, value=value))
        db.commit()
        return {"label": label, "value": value}
    finally:
        db.close()


def list_app_info() -> dict:
    db = DB.SessionLocal()
    try:
        return {row.label: row.value for row in db.query(AppInfo).order_by(AppInfo.label).all()}
    finally:
        db.close()
