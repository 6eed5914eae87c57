"""
Base registry services: named scan roots that own item trees.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from catalog.db import DB
from catalog.errors import DuplicateLabel, NotFound
from catalog.models import CatalogBase, Item
from catalog.services.shared import (
    _collect_subtree_ids,
    _delete_items,
    _require_base,
    _validate_id,
    _validate_required_text,
    MAX_LABEL_LENGTH,
    base_write_lock,
    logger,
    serialize_base,
)


def register_base(label: str) -> dict:
    """Register a new base; the label must be unused."""
    _validate_required_text(label, "label", MAX_LABEL_LENGTH)

    db = DB.SessionLocal()
    try:
        existing = db.query(CatalogBase.id).filter(CatalogBase.label == label).first()
        if existing:
            raise DuplicateLabel(f"Base label already exists: {label}", field="label")

        base = CatalogBase(label=label, is_checked=True)
        db.add(base)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise DuplicateLabel(f"Base label already exists: {label}", field="label") from exc
        db.refresh(base)
        logger.info("Base registered", extra={"base_id": base.id, "label": label})
        return serialize_base(base)
    finally:
        db.close()


def find_or_create_base(label: str) -> dict:
    """Return the base for ``label`` re-marked as checked, creating it when missing."""
    _validate_required_text(label, "label", MAX_LABEL_LENGTH)

    db = DB.SessionLocal()
    try:
        base = db.query(CatalogBase).filter(CatalogBase.label == label).first()
        if base:
            base.is_checked = True
            db.commit()
            db.refresh(base)
            return serialize_base(base)
    finally:
        db.close()

    try:
        return register_base(label)
    except DuplicateLabel:
        # Lost a race with a concurrent registration.
        return get_base_by_label(label)


def get_base(base_id: int) -> dict:
    _validate_id(base_id, "base_id")
    db = DB.SessionLocal()
    try:
        return serialize_base(_require_base(db, base_id))
    finally:
        db.close()


def get_base_by_label(label: str) -> dict:
    _validate_required_text(label, "label", MAX_LABEL_LENGTH)
    db = DB.SessionLocal()
    try:
        base = db.query(CatalogBase).filter(CatalogBase.label == label).first()
        if not base:
            raise NotFound(f"Base not found: {label}", field="label")
        return serialize_base(base)
    finally:
        db.close()


def list_bases(checked_only: bool = False) -> list[dict]:
    db = DB.SessionLocal()
    try:
        query = db.query(CatalogBase)
        if checked_only:
            query = query.filter(CatalogBase.is_checked.is_(True))
        return [serialize_base(row) for row in query.order_by(CatalogBase.id).all()]
    finally:
        db.close()


def set_base_checked(base_id: int, is_checked: bool) -> dict:
    """Toggle whether a base takes part in catalog-wide operations."""
    _validate_id(base_id, "base_id")
    db = DB.SessionLocal()
    try:
        base = _require_base(db, base_id)
        base.is_checked = bool(is_checked)
        db.commit()
        db.refresh(base)
        return serialize_base(base)
    finally:
        db.close()


def _delete_base_rows(db, base: CatalogBase) -> int:
    root_ids = [row[0] for row in db.query(Item.id).filter(Item.base_id == base.id).order_by(Item.id).all()]
    removed = _delete_items(db, _collect_subtree_ids(db, root_ids))
    db.delete(base)
    return removed


def delete_base(base_id: int) -> dict:
    """
    Delete a base together with every item it owns.

    Items, their descendants and their tag links are removed in the same
    transaction as the base row.
    """
    _validate_id(base_id, "base_id")
    with base_write_lock(base_id):
        db = DB.SessionLocal()
        try:
            base = _require_base(db, base_id)
            label = base.label
            removed = _delete_base_rows(db, base)
            db.commit()
            logger.info("Base deleted", extra={"base_id": base_id, "label": label, "items_removed": removed})
            return {"status": "deleted", "id": base_id, "label": label, "items_removed": removed}
        finally:
            db.close()


def clean_unchecked_bases() -> int:
    """Delete every unchecked base and its items. Returns the number of bases removed."""
    db = DB.SessionLocal()
    try:
        bases = db.query(CatalogBase).filter(CatalogBase.is_checked.is_(False)).all()
        items_removed = 0
        for base in bases:
            items_removed += _delete_base_rows(db, base)
        db.commit()
        if bases:
            logger.info(
                "Unchecked bases removed",
                extra={"bases_removed": len(bases), "items_removed": items_removed},
            )
        return len(bases)
    finally:
        db.close()
