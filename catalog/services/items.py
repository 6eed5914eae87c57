"""
Item tree services.

Items form one tree per base: ``parent`` is an optional item id in the same
base. All tree algorithms (move validation, subtree delete, subtree listing)
work by id lookup against the ``item`` table.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from catalog.db import DB
from catalog.errors import CycleDetected, PathConflict, ValidationIssue
from catalog.models import Item, TagItem
from catalog.services.shared import (
    _collect_subtree_ids,
    _delete_items,
    _escape_like,
    _require_base,
    _require_item,
    _resolve_limit,
    _validate_id,
    _validate_offset,
    _validate_optional_id,
    _validate_optional_text,
    _validate_required_text,
    MAX_LABEL_LENGTH,
    MAX_PATH_LENGTH,
    MAX_TEXT_LENGTH,
    base_write_lock,
    logger,
    serialize_item,
)

MAX_HASH_LENGTH = 128


def normalize_item_path(path: str) -> str:
    """
    Canonical storage key for a path relative to its base root.

    Separators become ``/``; empty and ``.`` segments and leading or trailing
    slashes are dropped, so ``/a/b.jpg`` and ``a/b.jpg`` share a key.
    """
    if not isinstance(path, str):
        raise ValidationIssue("path must be a string", field="path", error_type="invalid_type")
    parts = [part for part in path.replace("\\", "/").split("/") if part and part != "."]
    if not parts:
        raise ValidationIssue("path must name an entry below the base root", field="path", error_type="required")
    if ".." in parts:
        raise ValidationIssue("path must not leave the base root", field="path", error_type="invalid_value")
    normalized = "/".join(parts)
    if len(normalized) > MAX_PATH_LENGTH:
        raise ValidationIssue(f"path exceeds max length {MAX_PATH_LENGTH}", field="path", error_type="max_length")
    return normalized


def _validate_item_fields(
    name: Optional[str],
    hash: Optional[str],
    model_name: Optional[str],
    note: Optional[str],
) -> None:
    _validate_optional_text(name, "name", MAX_PATH_LENGTH)
    _validate_optional_text(hash, "hash", MAX_HASH_LENGTH)
    _validate_optional_text(model_name, "model_name", MAX_LABEL_LENGTH)
    _validate_optional_text(note, "note", MAX_TEXT_LENGTH)


def _require_parent(db, parent_id: int, base_id: int) -> Item:
    parent = _require_item(db, parent_id, field="parent")
    if parent.base_id != base_id:
        raise ValidationIssue(
            f"parent {parent_id} belongs to a different base",
            field="parent",
            error_type="invalid_parent",
        )
    return parent


def _check_path_free(db, path: str, base_id: int, parent_id: Optional[int], exclude_id: Optional[int]) -> None:
    clauses = [Item.base_id == base_id]
    if parent_id is not None:
        # NULL parents never collide under SQL unique semantics.
        clauses.append(Item.parent == parent_id)
    query = db.query(Item.id).filter(Item.path == path).filter(or_(*clauses))
    if exclude_id is not None:
        query = query.filter(Item.id != exclude_id)
    if query.first():
        raise PathConflict(f"Path already cataloged: {path}", field="path")


def _check_move(db, item: Item, new_parent_id: Optional[int]) -> None:
    """Reject a re-parent that would make ``item`` its own ancestor."""
    if new_parent_id is None:
        return
    _require_parent(db, new_parent_id, item.base_id)

    seen: set[int] = set()
    current = new_parent_id
    while current is not None:
        if current == item.id:
            raise CycleDetected(
                f"Item {item.id} cannot move under its own descendant {new_parent_id}",
                field="new_parent",
            )
        if current in seen:
            raise CycleDetected(f"Ancestor chain of {new_parent_id} is cyclic", field="new_parent")
        seen.add(current)
        current = db.query(Item.parent).filter(Item.id == current).scalar()

    _check_path_free(db, item.path, item.base_id, new_parent_id, exclude_id=item.id)


def _upsert_item_row(
    db,
    *,
    path: str,
    base_id: int,
    parent: Optional[int],
    name: Optional[str] = None,
    hash: Optional[str] = None,
    model_name: Optional[str] = None,
    note: Optional[str] = None,
) -> tuple[Item, bool, bool]:
    """Insert or update one row without committing. Returns (item, created, hash_changed)."""
    now = datetime.utcnow()
    existing = db.query(Item).filter(Item.path == path, Item.base_id == base_id).first()
    if existing:
        if existing.parent != parent:
            _check_move(db, existing, parent)
            existing.parent = parent
        hash_changed = hash is not None and hash != existing.hash
        if hash_changed:
            existing.hash = hash
        if name is not None:
            existing.name = name
        if model_name is not None:
            existing.model_name = model_name
        if note is not None:
            existing.note = note
        existing.is_checked = True
        existing.updated_at = now
        return existing, False, hash_changed

    if parent is not None:
        _require_parent(db, parent, base_id)
    _check_path_free(db, path, base_id, parent, exclude_id=None)
    item = Item(
        path=path,
        base_id=base_id,
        parent=parent,
        name=name,
        hash=hash or "",
        model_name=model_name,
        note=note,
        is_checked=True,
        created_at=now,
        updated_at=now,
    )
    db.add(item)
    db.flush()
    return item, True, False


def upsert_item(
    path: str,
    base_id: int,
    parent: Optional[int] = None,
    name: Optional[str] = None,
    hash: Optional[str] = None,
    model_name: Optional[str] = None,
    note: Optional[str] = None,
) -> dict:
    """
    Insert an item or update the one already cataloged at ``(path, base_id)``.

    Args:
        path: Path relative to the base root
        base_id: Owning base
        parent: Parent item id in the same base, or None for a root item
        name: Display name (file name)
        hash: Content hash; left untouched on update when None
        model_name: Free-form model label
        note: Free-form note

    Returns:
        The item with ``created`` set to True when a row was inserted
    """
    path = normalize_item_path(path)
    _validate_id(base_id, "base_id")
    _validate_optional_id(parent, "parent")
    _validate_item_fields(name, hash, model_name, note)

    with base_write_lock(base_id):
        db = DB.SessionLocal()
        try:
            _require_base(db, base_id)
            item, created, _ = _upsert_item_row(
                db,
                path=path,
                base_id=base_id,
                parent=parent,
                name=name,
                hash=hash,
                model_name=model_name,
                note=note,
            )
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise PathConflict(f"Path already cataloged: {path}", field="path") from exc
            db.refresh(item)
            payload = serialize_item(item)
            payload["created"] = created
            return payload
        finally:
            db.close()


def move_item(item_id: int, new_parent: Optional[int]) -> dict:
    """Re-parent an item; ``new_parent=None`` moves it to the base root."""
    _validate_id(item_id, "item_id")
    _validate_optional_id(new_parent, "new_parent")

    db = DB.SessionLocal()
    try:
        base_id = _require_item(db, item_id).base_id
    finally:
        db.close()

    with base_write_lock(base_id):
        db = DB.SessionLocal()
        try:
            item = _require_item(db, item_id)
            if item.parent != new_parent:
                _check_move(db, item, new_parent)
                item.parent = new_parent
                item.updated_at = datetime.utcnow()
                try:
                    db.commit()
                except IntegrityError as exc:
                    db.rollback()
                    raise PathConflict(f"Path already cataloged: {item.path}", field="new_parent") from exc
                db.refresh(item)
            return serialize_item(item)
        finally:
            db.close()


def delete_item(item_id: int) -> int:
    """Delete an item and all of its descendants. Returns the number of rows removed."""
    _validate_id(item_id, "item_id")
    db = DB.SessionLocal()
    try:
        base_id = _require_item(db, item_id).base_id
    finally:
        db.close()

    with base_write_lock(base_id):
        db = DB.SessionLocal()
        try:
            _require_item(db, item_id)
            removed = _delete_items(db, _collect_subtree_ids(db, [item_id]))
            db.commit()
            logger.info("Item subtree deleted", extra={"item_id": item_id, "items_removed": removed})
            return removed
        finally:
            db.close()


def set_hash(item_id: int, hash: str) -> dict:
    _validate_id(item_id, "item_id")
    _validate_optional_text(hash, "hash", MAX_HASH_LENGTH)
    if hash is None:
        raise ValidationIssue("hash must be a string", field="hash", error_type="required")

    db = DB.SessionLocal()
    try:
        item = _require_item(db, item_id)
        item.hash = hash
        item.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(item)
        return serialize_item(item)
    finally:
        db.close()


def update_item_metadata(
    item_id: int,
    name: Optional[str] = None,
    note: Optional[str] = None,
    model_name: Optional[str] = None,
) -> dict:
    """Update the free-form fields; None leaves a field unchanged."""
    _validate_id(item_id, "item_id")
    _validate_item_fields(name, None, model_name, note)

    db = DB.SessionLocal()
    try:
        item = _require_item(db, item_id)
        if name is not None:
            item.name = name
        if note is not None:
            item.note = note
        if model_name is not None:
            item.model_name = model_name
        item.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(item)
        return serialize_item(item)
    finally:
        db.close()


def get_item(item_id: int) -> dict:
    _validate_id(item_id, "item_id")
    db = DB.SessionLocal()
    try:
        return serialize_item(_require_item(db, item_id))
    finally:
        db.close()


def list_children(item_id: int) -> list[dict]:
    _validate_id(item_id, "item_id")
    db = DB.SessionLocal()
    try:
        _require_item(db, item_id)
        rows = db.query(Item).filter(Item.parent == item_id).order_by(Item.id).all()
        return [serialize_item(row) for row in rows]
    finally:
        db.close()


def list_roots(base_id: int) -> list[dict]:
    _validate_id(base_id, "base_id")
    db = DB.SessionLocal()
    try:
        _require_base(db, base_id)
        rows = (
            db.query(Item)
            .filter(Item.base_id == base_id)
            .filter(Item.parent.is_(None))
            .order_by(Item.id)
            .all()
        )
        return [serialize_item(row) for row in rows]
    finally:
        db.close()


def _iter_subtree(item_id: int) -> Iterator[dict]:
    db = DB.SessionLocal()
    try:
        root = db.get(Item, item_id)
        if root is None:
            return
        seen = {root.id}
        stack = [root]
        while stack:
            node = stack.pop()
            yield serialize_item(node)
            children = (
                db.query(Item)
                .filter(Item.parent == node.id)
                .order_by(Item.id.desc())
                .all()
            )
            for child in children:
                if child.id not in seen:
                    seen.add(child.id)
                    stack.append(child)
    finally:
        db.close()


def list_subtree(item_id: int) -> Iterator[dict]:
    """
    Lazily walk the subtree rooted at ``item_id`` (depth-first, pre-order).

    The item itself is yielded first; siblings come in id order. Each call
    starts a fresh query, so the returned iterator holds no cached state.
    """
    _validate_id(item_id, "item_id")
    db = DB.SessionLocal()
    try:
        _require_item(db, item_id)
    finally:
        db.close()
    return _iter_subtree(item_id)


def list_items(limit: Optional[int] = None, offset: int = 0, base_id: Optional[int] = None) -> dict:
    """Page through checked items, newest first."""
    limit = _resolve_limit(limit)
    _validate_offset(offset)
    _validate_optional_id(base_id, "base_id")

    db = DB.SessionLocal()
    try:
        query = db.query(Item).filter(Item.is_checked.is_(True))
        if base_id is not None:
            query = query.filter(Item.base_id == base_id)
        total = query.count()
        rows = query.order_by(Item.id.desc()).limit(limit).offset(offset).all()
        return {
            "count": len(rows),
            "total": total,
            "results": [serialize_item(row) for row in rows],
        }
    finally:
        db.close()


def search_items(query: str, limit: Optional[int] = None, offset: int = 0) -> dict:
    """
    Search checked items by name, or by any whitespace-separated term used as a tag name.
    """
    _validate_required_text(query, "query", MAX_TEXT_LENGTH)
    limit = _resolve_limit(limit)
    _validate_offset(offset)

    needle = query.strip()
    condition = Item.name.ilike(f"%{_escape_like(needle)}%", escape="\\")
    terms = needle.split()
    if terms:
        tagged_items = select(TagItem.item).where(TagItem.tag.in_(terms))
        condition = or_(condition, Item.id.in_(tagged_items))

    db = DB.SessionLocal()
    try:
        base_query = db.query(Item).filter(Item.is_checked.is_(True)).filter(condition)
        total = base_query.count()
        rows = base_query.order_by(Item.id.desc()).limit(limit).offset(offset).all()
        return {
            "query": needle,
            "count": len(rows),
            "total": total,
            "results": [serialize_item(row) for row in rows],
        }
    finally:
        db.close()


def mark_unchecked(item_id: int) -> dict:
    """Soft-delete one item: it stays cataloged but drops out of checked queries."""
    _validate_id(item_id, "item_id")
    db = DB.SessionLocal()
    try:
        item = _require_item(db, item_id)
        item.is_checked = False
        db.commit()
        db.refresh(item)
        return serialize_item(item)
    finally:
        db.close()


def clean_unchecked_items() -> int:
    """Hard-delete every unchecked item (with descendants). Returns rows removed."""
    db = DB.SessionLocal()
    try:
        root_ids = [
            row[0]
            for row in db.query(Item.id).filter(Item.is_checked.is_(False)).order_by(Item.id).all()
        ]
        removed = _delete_items(db, _collect_subtree_ids(db, root_ids))
        db.commit()
        if removed:
            logger.info("Unchecked items removed", extra={"items_removed": removed})
        return removed
    finally:
        db.close()
