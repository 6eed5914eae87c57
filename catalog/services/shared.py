"""
Shared helpers and configuration for catalog services.
"""

from __future__ import annotations

import threading
from functools import wraps
from typing import Callable, Iterable, Iterator, Optional, Sequence

import catalog.config as config
from catalog.errors import NotFound, ValidationIssue
from catalog.models import CatalogBase, Item, Tag, TagItem
from catalog.validators import (
    validate_required_text as _validate_required_text,
    validate_optional_text as _validate_optional_text,
    validate_limit as _validate_limit,
    validate_offset as _validate_offset,
    validate_id as _validate_id,
    validate_optional_id as _validate_optional_id,
    validate_string_list as _validate_string_list,
)

# =============================================================================
# Configuration
# =============================================================================

logger = config.logger

MAX_RESULT_LIMIT = config.MAX_RESULT_LIMIT
DEFAULT_PAGE_SIZE = config.DEFAULT_PAGE_SIZE
MAX_PATH_LENGTH = config.MAX_PATH_LENGTH
MAX_LABEL_LENGTH = config.MAX_LABEL_LENGTH
MAX_TEXT_LENGTH = config.MAX_TEXT_LENGTH
MAX_LIST_ITEMS = config.MAX_LIST_ITEMS
DELETE_CHUNK_SIZE = config.DELETE_CHUNK_SIZE


# =============================================================================
# Serialization
# =============================================================================

def serialize_base(row: CatalogBase) -> dict:
    return {
        "id": row.id,
        "label": row.label,
        "is_checked": bool(row.is_checked),
    }


def serialize_item(row: Item) -> dict:
    return {
        "id": row.id,
        "path": row.path,
        "base_id": row.base_id,
        "parent": row.parent,
        "name": row.name,
        "hash": row.hash,
        "is_checked": bool(row.is_checked),
        "note": row.note,
        "model_name": row.model_name,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


def serialize_tag(row: Tag) -> dict:
    return {
        "name": row.name,
        "description": row.description,
    }


# =============================================================================
# Lookup helpers
# =============================================================================

def _require_base(db, base_id: int) -> CatalogBase:
    base = db.get(CatalogBase, base_id)
    if base is None:
        raise NotFound(f"Base not found: {base_id}", field="base_id")
    return base


def _require_item(db, item_id: int, *, field: str = "item_id") -> Item:
    item = db.get(Item, item_id)
    if item is None:
        raise NotFound(f"Item not found: {item_id}", field=field)
    return item


def _require_tag(db, name: str, *, field: str = "name") -> Tag:
    tag = db.get(Tag, name)
    if tag is None:
        raise NotFound(f"Tag not found: {name}", field=field)
    return tag


def _chunked(values: Sequence, size: int = DELETE_CHUNK_SIZE) -> Iterator[Sequence]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _collect_subtree_ids(db, root_ids: Iterable[int]) -> list[int]:
    """Breadth-first collection of the given items and all their descendants."""
    collected: list[int] = []
    seen: set[int] = set()
    frontier: list[int] = []
    for item_id in root_ids:
        if item_id not in seen:
            seen.add(item_id)
            collected.append(item_id)
            frontier.append(item_id)

    while frontier:
        next_frontier: list[int] = []
        for chunk in _chunked(frontier):
            rows = db.query(Item.id).filter(Item.parent.in_(chunk)).order_by(Item.id).all()
            for (child_id,) in rows:
                if child_id in seen:
                    continue
                seen.add(child_id)
                collected.append(child_id)
                next_frontier.append(child_id)
        frontier = next_frontier
    return collected


def _delete_items(db, item_ids: Sequence[int]) -> int:
    """Delete items and their tag links, deepest first. Caller owns the transaction."""
    if not item_ids:
        return 0
    ordered = list(reversed(item_ids))
    for chunk in _chunked(ordered):
        db.query(TagItem).filter(TagItem.item.in_(chunk)).delete(synchronize_session=False)
    deleted = 0
    for chunk in _chunked(ordered):
        deleted += db.query(Item).filter(Item.id.in_(chunk)).delete(synchronize_session=False)
    return deleted


_base_locks: dict[int, threading.RLock] = {}
_base_locks_guard = threading.Lock()


def base_write_lock(base_id: int) -> threading.RLock:
    """Per-base writer lock; tree moves and scans of one base never interleave."""
    with _base_locks_guard:
        lock = _base_locks.get(base_id)
        if lock is None:
            lock = threading.RLock()
            _base_locks[base_id] = lock
        return lock


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _resolve_limit(limit: Optional[int]) -> int:
    value = DEFAULT_PAGE_SIZE if limit is None else limit
    _validate_limit(value, "limit", MAX_RESULT_LIMIT)
    return value


# =============================================================================
# Tool wrappers
# =============================================================================

def _tool_error_payload(tool_name: str, exc: ValidationIssue) -> dict:
    return {
        "status": "error",
        "error_type": "validation_error",
        "code": exc.error_code or exc.error_type,
        "tool": tool_name,
        "field": exc.field,
        "message": str(exc),
    }


def _log_validation_issue(tool_name: str, exc: ValidationIssue, warn: bool = False) -> None:
    payload = {
        "tool": tool_name,
        "field": exc.field,
        "error_type": exc.error_type,
        "detail": str(exc),
    }
    if warn:
        logger.warning("tool_validation_error", extra=payload)
    else:
        logger.info("tool_validation_error", extra=payload)


def _tool_error_handler(fn: Callable[..., dict]) -> Callable[..., dict]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ValidationIssue as exc:
            _log_validation_issue(fn.__name__, exc, warn=False)
            return _tool_error_payload(fn.__name__, exc)
        except ValueError as exc:
            issue = ValidationIssue(str(exc), field="unknown", error_type="value_error")
            _log_validation_issue(fn.__name__, issue, warn=True)
            return _tool_error_payload(fn.__name__, issue)
    return wrapper


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    return _tool_error_handler(fn)
