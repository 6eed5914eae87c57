"""
Tag graph services.

Tags attach to items through ``tag_item``. ``tag_tag`` holds directed
"implies" edges (tag -> depend) that must stay acyclic; an item's effective
tags are its direct tags plus everything reachable over those edges.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from catalog.db import DB
from catalog.errors import CycleDetected, DuplicateTag, SelfDependency
from catalog.models import Tag, TagItem, TagTag
from catalog.services.shared import (
    _require_item,
    _require_tag,
    _validate_id,
    _validate_optional_text,
    _validate_required_text,
    _validate_string_list,
    MAX_LABEL_LENGTH,
    MAX_LIST_ITEMS,
    MAX_TEXT_LENGTH,
    logger,
    serialize_tag,
)

# Edge insertion (cycle check + insert + commit) must not interleave, or two
# concurrent inserts could jointly close a cycle neither of them saw.
_TAG_GRAPH_LOCK = threading.Lock()


def normalize_tag_name(name: str) -> str:
    return name.strip().replace(" ", "_").lower()


def _validate_tag_name(name: str, field: str = "name") -> None:
    _validate_required_text(name, field, MAX_LABEL_LENGTH)


def _ensure_tag(db, name: str) -> Tag:
    """Return the tag, creating and committing it on first use."""
    tag = db.get(Tag, name)
    if tag is not None:
        return tag
    db.add(Tag(name=name))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # A concurrent caller created the same tag first.
        if db.get(Tag, name) is None:
            raise
    return db.get(Tag, name)


def _load_adjacency(db) -> dict[str, set[str]]:
    adjacency: dict[str, set[str]] = {}
    for tag, depend in db.query(TagTag.tag, TagTag.depend).all():
        adjacency.setdefault(tag, set()).add(depend)
    return adjacency


def _load_reverse_adjacency(db) -> dict[str, set[str]]:
    reverse: dict[str, set[str]] = {}
    for tag, depend in db.query(TagTag.tag, TagTag.depend).all():
        reverse.setdefault(depend, set()).add(tag)
    return reverse


def _closure(adjacency: dict[str, set[str]], starts: Iterable[str]) -> set[str]:
    """Breadth-first closure: the start tags plus everything reachable from them."""
    reached: set[str] = set()
    queue: deque[str] = deque()
    for start in starts:
        if start not in reached:
            reached.add(start)
            queue.append(start)
    while queue:
        current = queue.popleft()
        for neighbor in adjacency.get(current, ()):
            if neighbor not in reached:
                reached.add(neighbor)
                queue.append(neighbor)
    return reached


def _direct_tags(db, item_id: int) -> list[str]:
    rows = db.query(TagItem.tag).filter(TagItem.item == item_id).order_by(TagItem.tag).all()
    return [row[0] for row in rows]


def _tags_implying(db, tag: str) -> set[str]:
    return _closure(_load_reverse_adjacency(db), [tag])


# =============================================================================
# Tags
# =============================================================================

def create_tag(name: str, description: Optional[str] = None) -> dict:
    _validate_tag_name(name)
    _validate_optional_text(description, "description", MAX_TEXT_LENGTH)

    db = DB.SessionLocal()
    try:
        if db.get(Tag, name) is not None:
            raise DuplicateTag(f"Tag already exists: {name}", field="name")
        tag = Tag(name=name, description=description)
        db.add(tag)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise DuplicateTag(f"Tag already exists: {name}", field="name") from exc
        db.refresh(tag)
        return serialize_tag(tag)
    finally:
        db.close()


def get_tag(name: str) -> dict:
    _validate_tag_name(name)
    db = DB.SessionLocal()
    try:
        return serialize_tag(_require_tag(db, name))
    finally:
        db.close()


def list_tags() -> list[dict]:
    db = DB.SessionLocal()
    try:
        return [serialize_tag(row) for row in db.query(Tag).order_by(Tag.name).all()]
    finally:
        db.close()


def rename_tag(name: str, new_name: str) -> dict:
    """Rename a tag, carrying its item links and dependency edges along."""
    _validate_tag_name(name)
    _validate_tag_name(new_name, "new_name")

    with _TAG_GRAPH_LOCK:
        db = DB.SessionLocal()
        try:
            tag = _require_tag(db, name)
            if new_name == name:
                return serialize_tag(tag)
            if db.get(Tag, new_name) is not None:
                raise DuplicateTag(f"{new_name} already exists", field="new_name")

            renamed = Tag(name=new_name, description=tag.description)
            db.add(renamed)
            db.flush()
            db.query(TagItem).filter(TagItem.tag == name).update(
                {TagItem.tag: new_name}, synchronize_session=False
            )
            db.query(TagTag).filter(TagTag.tag == name).update(
                {TagTag.tag: new_name}, synchronize_session=False
            )
            db.query(TagTag).filter(TagTag.depend == name).update(
                {TagTag.depend: new_name}, synchronize_session=False
            )
            db.delete(tag)
            db.commit()
            db.refresh(renamed)
            return serialize_tag(renamed)
        finally:
            db.close()


def delete_tag(name: str) -> dict:
    """Delete a tag together with its item links and dependency edges."""
    _validate_tag_name(name)

    with _TAG_GRAPH_LOCK:
        db = DB.SessionLocal()
        try:
            tag = _require_tag(db, name)
            detached = db.query(TagItem).filter(TagItem.tag == name).delete(synchronize_session=False)
            edges = (
                db.query(TagTag)
                .filter(or_(TagTag.tag == name, TagTag.depend == name))
                .delete(synchronize_session=False)
            )
            db.delete(tag)
            db.commit()
            logger.info(
                "Tag deleted",
                extra={"tag": name, "items_detached": detached, "dependencies_removed": edges},
            )
            return {
                "status": "deleted",
                "name": name,
                "items_detached": detached,
                "dependencies_removed": edges,
            }
        finally:
            db.close()


# =============================================================================
# Item tagging
# =============================================================================

def attach_tag(item_id: int, tag_name: str) -> dict:
    """
    Attach a tag to an item, creating the tag on first use.

    Re-attaching an already attached tag succeeds without changes.
    """
    _validate_id(item_id, "item_id")
    _validate_tag_name(tag_name, "tag_name")

    db = DB.SessionLocal()
    try:
        _require_item(db, item_id)
        _ensure_tag(db, tag_name)
        if db.get(TagItem, (tag_name, item_id)) is not None:
            return {"status": "ok", "item_id": item_id, "tag": tag_name, "attached": False}
        db.add(TagItem(tag=tag_name, item=item_id))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            # A concurrent attach inserted the same pair first.
            if db.get(TagItem, (tag_name, item_id)) is None:
                raise
            return {"status": "ok", "item_id": item_id, "tag": tag_name, "attached": False}
        return {"status": "ok", "item_id": item_id, "tag": tag_name, "attached": True}
    finally:
        db.close()


def attach_tags(item_id: int, tag_names: list[str]) -> dict:
    """Attach several labels at once; labels are normalized to tag names first."""
    _validate_id(item_id, "item_id")
    _validate_string_list(tag_names, "tag_names", MAX_LIST_ITEMS, MAX_LABEL_LENGTH)

    names: list[str] = []
    for raw in tag_names or []:
        normalized = normalize_tag_name(raw)
        if normalized and normalized not in names:
            names.append(normalized)

    attached: list[str] = []
    already: list[str] = []
    for name in names:
        result = attach_tag(item_id, name)
        (attached if result["attached"] else already).append(name)
    return {
        "status": "ok",
        "item_id": item_id,
        "attached": attached,
        "already_attached": already,
    }


def detach_tag(item_id: int, tag_name: str) -> dict:
    _validate_id(item_id, "item_id")
    _validate_tag_name(tag_name, "tag_name")

    db = DB.SessionLocal()
    try:
        removed = (
            db.query(TagItem)
            .filter(TagItem.item == item_id, TagItem.tag == tag_name)
            .delete(synchronize_session=False)
        )
        db.commit()
        return {"status": "detached" if removed else "not_attached", "item_id": item_id, "tag": tag_name}
    finally:
        db.close()


def item_tags(item_id: int) -> list[str]:
    """Tags attached directly to an item, by name."""
    _validate_id(item_id, "item_id")
    db = DB.SessionLocal()
    try:
        _require_item(db, item_id)
        return _direct_tags(db, item_id)
    finally:
        db.close()


# =============================================================================
# Dependencies
# =============================================================================

def add_dependency(tag: str, depend: str) -> dict:
    """
    Record that ``tag`` implies ``depend``.

    Raises SelfDependency for a self edge and CycleDetected when ``depend``
    already reaches ``tag`` through existing edges.
    """
    _validate_tag_name(tag, "tag")
    _validate_tag_name(depend, "depend")
    if tag == depend:
        raise SelfDependency(f"Tag cannot depend on itself: {tag}", field="depend")

    with _TAG_GRAPH_LOCK:
        db = DB.SessionLocal()
        try:
            _require_tag(db, tag, field="tag")
            _require_tag(db, depend, field="depend")
            if db.get(TagTag, (tag, depend)) is not None:
                return {"status": "exists", "tag": tag, "depend": depend, "created": False}

            if tag in _closure(_load_adjacency(db), [depend]):
                raise CycleDetected(
                    f"{depend} already depends on {tag}",
                    field="depend",
                    data={"tag": tag, "depend": depend},
                )

            db.add(TagTag(tag=tag, depend=depend))
            db.commit()
            return {"status": "created", "tag": tag, "depend": depend, "created": True}
        finally:
            db.close()


def remove_dependency(tag: str, depend: str) -> dict:
    _validate_tag_name(tag, "tag")
    _validate_tag_name(depend, "depend")

    with _TAG_GRAPH_LOCK:
        db = DB.SessionLocal()
        try:
            removed = (
                db.query(TagTag)
                .filter(TagTag.tag == tag, TagTag.depend == depend)
                .delete(synchronize_session=False)
            )
            db.commit()
            return {"status": "removed" if removed else "not_found", "tag": tag, "depend": depend}
        finally:
            db.close()


def list_dependencies(tag: str) -> list[str]:
    """Direct dependencies of a tag."""
    _validate_tag_name(tag, "tag")
    db = DB.SessionLocal()
    try:
        _require_tag(db, tag, field="tag")
        rows = db.query(TagTag.depend).filter(TagTag.tag == tag).order_by(TagTag.depend).all()
        return [row[0] for row in rows]
    finally:
        db.close()


def effective_tags(item_id: int) -> set[str]:
    """Direct tags of an item plus their transitive dependencies."""
    _validate_id(item_id, "item_id")
    db = DB.SessionLocal()
    try:
        _require_item(db, item_id)
        return _closure(_load_adjacency(db), _direct_tags(db, item_id))
    finally:
        db.close()


def tags_implying(tag: str) -> set[str]:
    """Every tag whose effective closure contains ``tag`` (including itself)."""
    _validate_tag_name(tag, "tag")
    db = DB.SessionLocal()
    try:
        _require_tag(db, tag, field="tag")
        return _tags_implying(db, tag)
    finally:
        db.close()
