"""
Catalog service: scan orchestration and composite queries.

The filesystem walk itself is an external collaborator. A scan consumes a
finite stream of ``ScanEntry`` values for one base, upserts them into the item
tree in batches, and finally applies the missing-path policy to every item of
the base the stream did not mention.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy import select

import catalog.config as config
from catalog.db import DB
from catalog.errors import ValidationIssue
from catalog.hashing import hash_bytes
from catalog.models import AppInfo, Item, TagItem
from catalog.services.bases import clean_unchecked_bases, list_bases
from catalog.services.items import (
    _upsert_item_row,
    _validate_item_fields,
    clean_unchecked_items,
    normalize_item_path,
)
from catalog.services.shared import (
    _chunked,
    _collect_subtree_ids,
    _delete_items,
    _require_base,
    _require_tag,
    _resolve_limit,
    _validate_id,
    _validate_offset,
    _validate_optional_id,
    _validate_optional_text,
    MAX_LABEL_LENGTH,
    base_write_lock,
    logger,
    serialize_item,
)
from catalog.services.tags import _tags_implying

SCAN_STATUS_COMPLETED = "completed"
SCAN_STATUS_CANCELLED = "cancelled"


@dataclass(frozen=True)
class ScanEntry:
    """One file reported by the external walker, relative to the base root."""

    path: str
    hash: Optional[str] = None
    content: Optional[bytes] = None
    name: Optional[str] = None
    model_name: Optional[str] = None

    def resolved_hash(self) -> Optional[str]:
        if self.hash is not None:
            return self.hash
        if self.content is not None:
            return hash_bytes(self.content)
        return None


def _resolve_policy(missing_policy: Optional[str]) -> str:
    policy = (missing_policy or config.MISSING_POLICY).strip().lower()
    if policy not in {config.MISSING_POLICY_SOFT, config.MISSING_POLICY_HARD}:
        raise ValidationIssue(
            "missing_policy must be 'soft' or 'hard'",
            field="missing_policy",
            error_type="invalid_value",
        )
    return policy


class _ScanState:
    def __init__(self, base_id: int):
        self.base_id = base_id
        self.seen: set[int] = set()
        self.directories: dict[str, int] = {}
        self.counts = {
            "inserted": 0,
            "updated": 0,
            "unchanged": 0,
            "directories": 0,
            "skipped": 0,
        }

    def apply(self, db, entry: ScanEntry) -> None:
        path = normalize_item_path(entry.path)
        entry_hash = entry.resolved_hash()
        _validate_item_fields(entry.name, entry_hash, entry.model_name, None)
        parts = path.split("/")

        parent_id = None
        for depth in range(1, len(parts)):
            dir_path = "/".join(parts[:depth])
            dir_id = self.directories.get(dir_path)
            if dir_id is None:
                directory, created, _ = _upsert_item_row(
                    db,
                    path=dir_path,
                    base_id=self.base_id,
                    parent=parent_id,
                    name=parts[depth - 1],
                )
                dir_id = directory.id
                self.directories[dir_path] = dir_id
                self.seen.add(dir_id)
                if created:
                    self.counts["directories"] += 1
            parent_id = dir_id

        item, created, hash_changed = _upsert_item_row(
            db,
            path=path,
            base_id=self.base_id,
            parent=parent_id,
            name=entry.name or parts[-1],
            hash=entry_hash,
            model_name=entry.model_name,
        )
        self.seen.add(item.id)
        if created:
            self.counts["inserted"] += 1
        elif hash_changed:
            self.counts["updated"] += 1
        else:
            self.counts["unchanged"] += 1


def _apply_missing_policy(db, base_id: int, seen: set[int], policy: str) -> int:
    base_item_ids = [
        row[0] for row in db.query(Item.id).filter(Item.base_id == base_id).order_by(Item.id).all()
    ]
    missing = [item_id for item_id in base_item_ids if item_id not in seen]
    if not missing:
        return 0
    if policy == config.MISSING_POLICY_HARD:
        return _delete_items(db, _collect_subtree_ids(db, missing))
    affected = 0
    for chunk in _chunked(missing):
        affected += (
            db.query(Item)
            .filter(Item.id.in_(chunk))
            .filter(Item.is_checked.is_(True))
            .update({Item.is_checked: False}, synchronize_session=False)
        )
    return affected


def scan_base(
    base_id: int,
    entries: Iterable[ScanEntry],
    missing_policy: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
) -> dict:
    """
    Reconcile one base against a stream of scan entries.

    Args:
        base_id: Base to scan; must be checked
        entries: Finite stream of entries from the external walker
        missing_policy: 'soft' marks unseen items unchecked, 'hard' deletes them
        cancel_event: When set, the scan stops consuming entries

    Returns:
        Scan summary with per-outcome counts
    """
    _validate_id(base_id, "base_id")
    policy = _resolve_policy(missing_policy)

    with base_write_lock(base_id):
        db = DB.SessionLocal()
        try:
            base = _require_base(db, base_id)
            if not base.is_checked:
                raise ValidationIssue(
                    f"Base {base.label} is not checked",
                    field="base_id",
                    error_type="base_unchecked",
                )
            label = base.label
            logger.info("Scan started", extra={"base_id": base_id, "label": label, "policy": policy})

            state = _ScanState(base_id)
            pending = 0
            cancelled = False
            for entry in entries:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                try:
                    state.apply(db, entry)
                except ValidationIssue as exc:
                    state.counts["skipped"] += 1
                    logger.warning(
                        "Failed to catalog scan entry",
                        extra={"base_id": base_id, "path": getattr(entry, "path", None), "detail": str(exc)},
                    )
                    continue
                pending += 1
                if pending >= config.SCAN_BATCH_SIZE:
                    db.commit()
                    pending = 0
            db.commit()

            missing = 0
            if not cancelled:
                missing = _apply_missing_policy(db, base_id, state.seen, policy)
                db.merge(AppInfo(label=f"scan.{label}.completed_at", value=datetime.utcnow().isoformat()))
                db.commit()

            summary = {
                "status": SCAN_STATUS_CANCELLED if cancelled else SCAN_STATUS_COMPLETED,
                "base_id": base_id,
                "label": label,
                "policy": policy,
                "seen": len(state.seen),
                "missing": missing,
                **state.counts,
            }
            logger.info("Scan finished", extra=summary)
            return summary
        finally:
            db.close()


def run_scan_cycle(
    source: Callable[[dict], Iterable[ScanEntry]],
    missing_policy: Optional[str] = None,
    max_workers: int = 1,
) -> dict:
    """
    Scan every checked base. ``source(base)`` supplies the entries for a base.

    Distinct bases may be scanned in parallel with ``max_workers > 1``.
    """
    policy = _resolve_policy(missing_policy)
    bases = list_bases(checked_only=True)

    def _scan(base: dict) -> dict:
        return scan_base(base["id"], source(base), missing_policy=policy)

    if max_workers > 1 and len(bases) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(_scan, bases))
    else:
        results = [_scan(base) for base in bases]

    return {
        "status": "ok",
        "bases_scanned": len(results),
        "results": results,
    }


def find_items(
    base_id: Optional[int] = None,
    tag: Optional[str] = None,
    include_unchecked: bool = False,
    limit: Optional[int] = None,
    offset: int = 0,
) -> dict:
    """Items under a base carrying an effective tag (either filter optional), in id order."""
    _validate_optional_id(base_id, "base_id")
    _validate_optional_text(tag, "tag", MAX_LABEL_LENGTH)
    limit = _resolve_limit(limit)
    _validate_offset(offset)

    db = DB.SessionLocal()
    try:
        query = db.query(Item)
        if base_id is not None:
            _require_base(db, base_id)
            query = query.filter(Item.base_id == base_id)
        if tag is not None:
            _require_tag(db, tag, field="tag")
            implying = sorted(_tags_implying(db, tag))
            query = query.filter(Item.id.in_(select(TagItem.item).where(TagItem.tag.in_(implying))))
        if not include_unchecked:
            query = query.filter(Item.is_checked.is_(True))
        total = query.count()
        rows = query.order_by(Item.id).limit(limit).offset(offset).all()
        return {
            "count": len(rows),
            "total": total,
            "filters": {"base_id": base_id, "tag": tag, "include_unchecked": include_unchecked},
            "results": [serialize_item(row) for row in rows],
        }
    finally:
        db.close()


def purge_unchecked() -> dict:
    """Hard-delete unchecked items, then unchecked bases."""
    deleted_items = clean_unchecked_items()
    deleted_bases = clean_unchecked_bases()
    return {
        "status": "ok",
        "deleted_items": deleted_items,
        "deleted_bases": deleted_bases,
    }
