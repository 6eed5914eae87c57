"""
Front-end facing catalog tools.

Each tool wraps one catalog operation and always returns a JSON-ready dict;
validation and catalog errors come back as ``{"status": "error", ...}``
payloads instead of exceptions.
"""

from __future__ import annotations

from typing import Optional

from catalog.services import bases, items, tags
from catalog.services.shared import service_tool


@service_tool
def catalog_register_base(label: str) -> dict:
    base = bases.register_base(label)
    return {"status": "created", "base": base}


@service_tool
def catalog_delete_base(base_id: int) -> dict:
    return bases.delete_base(base_id)


@service_tool
def catalog_upsert_item(
    path: str,
    base_id: int,
    parent: Optional[int] = None,
    name: Optional[str] = None,
    hash: Optional[str] = None,
    model_name: Optional[str] = None,
    note: Optional[str] = None,
) -> dict:
    item = items.upsert_item(
        path,
        base_id,
        parent=parent,
        name=name,
        hash=hash,
        model_name=model_name,
        note=note,
    )
    created = item.pop("created")
    return {"status": "created" if created else "updated", "item": item}


@service_tool
def catalog_move_item(item_id: int, new_parent: Optional[int] = None) -> dict:
    return {"status": "moved", "item": items.move_item(item_id, new_parent)}


@service_tool
def catalog_delete_item(item_id: int) -> dict:
    removed = items.delete_item(item_id)
    return {"status": "deleted", "id": item_id, "items_removed": removed}


@service_tool
def catalog_create_tag(name: str, description: Optional[str] = None) -> dict:
    return {"status": "created", "tag": tags.create_tag(name, description)}


@service_tool
def catalog_delete_tag(name: str) -> dict:
    return tags.delete_tag(name)


@service_tool
def catalog_attach_tag(item_id: int, tag_name: str) -> dict:
    return tags.attach_tag(item_id, tag_name)


@service_tool
def catalog_add_dependency(tag: str, depend: str) -> dict:
    return tags.add_dependency(tag, depend)


@service_tool
def catalog_effective_tags(item_id: int) -> dict:
    names = sorted(tags.effective_tags(item_id))
    return {"status": "ok", "item_id": item_id, "count": len(names), "tags": names}


@service_tool
def catalog_list_children(item_id: int) -> dict:
    children = items.list_children(item_id)
    return {"status": "ok", "item_id": item_id, "count": len(children), "results": children}


@service_tool
def catalog_list_subtree(item_id: int) -> dict:
    subtree = list(items.list_subtree(item_id))
    return {"status": "ok", "item_id": item_id, "count": len(subtree), "results": subtree}
