import os
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

import pytest

os.environ.setdefault("CATALOG_DB_BACKEND", "sqlite")

from sqlalchemy import event

from catalog.db import DB
from catalog.errors import CycleDetected
from catalog.models import Item, Tag, TagItem, TagTag
from catalog.services import bases, items, tags
from catalog.services.shared import base_write_lock


def _add_edge(edge):
    try:
        return tags.add_dependency(*edge)["status"]
    except CycleDetected:
        return "cycle"


def test_concurrent_reverse_edges_close_no_cycle(server_db, db_session):
    tags.create_tag("a")
    tags.create_tag("b")

    with ThreadPoolExecutor(max_workers=2) as executor:
        results = list(executor.map(_add_edge, [("a", "b"), ("b", "a")]))

    assert sorted(results) == ["created", "cycle"]
    assert db_session.query(TagTag).count() == 1


def test_concurrent_first_attach_creates_tag_once(server_db, db_session):
    base = bases.register_base("models")
    first = items.upsert_item("first.bin", base["id"])
    second = items.upsert_item("second.bin", base["id"])

    # Both callers must reach the tag insert before either one commits it.
    barrier = threading.Barrier(2, timeout=10)

    def hold_new_tags(session, flush_context, instances):
        if any(isinstance(obj, Tag) for obj in session.new):
            barrier.wait()

    event.listen(DB.SessionLocal, "before_flush", hold_new_tags)
    try:
        with ThreadPoolExecutor(max_workers=2) as executor:
            results = list(
                executor.map(lambda item_id: tags.attach_tag(item_id, "fresh"), [first["id"], second["id"]])
            )
    finally:
        event.remove(DB.SessionLocal, "before_flush", hold_new_tags)

    assert [result["attached"] for result in results] == [True, True]
    assert db_session.query(Tag).filter(Tag.name == "fresh").count() == 1
    assert db_session.query(TagItem).filter(TagItem.tag == "fresh").count() == 2


def test_deletes_wait_for_base_writer(server_db, db_session):
    base = bases.register_base("models")
    folder = items.upsert_item("dir", base["id"])
    items.upsert_item("dir/a.bin", base["id"], parent=folder["id"])

    with ThreadPoolExecutor(max_workers=1) as executor:
        with base_write_lock(base["id"]):
            pending_item = executor.submit(items.delete_item, folder["id"])
            with pytest.raises(FutureTimeout):
                pending_item.result(timeout=0.3)
            assert db_session.query(Item).count() == 2
        assert pending_item.result(timeout=10) == 2

        with base_write_lock(base["id"]):
            pending_base = executor.submit(bases.delete_base, base["id"])
            with pytest.raises(FutureTimeout):
                pending_base.result(timeout=0.3)
        assert pending_base.result(timeout=10)["status"] == "deleted"


def test_concurrency_smoke(server_db):
    base = bases.register_base("models")
    root = items.upsert_item("root", base["id"])
    tags.create_tag("shared")

    def worker(index):
        item = items.upsert_item(f"root/file{index}.bin", base["id"], parent=root["id"])
        tags.attach_tag(item["id"], "shared")
        tags.attach_tag(item["id"], "shared")
        return item["id"]

    with ThreadPoolExecutor(max_workers=2) as executor:
        created = list(executor.map(worker, range(4)))

    assert len(set(created)) == 4
    children = items.list_children(root["id"])
    assert sorted(child["id"] for child in children) == sorted(created)
    for item_id in created:
        assert tags.effective_tags(item_id) == {"shared"}
