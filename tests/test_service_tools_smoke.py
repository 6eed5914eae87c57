import os

os.environ.setdefault("CATALOG_DB_BACKEND", "sqlite")

from catalog.services.tools import (
    catalog_add_dependency,
    catalog_attach_tag,
    catalog_create_tag,
    catalog_delete_base,
    catalog_delete_item,
    catalog_delete_tag,
    catalog_effective_tags,
    catalog_list_children,
    catalog_list_subtree,
    catalog_move_item,
    catalog_register_base,
    catalog_upsert_item,
)


def test_service_tools_smoke(server_db):
    base = catalog_register_base("photos")
    assert base["status"] == "created"
    base_id = base["base"]["id"]

    folder = catalog_upsert_item("a", base_id, name="a")
    assert folder["status"] == "created"
    leaf = catalog_upsert_item("a/b.jpg", base_id, parent=folder["item"]["id"], hash="h1")
    assert leaf["status"] == "created"
    assert "created" not in leaf["item"]

    updated = catalog_upsert_item("a/b.jpg", base_id, parent=folder["item"]["id"], hash="h2")
    assert updated["status"] == "updated"
    assert updated["item"]["id"] == leaf["item"]["id"]

    assert catalog_create_tag("raw")["status"] == "created"
    assert catalog_create_tag("needs-edit")["status"] == "created"
    assert catalog_add_dependency("raw", "needs-edit")["status"] == "created"
    assert catalog_attach_tag(leaf["item"]["id"], "raw")["attached"] is True

    effective = catalog_effective_tags(leaf["item"]["id"])
    assert effective["tags"] == ["needs-edit", "raw"]
    assert effective["count"] == 2

    children = catalog_list_children(folder["item"]["id"])
    assert children["count"] == 1
    subtree = catalog_list_subtree(folder["item"]["id"])
    assert [row["id"] for row in subtree["results"]] == [folder["item"]["id"], leaf["item"]["id"]]

    moved = catalog_move_item(leaf["item"]["id"], None)
    assert moved["status"] == "moved"
    assert moved["item"]["parent"] is None

    assert catalog_delete_tag("needs-edit")["status"] == "deleted"
    assert catalog_effective_tags(leaf["item"]["id"])["tags"] == ["raw"]

    deleted = catalog_delete_item(leaf["item"]["id"])
    assert deleted["items_removed"] == 1
    assert catalog_delete_base(base_id)["items_removed"] == 1


def test_service_tools_error_payloads(server_db):
    base = catalog_register_base("photos")
    duplicate = catalog_register_base("photos")
    assert duplicate["status"] == "error"
    assert duplicate["code"] == "duplicate_label"
    assert duplicate["tool"] == "catalog_register_base"

    missing = catalog_delete_item(999)
    assert missing["status"] == "error"
    assert missing["code"] == "not_found"

    blank = catalog_register_base("")
    assert blank["code"] == "required"
    assert blank["field"] == "label"

    catalog_create_tag("a")
    catalog_create_tag("b")
    catalog_add_dependency("a", "b")
    assert catalog_add_dependency("b", "a")["code"] == "cycle_detected"
    assert catalog_add_dependency("a", "a")["code"] == "self_dependency"
    assert catalog_create_tag("a")["code"] == "duplicate_tag"

    root = catalog_upsert_item("r", base["base"]["id"])
    child = catalog_upsert_item("r/c", base["base"]["id"], parent=root["item"]["id"])
    cycle = catalog_move_item(root["item"]["id"], child["item"]["id"])
    assert cycle["code"] == "cycle_detected"
    assert cycle["field"] == "new_parent"
