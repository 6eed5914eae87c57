import os
import random

import pytest

os.environ.setdefault("CATALOG_DB_BACKEND", "sqlite")

from catalog.errors import CatalogError, CycleDetected, NotFound, PathConflict, ValidationIssue
from catalog.models import Item, TagItem
from catalog.services import bases, items, tags


def _build_tree(base_id):
    root = items.upsert_item("r", base_id, name="r")
    first = items.upsert_item("r/c1", base_id, parent=root["id"], name="c1")
    second = items.upsert_item("r/c2", base_id, parent=root["id"], name="c2")
    grandchild = items.upsert_item("r/c1/g", base_id, parent=first["id"], name="g")
    return root, first, second, grandchild


def test_upsert_updates_in_place_and_allows_same_path_in_other_base(server_db):
    photos = bases.register_base("photos")
    created = items.upsert_item("/a/b.jpg", photos["id"], name="b.jpg", hash="h1")
    assert created["created"] is True
    assert created["hash"] == "h1"
    assert created["is_checked"] is True

    updated = items.upsert_item("/a/b.jpg", photos["id"], hash="h2")
    assert updated["created"] is False
    assert updated["id"] == created["id"]
    assert updated["hash"] == "h2"
    assert updated["name"] == "b.jpg"

    models = bases.register_base("models")
    elsewhere = items.upsert_item("/a/b.jpg", models["id"])
    assert elsewhere["created"] is True
    assert elsewhere["id"] != created["id"]
    assert elsewhere["hash"] == ""


def test_upsert_stores_canonical_path(server_db):
    base = bases.register_base("photos")
    created = items.upsert_item("/a/b.jpg", base["id"], hash="h1")
    assert created["path"] == "a/b.jpg"

    same = items.upsert_item("a\\./b.jpg", base["id"], hash="h2")
    assert same["created"] is False
    assert same["id"] == created["id"]

    with pytest.raises(ValidationIssue):
        items.upsert_item("../b.jpg", base["id"])


def test_upsert_rechecks_unchecked_item(server_db):
    base = bases.register_base("photos")
    item = items.upsert_item("x.png", base["id"])
    items.mark_unchecked(item["id"])

    again = items.upsert_item("x.png", base["id"])
    assert again["id"] == item["id"]
    assert again["is_checked"] is True


def test_upsert_requires_existing_base_and_same_base_parent(server_db):
    with pytest.raises(NotFound):
        items.upsert_item("a.txt", 99)

    first = bases.register_base("first")
    second = bases.register_base("second")
    folder = items.upsert_item("dir", first["id"])

    with pytest.raises(ValidationIssue) as excinfo:
        items.upsert_item("dir/a.txt", second["id"], parent=folder["id"])
    assert excinfo.value.error_type == "invalid_parent"

    with pytest.raises(NotFound):
        items.upsert_item("dir/a.txt", first["id"], parent=12345)


def test_upsert_rejects_path_taken_under_parent(server_db, db_session):
    first = bases.register_base("first")
    second = bases.register_base("second")
    folder = items.upsert_item("dir", first["id"])

    # Legacy row attached across bases; new inserts must still respect (path, parent).
    db_session.add(Item(path="dir/f", base_id=second["id"], parent=folder["id"], hash=""))
    db_session.commit()

    with pytest.raises(PathConflict) as excinfo:
        items.upsert_item("dir/f", first["id"], parent=folder["id"])
    assert excinfo.value.error_code == "path_conflict"


def test_upsert_validates_input(server_db):
    base = bases.register_base("photos")
    with pytest.raises(ValidationIssue):
        items.upsert_item("", base["id"])
    with pytest.raises(ValidationIssue):
        items.upsert_item("a", "one")
    with pytest.raises(ValidationIssue):
        items.upsert_item("a", base["id"], hash="x" * 500)


def test_move_rejects_cycles_and_allows_root(server_db):
    base = bases.register_base("tree")
    root, first, second, grandchild = _build_tree(base["id"])

    with pytest.raises(CycleDetected) as excinfo:
        items.move_item(root["id"], grandchild["id"])
    assert excinfo.value.error_code == "cycle_detected"

    with pytest.raises(CycleDetected):
        items.move_item(first["id"], first["id"])

    moved = items.move_item(grandchild["id"], second["id"])
    assert moved["parent"] == second["id"]

    detached = items.move_item(grandchild["id"], None)
    assert detached["parent"] is None
    assert [row["id"] for row in items.list_roots(base["id"])] == [root["id"], grandchild["id"]]


def test_move_rejects_parent_from_other_base(server_db):
    first = bases.register_base("first")
    second = bases.register_base("second")
    item = items.upsert_item("a", first["id"])
    foreign = items.upsert_item("b", second["id"])

    with pytest.raises(ValidationIssue) as excinfo:
        items.move_item(item["id"], foreign["id"])
    assert excinfo.value.error_type == "invalid_parent"


def test_random_moves_keep_tree_acyclic(server_db, db_session):
    base = bases.register_base("random")
    ids = [items.upsert_item(f"n{index}", base["id"])["id"] for index in range(8)]

    rng = random.Random(7)
    for _ in range(60):
        item_id = rng.choice(ids)
        target = rng.choice(ids + [None])
        try:
            items.move_item(item_id, target)
        except CycleDetected:
            pass

    db_session.expire_all()
    parents = {row.id: row.parent for row in db_session.query(Item).all()}
    for start in ids:
        seen = set()
        current = start
        while current is not None:
            assert current not in seen
            seen.add(current)
            current = parents[current]


def test_random_upserts_keep_paths_unique(server_db, db_session):
    base_ids = [bases.register_base(label)["id"] for label in ("left", "right")]
    rng = random.Random(11)
    paths = [f"p{index}" for index in range(6)]

    for _ in range(80):
        base_id = rng.choice(base_ids)
        candidates = [
            row.id for row in db_session.query(Item).filter(Item.base_id == base_id).all()
        ]
        parent = rng.choice(candidates + [None]) if candidates else None
        try:
            if rng.random() < 0.2 and candidates:
                items.delete_item(rng.choice(candidates))
            else:
                items.upsert_item(rng.choice(paths), base_id, parent=parent)
        except (CatalogError, ValidationIssue):
            pass
        db_session.expire_all()

    rows = db_session.query(Item).all()
    by_base = [(row.path, row.base_id) for row in rows]
    assert len(by_base) == len(set(by_base))
    by_parent = [(row.path, row.parent) for row in rows if row.parent is not None]
    assert len(by_parent) == len(set(by_parent))


def test_delete_item_removes_subtree_and_tag_links(server_db, db_session):
    base = bases.register_base("tree")
    root, first, second, grandchild = _build_tree(base["id"])
    tags.attach_tag(grandchild["id"], "deep")
    tags.attach_tag(second["id"], "keep")

    assert items.delete_item(first["id"]) == 2

    db_session.expire_all()
    remaining = sorted(row.id for row in db_session.query(Item).all())
    assert remaining == [root["id"], second["id"]]
    assert [(link.tag, link.item) for link in db_session.query(TagItem).all()] == [("keep", second["id"])]

    with pytest.raises(NotFound):
        items.delete_item(first["id"])


def test_list_children_in_id_order(server_db):
    base = bases.register_base("tree")
    root, first, second, grandchild = _build_tree(base["id"])

    assert [child["id"] for child in items.list_children(root["id"])] == [first["id"], second["id"]]
    assert items.list_children(grandchild["id"]) == []
    with pytest.raises(NotFound):
        items.list_children(999)


def test_list_subtree_is_preorder_and_restartable(server_db):
    base = bases.register_base("tree")
    root, first, second, grandchild = _build_tree(base["id"])

    walk = [row["id"] for row in items.list_subtree(root["id"])]
    assert walk == [root["id"], first["id"], grandchild["id"], second["id"]]
    assert [row["id"] for row in items.list_subtree(root["id"])] == walk

    late = items.upsert_item("r/c2/late", base["id"], parent=second["id"])
    rerun = [row["id"] for row in items.list_subtree(root["id"])]
    assert rerun == walk + [late["id"]]

    assert [row["id"] for row in items.list_subtree(grandchild["id"])] == [grandchild["id"]]


def test_list_subtree_missing_item_fails_eagerly(server_db):
    with pytest.raises(NotFound):
        items.list_subtree(404)


def test_set_hash_and_metadata(server_db):
    base = bases.register_base("models")
    item = items.upsert_item("m.safetensors", base["id"])

    assert items.set_hash(item["id"], "0123456789")["hash"] == "0123456789"
    updated = items.update_item_metadata(item["id"], note="great", model_name="sdxl")
    assert updated["note"] == "great"
    assert updated["model_name"] == "sdxl"
    assert items.get_item(item["id"])["hash"] == "0123456789"

    with pytest.raises(ValidationIssue):
        items.set_hash(item["id"], None)


def test_list_items_pages_newest_first(server_db):
    base = bases.register_base("models")
    created = [items.upsert_item(f"m{index}", base["id"])["id"] for index in range(5)]
    items.mark_unchecked(created[0])

    page = items.list_items(limit=2, offset=0)
    assert page["total"] == 4
    assert [row["id"] for row in page["results"]] == [created[4], created[3]]

    rest = items.list_items(limit=10, offset=2, base_id=base["id"])
    assert [row["id"] for row in rest["results"]] == [created[2], created[1]]


def test_search_matches_name_or_tag(server_db):
    base = bases.register_base("models")
    anime = items.upsert_item("anime_style.safetensors", base["id"], name="anime_style.safetensors")
    photo = items.upsert_item("photo.ckpt", base["id"], name="photo.ckpt")
    hidden = items.upsert_item("anime_old.ckpt", base["id"], name="anime_old.ckpt")
    items.mark_unchecked(hidden["id"])
    tags.attach_tag(photo["id"], "realistic")

    by_name = items.search_items("anime")
    assert [row["id"] for row in by_name["results"]] == [anime["id"]]

    by_tag = items.search_items("realistic")
    assert [row["id"] for row in by_tag["results"]] == [photo["id"]]

    literal = items.search_items("%")
    assert literal["total"] == 0


def test_clean_unchecked_items_removes_descendants(server_db, db_session):
    base = bases.register_base("tree")
    root, first, second, grandchild = _build_tree(base["id"])
    items.mark_unchecked(first["id"])

    assert items.clean_unchecked_items() == 2

    db_session.expire_all()
    assert sorted(row.id for row in db_session.query(Item).all()) == [root["id"], second["id"]]
