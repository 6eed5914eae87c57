import os

import pytest

os.environ.setdefault("CATALOG_DB_BACKEND", "sqlite")

from catalog.errors import ValidationIssue
from catalog.services.app_info import get_app_info, list_app_info, set_app_info


def test_app_info_upsert(server_db):
    assert get_app_info("library.root") is None

    set_app_info("library.root", "/mnt/models")
    set_app_info("library.root", "/srv/models")
    set_app_info("ui.theme", None)

    assert get_app_info("library.root") == "/srv/models"
    assert list_app_info() == {"library.root": "/srv/models", "ui.theme": None}


def test_app_info_requires_label(server_db):
    with pytest.raises(ValidationIssue):
        set_app_info("", "value")
