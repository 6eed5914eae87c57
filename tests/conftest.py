import os

import pytest

os.environ.setdefault("CATALOG_DB_BACKEND", "sqlite")
os.environ.setdefault("CATALOG_MISSING_POLICY", "soft")

from sqlalchemy.orm import sessionmaker

from catalog.db import DB, create_catalog_engine
from catalog.models import Base


@pytest.fixture
def server_db(tmp_path):
    engine = create_catalog_engine(f"sqlite:///{tmp_path / 'catalog.sqlite'}")
    Base.metadata.create_all(engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = sessionmaker(bind=engine)
    try:
        yield engine
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    session = DB.SessionLocal()
    try:
        yield session
    finally:
        session.close()
