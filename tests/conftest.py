"""
Pytest configuration and fixtures for the ingestion service tests.

Unit tests run against in-memory fakes (see ``tests/utils/fakes.py``). The
database tables are only bootstrapped when SKIP_DB_INIT is explicitly set to
something other than ``1``, for runs against a live Postgres.
"""

import os

# Unit runs never need Postgres; export SKIP_DB_INIT=0 to bootstrap tables.
os.environ.setdefault("SKIP_DB_INIT", "1")
os.environ.setdefault("ORACLE_PROVIDER", "heuristic")

import pytest
from sqlalchemy.exc import OperationalError

from tests.utils.fakes import FakeTargetTables, InMemoryStorage, InMemoryUploadStore


@pytest.fixture(scope="session", autouse=True)
def initialize_test_database():
    """Create the uploads and target tables once per session when a database is in use."""
    if os.getenv("SKIP_DB_INIT") == "1":
        yield
        return

    from app.db.target_tables import create_target_tables
    from app.domain.uploads.uploads import create_uploads_table

    try:
        create_uploads_table()
        create_target_tables()
    except OperationalError as exc:
        print(f"WARNING: Database unavailable, skipping table bootstrap: {exc}")
    yield


@pytest.fixture
def upload_store(monkeypatch):
    return InMemoryUploadStore().install(monkeypatch)


@pytest.fixture
def storage(monkeypatch):
    return InMemoryStorage().install(monkeypatch)


@pytest.fixture
def target_tables(monkeypatch):
    return FakeTargetTables().install(monkeypatch)
