# tiergate/conftest.py
import os
from datetime import datetime, timezone
from uuid import uuid4

import pytest


@pytest.fixture(scope="session")
def db_url():
    """
    Provide TEST_DATABASE_URL for tests.

    Returns the URL from environment, or None to use a throwaway SQLite file.
    """
    return os.getenv("TEST_DATABASE_URL")


@pytest.fixture(autouse=True)
def ledger_db(db_url, tmp_path):
    """
    Bind a clean ledger database for each test.

    Without TEST_DATABASE_URL every test gets its own SQLite file. With it,
    tables are dropped and recreated so tests never see each other's rows.
    """
    from tiergate.core.database import create_all_tables, drop_all_tables, init_engine
    from tiergate.core.locks import clear_user_locks

    init_engine(db_url or f"sqlite:///{tmp_path / 'tiergate.db'}")
    if db_url:
        drop_all_tables()
    create_all_tables()
    clear_user_locks()
    yield
    clear_user_locks()


@pytest.fixture
def now():
    """Fixed mid-month instant so month and week boundaries are predictable."""
    return datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def user_id():
    return f"user-{uuid4()}"
