from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from spec_planner_api.app.storage import PostgresSpecStorage


@pytest.fixture
def postgres_storage() -> Iterator[PostgresSpecStorage]:
    if os.getenv("RUN_POSTGRES_INTEGRATION_TESTS") != "1":
        pytest.skip(
            "Set RUN_POSTGRES_INTEGRATION_TESTS=1 and DATABASE_URL "
            "to run integration tests against PostgreSQL."
        )
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL is required for integration tests.")

    storage = PostgresSpecStorage(database_url)
    storage.migrate()
    _truncate(storage)
    try:
        yield storage
    finally:
        _truncate(storage)


def _truncate(storage: PostgresSpecStorage) -> None:
    with storage._connect() as conn:
        conn.execute("TRUNCATE specs, user_stories, engineering_tasks, risks RESTART IDENTITY")
        conn.commit()
