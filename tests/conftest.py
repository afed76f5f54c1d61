"""Pytest configuration for test isolation.

Every test gets its own file-backed SQLite database and the shared engine in
``db.client`` is disposed afterwards, so no engine (or its event loop) leaks
into the next test. Inference credentials are removed from the environment so
nothing can reach the network by accident.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from db.client import dispose_engine

from statement_pipeline.persistence import TransactionStore
from tests.helpers.db import bootstrap_sqlite_db


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "OPENAI_API_KEY",
        "DATABASE_URL",
        "STATEMENT_PIPELINE_MODEL",
        "STATEMENT_PIPELINE_ENRICH_CONCURRENCY",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    import statement_pipeline.enrichment as enrichment_mod

    monkeypatch.setattr(enrichment_mod, "_BACKOFF_SCHEDULE_SEC", (0.0,))


@pytest.fixture
async def database_url(tmp_path: Path) -> AsyncIterator[str]:
    url = await bootstrap_sqlite_db(tmp_path / "statements.db")
    yield url
    await dispose_engine()


@pytest.fixture
def store(database_url: str) -> TransactionStore:
    return TransactionStore(database_url=database_url)
