"""
Pytest configuration and shared fixtures.

Tests run against a fresh SQLite file per test. Set BALIN_TEST_DATABASE_URL
to run the same suite against PostgreSQL or MySQL; the queue table is then
emptied before each test.
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from balin.config import Settings
from balin.db.models import Job
from balin.observability.metrics import MetricsCollector
from balin.queue import Queue, create_queue

TEST_DATABASE_URL = os.getenv("BALIN_TEST_DATABASE_URL")


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Get the test database URL."""
    if TEST_DATABASE_URL:
        return TEST_DATABASE_URL
    return f"sqlite+aiosqlite:///{tmp_path / 'balin_queue.sqlite'}"


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=database_url,
        log_level="INFO",
        log_format="console",
        worker_poll_interval_seconds=0.01,
        worker_concurrency=1,
        reaper_interval_seconds=1,
        claim_max_retries=5,
    )


@pytest.fixture
def registry() -> CollectorRegistry:
    """Isolated Prometheus registry so collectors can be created per test."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> MetricsCollector:
    """Create a metrics collector bound to the test registry."""
    return MetricsCollector(registry=registry)


@pytest_asyncio.fixture
async def queue(test_settings: Settings, metrics: MetricsCollector) -> AsyncGenerator[Queue]:
    """Create a ready queue on an empty table."""
    q = await create_queue(test_settings, metrics=metrics)

    if q.database.dialect != "sqlite":
        async with q.database.session() as session:
            await session.execute(delete(Job))

    yield q

    await q.close()


@pytest_asyncio.fixture
async def db_session(queue: Queue) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests. Committed on exit."""
    async with queue.database.session() as session:
        yield session


@pytest.fixture
def set_job_fields(queue: Queue) -> Callable[..., Awaitable[None]]:
    """
    Overwrite columns of a stored job directly.

    Used to simulate elapsed time, e.g. a lock taken two hours ago.
    """

    async def _set(job_id: int, **fields: Any) -> None:
        async with queue.database.session() as session:
            await session.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(**fields)
                .execution_options(synchronize_session=False)
            )

    return _set


@pytest.fixture
def sample_payload() -> dict[str, Any]:
    """Create a sample job payload."""
    return {
        "user_id": 42,
        "message": "Hello, World!",
        "tags": ["a", "b"],
        "nested": {"ratio": 0.5, "ok": True, "missing": None},
    }
