"""Pytest configuration and fixtures.

Tests run against an in-memory SQLite database through aiosqlite. Postgres
column types are swapped for portable ones before any table is created.
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

# Settings are read at import time; the well-known service key is only
# accepted in DEBUG mode.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOGIN_CHECK_REQUESTS_PER_WINDOW", "0")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.types import TypeDecorator

from resilience.api.deps import get_alert_dispatcher, get_db, get_job_registry
from resilience.core.config import settings
from resilience.db.base import Base
from resilience.main import app
from resilience.models.failed_job import FailedJob, JobType
from resilience.services.alerts import AlertDispatcher
from resilience.services.job_handlers import JobHandler, JobHandlerRegistry

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=UTC)


def _patch_columns_for_sqlite() -> None:
    """Substitute Postgres-specific column types for SQLite compatibility.

    * ``JSONB`` -> ``JSON``
    * ``DateTime(timezone=True)`` -> naive UTC storage that comes back aware
    """

    class _UTCAwareDateTime(TypeDecorator):
        impl = DateTime
        cache_ok = True

        def process_bind_param(self, value, dialect):  # type: ignore[override]
            if value is not None and value.tzinfo is not None:
                return value.astimezone(UTC).replace(tzinfo=None)
            return value

        def process_result_value(self, value, dialect):  # type: ignore[override]
            if value is not None and value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value

    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()
            elif isinstance(column.type, DateTime) and getattr(column.type, "timezone", False):
                column.type = _UTCAwareDateTime()


_patch_columns_for_sqlite()


class RecordingAlerts(AlertDispatcher):
    """Collects alerts instead of delivering them."""

    def __init__(self):
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def notify(self, kind: str, payload: dict[str, Any]) -> None:
        self.sent.append((kind, payload))

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.sent]


class ScriptedHandler(JobHandler):
    """Handler whose outcomes are queued up by the test.

    Each entry is either a bool (returned) or an exception (raised). Once the
    script runs out the last outcome repeats.
    """

    def __init__(self, job_type: JobType, *outcomes):
        self.job_type = job_type
        self.outcomes = list(outcomes) or [True]
        self.calls: list[FailedJob] = []

    async def execute(self, db: AsyncSession, job: FailedJob) -> bool:
        self.calls.append(job)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


AUTH_HEADERS = {"Authorization": f"Bearer {settings.SERVICE_ROLE_KEY}"}


@pytest.fixture
def alerts() -> RecordingAlerts:
    return RecordingAlerts()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """In-memory database with every table created."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def edge_handler() -> ScriptedHandler:
    return ScriptedHandler(JobType.EDGE_FUNCTION, True)


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession, alerts: RecordingAlerts, edge_handler: ScriptedHandler
) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client wired to the test database and recording alerts."""

    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_alert_dispatcher] = lambda: alerts
    app.dependency_overrides[get_job_registry] = lambda: JobHandlerRegistry([edge_handler])

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def admin_client(client: AsyncClient) -> AsyncClient:
    """Client presenting the service-role key."""
    client.headers.update(AUTH_HEADERS)
    return client


@pytest.fixture
def handler_factory():
    """Build handlers with scripted outcomes: ``handler_factory(JobType.EMAIL, False, True)``."""
    return ScriptedHandler


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return dict(AUTH_HEADERS)


@pytest.fixture
def now() -> datetime:
    return NOW
