from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import structlog
from httpx import ASGITransport, AsyncClient

from workqueue.config.settings import Settings
from workqueue.infra.database import Database, get_database
from workqueue.jobs.service import JobService
from workqueue.jobs.store import JobStore
from workqueue.jobs.worker import JobWorker

from sample_payloads import Tally

TEST_HOST = "test-host"


class FrozenClock:
    """Store clock that only moves when a test advances it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def database_url(tmp_path) -> str:
    # File-backed so that concurrent sessions really use separate connections
    return f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture
def test_settings(database_url) -> Settings:
    return Settings(
        database_url=database_url,
        job_worker_host=TEST_HOST,
        job_sleep_delay_s=0,
        job_max_run_time_s=3600,
    )


@pytest.fixture
async def database(test_settings) -> AsyncGenerator[Database, None]:
    db = Database(test_settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime.now(UTC).replace(microsecond=0))


@pytest.fixture
def store(database, clock) -> JobStore:
    return JobStore(database.SessionLocal, clock=clock)


@pytest.fixture
def service(test_settings, store) -> JobService:
    return JobService(test_settings, store)


@pytest.fixture
def worker(store, test_settings) -> JobWorker:
    return JobWorker(store, test_settings, name="worker-1", host=TEST_HOST)


@pytest.fixture
def other_worker(store, test_settings) -> JobWorker:
    return JobWorker(store, test_settings, name="worker-2", host=TEST_HOST)


@pytest.fixture
def tally(tmp_path) -> Tally:
    return Tally(tmp_path / "tally.log")


@pytest.fixture
def app(database):
    """Inspection API wired to the test database."""
    from workqueue.main import create_app

    app = create_app()
    app.dependency_overrides[get_database] = lambda: database

    yield app

    app.dependency_overrides.clear()
    # create_app() configures cached loggers; later tests may swap sys.stdout
    structlog.reset_defaults()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
