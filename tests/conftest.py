"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from buildwatch.ci.client import JenkinsClient
from buildwatch.ci.models import Crumb, LogChunkResponse, SubmitResult
from buildwatch.config import Config, JenkinsConfig, PollingConfig
from buildwatch.core.polling import RetryPolicy
from buildwatch.events.bus import EventBus
from buildwatch.persistence.database import Database
from buildwatch.persistence.repository import BuildRecordRepository
from buildwatch.utils.security import clear_registered_secrets

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Generator

# Use pytest-asyncio's built-in event loop management
# See: https://pytest-asyncio.readthedocs.io/en/latest/concepts.html
pytest_plugins = ("pytest_asyncio",)


class FakeJenkinsClient(JenkinsClient):
    """
    Scripted CI client.

    Queue items, build statuses and log chunks are consumed one per call.
    An Exception instance in a script is raised instead of returned. Once a
    script runs out, its last entry is repeated (logs return no bytes). Log
    chunks may be given as str (sent as UTF-8) or as raw bytes.
    """

    def __init__(
        self,
        *,
        auth_ok: bool = True,
        buildable: bool = True,
        crumb: Crumb | None = None,
        queue_id: int | None = 42,
        submit_error: Exception | None = None,
        queue_items: Iterable[Any] = (),
        statuses: Iterable[Any] = (),
        log_chunks: Iterable[Any] = (),
        last_build: dict[str, Any] | None = None,
    ):
        super().__init__(JenkinsConfig(url="http://ci.test", job_name="demo"))
        self.auth_ok = auth_ok
        self.buildable = buildable
        self.crumb = crumb
        self.queue_id = queue_id
        self.submit_error = submit_error
        self.queue_items = list(queue_items)
        self.statuses = list(statuses)
        self.log_chunks = list(log_chunks)
        self.last_build = last_build
        self.submitted: list[tuple[str, dict[str, str], Crumb | None]] = []
        self.log_starts: list[int] = []

    @staticmethod
    def _next(script: list[Any], default: Any) -> Any:
        if not script:
            return default
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    def check_auth(self) -> bool:
        return self.auth_ok

    def check_job_buildable(self, job_name: str) -> bool:
        return self.buildable

    def fetch_crumb(self) -> Crumb | None:
        return self.crumb

    def submit(self, job_name, params=None, crumb=None) -> SubmitResult:
        self.submitted.append((job_name, dict(params or {}), crumb))
        if self.submit_error is not None:
            raise self.submit_error
        return SubmitResult(
            accepted=True,
            queue_id=self.queue_id,
            endpoint="buildWithParameters",
            status_code=201,
        )

    def get_queue_item(self, queue_id: int) -> dict[str, Any] | None:
        return self._next(self.queue_items, {"id": queue_id})

    def get_build(self, job_name: str, build_number: int) -> dict[str, Any]:
        return self._next(self.statuses, {"building": True, "number": build_number})

    def get_last_build(self, job_name: str) -> dict[str, Any] | None:
        return self.last_build

    def fetch_log_chunk(self, job_name: str, build_number: int, start: int) -> LogChunkResponse:
        self.log_starts.append(start)
        if not self.log_chunks:
            return LogChunkResponse(data=b"", start=start)
        item = self.log_chunks.pop(0)
        if isinstance(item, Exception):
            raise item
        data = item if isinstance(item, bytes) else item.encode("utf-8")
        return LogChunkResponse(data=data, start=start)


def drain(subscription) -> list[dict[str, Any]]:
    """Return every message queued on a subscription."""
    messages = []
    while (message := subscription.get_nowait()) is not None:
        messages.append(message)
    return messages


@pytest.fixture(autouse=True)
def _reset_secrets() -> Generator[None, None, None]:
    yield
    clear_registered_secrets()


@pytest.fixture
async def temp_db_path() -> AsyncGenerator[Path, None]:
    """Create a temporary database path."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
async def database(temp_db_path: Path) -> AsyncGenerator[Database, None]:
    """Create a test database."""
    db = Database(temp_db_path)
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def repository(database: Database) -> BuildRecordRepository:
    return BuildRecordRepository(database)


@pytest.fixture
def bus(repository: BuildRecordRepository) -> EventBus:
    """Event bus persisting completions to the test database."""
    return EventBus(sink=repository, queue_size=100)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(interval=0, max_attempts=10)


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config with short polling intervals and a temporary database."""
    return Config.model_validate(
        {
            "jenkins": JenkinsConfig(url="http://ci.test", job_name="demo"),
            "polling": PollingConfig(
                queue_interval=0.01,
                queue_timeout=5,
                stream_interval=0.01,
                stream_timeout=5,
            ),
            "storage": {"db_path": tmp_path / "buildwatch.db"},
            "logging": {"log_dir": tmp_path / "logs"},
        }
    )


@pytest.fixture
def make_client() -> type[FakeJenkinsClient]:
    """Factory for scripted CI clients."""
    return FakeJenkinsClient


@pytest.fixture(name="drain")
def drain_fixture():
    return drain
