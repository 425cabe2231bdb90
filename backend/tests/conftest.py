"""Shared fixtures.

Tests drive coroutines with ``asyncio.run`` inside plain test functions, so no
async fixtures are needed; every fixture below is synchronous.
"""
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

# Must be set before importing app modules.
os.environ["STORE_BACKEND"] = "memory"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LINE_CHANNEL_SECRET"] = "test_secret"
os.environ["LINE_CHANNEL_ACCESS_TOKEN"] = "test_token"
os.environ["RETRY_INITIAL_DELAY_SECONDS"] = "0"
os.environ["APP_UTC_OFFSET_HOURS"] = "8"

from api.main import app
from common.cache import QueryCache
from common.commands import CommandInterpreter
from common.repository import TodoRepository
from common.retry import RetryPolicy
from common.store import MemoryRowStore

TAIPEI = timezone(timedelta(hours=8))
# 04:00 on 2026-03-02 in UTC+8, still 2026-03-01 in UTC.
CLOCK_START = datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc)


class FakeClock:
    """Advances by ``step`` on every read so created_at values never tie."""

    def __init__(self, start: datetime = CLOCK_START, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=3, initial_delay=0, max_delay=0)


@pytest.fixture
def memory_store():
    return MemoryRowStore()


@pytest.fixture
def repo(memory_store, clock, fast_policy):
    return TodoRepository(
        store=memory_store,
        cache=QueryCache(ttl_seconds=60, max_entries=100),
        retry_policy=fast_policy,
        healthcheck_attempts=5,
        utc_offset=TAIPEI,
        clock=clock,
    )


@pytest.fixture
def mock_send():
    return AsyncMock(return_value={})


@pytest.fixture
def interpreter(repo, mock_send):
    return CommandInterpreter(repository=repo, send_reply=mock_send)


@pytest.fixture
def api_app(repo, interpreter):
    with patch("api.main.repository", repo), patch("api.main.interpreter", interpreter):
        yield app
