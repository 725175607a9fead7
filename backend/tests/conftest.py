"""Shared test fixtures."""

import asyncio
import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from pathlib import Path

# Settings are read at import time; point the app at a throwaway SQLite file first.
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///" + str(Path(tempfile.mkdtemp(prefix="alertfeed-")) / "alertfeed_test.db"),
)
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
import pytest_asyncio
from starlette.websockets import WebSocketState

from alertfeed.services.alert_store import AlertStore
from alertfeed.time_windows import TimeWindows
from database.session import get_engine, get_session_factory, init_db

# 2026-03-10 15:30 in Asia/Kolkata
FIXED_NOW = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeWebSocket:
    """Minimal stand-in for starlette's WebSocket as used by the distributor."""

    def __init__(self, *, fail_on_send: bool = False):
        self.client = ("testclient", 50000)
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING
        self.sent: list[str] = []
        self.close_codes: list[int] = []
        self.fail_on_send = fail_on_send
        self.gate: asyncio.Event | None = None

    async def accept(self) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, data: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_on_send:
            raise RuntimeError("connection reset")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.close_codes.append(code)
        self.application_state = WebSocketState.DISCONNECTED
        self.client_state = WebSocketState.DISCONNECTED


async def settle(rounds: int = 10) -> None:
    """Let writer tasks drain their queues."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def windows(clock: FixedClock) -> TimeWindows:
    return TimeWindows("Asia/Kolkata", retention_days=5, clock=clock)


@pytest_asyncio.fixture(scope="function")
async def store(tmp_path) -> AsyncGenerator[AlertStore, None]:
    """Fresh SQLite file per test so rows never leak between tests."""
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await init_db(engine)
    yield AlertStore(get_session_factory(engine))
    await engine.dispose()
