from __future__ import annotations

import os

# до импорта пакета: настройки читаются один раз на процесс
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STT_PROVIDER", "mock")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import asyncio  # noqa: E402
from collections.abc import Callable  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402

from live_transcription_agent.common.errors import ProviderError  # noqa: E402
from live_transcription_agent.stt.base import (  # noqa: E402
    ProviderConfig,
    StreamClosedEvent,
    StreamingConnection,
    TranscriptEvent,
)
from live_transcription_agent.streaming.timers import SessionTimings  # noqa: E402


class FakeConnection(StreamingConnection):
    def __init__(self, *, config: ProviderConfig, auto_ready: bool = True) -> None:
        super().__init__(config=config)
        self._auto_ready = auto_ready
        self.sent: list[bytes] = []
        self.final_on_finish: str | None = None
        self.finish_calls = 0
        self.shutdown_calls = 0

    async def _start(self) -> None:
        if self._auto_ready:
            self._mark_ready()

    def _send(self, chunk: bytes) -> None:
        self.sent.append(chunk)

    async def _half_close(self) -> None:
        # как у реального провайдера: хвост фразы приходит уже после half-close
        self.finish_calls += 1
        if self.final_on_finish:
            asyncio.get_running_loop().call_soon(self.emit_final, self.final_on_finish)

    async def _shutdown(self) -> None:
        self.shutdown_calls += 1

    def make_ready(self) -> None:
        self._mark_ready()

    def emit_final(self, text: str) -> None:
        self._emit(TranscriptEvent(text=text, is_final=True))

    def emit_interim(self, text: str) -> None:
        self._emit(TranscriptEvent(text=text, is_final=False))

    def fail(self, error: ProviderError) -> None:
        self._fail(error)

    def end(self, reason: str = "provider_closed") -> None:
        self._emit(StreamClosedEvent(reason=reason))


class FakeProvider:
    name = "fake"

    def __init__(self, *, failures: list[Exception] | None = None, open_delay: float = 0.0):
        self.failures = list(failures or [])
        self.open_delay = open_delay
        self.opened: list[FakeConnection] = []
        self.open_calls = 0

    async def open(self, config: ProviderConfig) -> StreamingConnection:
        self.open_calls += 1
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.failures:
            raise self.failures.pop(0)
        conn = FakeConnection(config=config)
        await conn.start()
        self.opened.append(conn)
        return conn


class FakeStore:
    def __init__(self, *, fail_updates: int = 0, fail_complete: bool = False) -> None:
        self.fail_updates = fail_updates
        self.fail_complete = fail_complete
        self.updates: list[tuple[str, str]] = []
        self.completed: list[str] = []
        self.update_attempts = 0

    async def update_transcript(self, session_id: str, transcript: str) -> None:
        self.update_attempts += 1
        if self.fail_updates > 0:
            self.fail_updates -= 1
            raise RuntimeError("db is down")
        self.updates.append((session_id, transcript))

    async def complete(self, session_id: str) -> None:
        if self.fail_complete:
            raise RuntimeError("db is down")
        self.completed.append(session_id)

    @property
    def last_text(self) -> str | None:
        return self.updates[-1][1] if self.updates else None


class FakeChannel:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str] | None = None

    async def send_json(self, message: dict[str, Any]) -> None:
        self.sent.append(message)

    async def close(self, *, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m.get("type") == kind]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.002)


@pytest.fixture
def fast_timings() -> SessionTimings:
    # длинные таймеры не мешают, тест включает нужный через dataclasses.replace
    return SessionTimings(
        bridge_buffer_sec=3.0,
        flush_interval_sec=60.0,
        segment_max_sec=60.0,
        silence_timeout_sec=60.0,
        health_check_interval_sec=60.0,
        health_stale_sec=60.0,
        restart_grace_sec=0.01,
        backoff_initial_sec=0.001,
        backoff_max_sec=0.005,
        restart_max_attempts=3,
    )


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(send_queue_max_chunks=4)
