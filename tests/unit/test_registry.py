from __future__ import annotations

import asyncio

import pytest
from conftest import FakeChannel, FakeProvider, FakeStore, wait_until

from live_transcription_agent.common.errors import ConflictError, ErrCode
from live_transcription_agent.domain.enums import CompletionReason
from live_transcription_agent.streaming.controller import SessionController
from live_transcription_agent.streaming.registry import ConnectionRegistry


def _make(session_id: str, timings, config, store: FakeStore) -> SessionController:
    return SessionController(
        session_id=session_id,
        provider=FakeProvider(),
        store=store,
        channel=FakeChannel(),
        timings=timings,
        provider_config=config,
    )


def test_second_stream_for_same_session_is_rejected(fast_timings, provider_config) -> None:
    async def scenario() -> None:
        registry = ConnectionRegistry()
        store = FakeStore()
        first = _make("s-1", fast_timings, provider_config, store)
        registry.register(first)

        with pytest.raises(ConflictError) as ei:
            registry.register(_make("s-1", fast_timings, provider_config, store))
        assert ei.value.code == ErrCode.SESSION_BUSY
        assert registry.get("s-1") is first
        assert len(registry) == 1

    asyncio.run(scenario())


def test_release_shuts_controller_down(fast_timings, provider_config) -> None:
    async def scenario() -> None:
        registry = ConnectionRegistry()
        store = FakeStore()
        ctrl = _make("s-1", fast_timings, provider_config, store)
        registry.register(ctrl)
        ctrl.start()
        await wait_until(lambda: ctrl.active_connection is not None)

        await registry.release("s-1")
        assert "s-1" not in registry
        assert ctrl.is_closed
        assert ctrl.completion_reason is CompletionReason.client_requested
        assert store.completed == ["s-1"]

        # повторный release и неизвестный id — без ошибок
        await registry.release("s-1")
        await registry.release("unknown")

    asyncio.run(scenario())


def test_shutdown_all_closes_every_session(fast_timings, provider_config) -> None:
    async def scenario() -> None:
        registry = ConnectionRegistry()
        store = FakeStore()
        ctrls = [_make(f"s-{i}", fast_timings, provider_config, store) for i in range(3)]
        for ctrl in ctrls:
            registry.register(ctrl)
            ctrl.start()
        await wait_until(lambda: all(c.active_connection is not None for c in ctrls))

        await registry.shutdown_all()

        assert len(registry) == 0
        assert all(c.completion_reason is CompletionReason.server_shutdown for c in ctrls)
        assert sorted(store.completed) == ["s-0", "s-1", "s-2"]

    asyncio.run(scenario())
