"""
Таймеры сессии.

Четыре независимых таймера, каждый только кладёт TimerFired в mailbox контроллера:
- flush            — периодический flush транскрипта
- segment_deadline — один раз на соединение, заметно раньше лимита провайдера
- silence          — перевзводится только финальным результатом STT
- health           — периодическая проверка, что аудио от клиента вообще идёт

Каждое взведение увеличивает generation: событие от отменённого таймера,
которое уже успело попасть в mailbox, контроллер отбрасывает через is_current().
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from live_transcription_agent.common.config import Settings
from live_transcription_agent.domain.enums import TimerKind

from .events import TimerFired


@dataclass(frozen=True)
class SessionTimings:
    bridge_buffer_sec: float = 3.0
    flush_interval_sec: float = 30.0
    segment_max_sec: float = 240.0
    silence_timeout_sec: float = 300.0
    health_check_interval_sec: float = 15.0
    health_stale_sec: float = 45.0
    restart_grace_sec: float = 1.5
    backoff_initial_sec: float = 0.5
    backoff_max_sec: float = 10.0
    restart_max_attempts: int = 8
    sample_rate: int = 16000
    sample_width: int = 2

    @classmethod
    def from_settings(cls, s: Settings) -> SessionTimings:
        return cls(
            bridge_buffer_sec=s.bridge_buffer_sec,
            flush_interval_sec=s.session_flush_interval_sec,
            segment_max_sec=s.session_segment_max_sec,
            silence_timeout_sec=s.session_silence_timeout_sec,
            health_check_interval_sec=s.session_health_check_interval_sec,
            health_stale_sec=s.session_health_stale_sec,
            restart_grace_sec=s.session_restart_grace_sec,
            backoff_initial_sec=s.session_restart_backoff_initial_ms / 1000.0,
            backoff_max_sec=s.session_restart_backoff_max_ms / 1000.0,
            restart_max_attempts=s.session_restart_max_attempts,
            sample_rate=s.audio_sample_rate,
            sample_width=s.audio_sample_width,
        )


class SessionTimerSet:
    def __init__(self, *, post: Callable[[TimerFired], None], timings: SessionTimings) -> None:
        self._post = post
        self._timings = timings
        self._tasks: dict[TimerKind, asyncio.Task] = {}
        self._generations: dict[TimerKind, int] = {kind: 0 for kind in TimerKind}

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start_all(self, *, segment_delay_sec: float) -> None:
        self._arm_periodic(TimerKind.flush, self._timings.flush_interval_sec)
        self._arm_periodic(TimerKind.health, self._timings.health_check_interval_sec)
        self.rearm_silence()
        self.arm_segment_deadline(segment_delay_sec)

    def rearm_silence(self) -> None:
        self._arm_oneshot(TimerKind.silence, self._timings.silence_timeout_sec)

    def arm_segment_deadline(self, delay_sec: float) -> None:
        self._arm_oneshot(TimerKind.segment_deadline, max(0.0, delay_sec))

    def is_current(self, event: TimerFired) -> bool:
        return event.timer in self._tasks and event.generation == self._generations[event.timer]

    def cancel_all(self) -> None:
        for kind in list(self._tasks):
            self._cancel(kind)

    # ---------------------------------------------------------------------
    # internal
    # ---------------------------------------------------------------------
    def _cancel(self, kind: TimerKind) -> None:
        task = self._tasks.pop(kind, None)
        self._generations[kind] += 1
        if task is not None and not task.done():
            task.cancel()

    def _arm_oneshot(self, kind: TimerKind, delay_sec: float) -> None:
        self._cancel(kind)
        generation = self._generations[kind]
        self._tasks[kind] = asyncio.create_task(self._oneshot(kind, generation, delay_sec))

    def _arm_periodic(self, kind: TimerKind, interval_sec: float) -> None:
        self._cancel(kind)
        generation = self._generations[kind]
        self._tasks[kind] = asyncio.create_task(self._periodic(kind, generation, interval_sec))

    async def _oneshot(self, kind: TimerKind, generation: int, delay_sec: float) -> None:
        await asyncio.sleep(delay_sec)
        self._post(TimerFired(timer=kind, generation=generation))

    async def _periodic(self, kind: TimerKind, generation: int, interval_sec: float) -> None:
        while True:
            await asyncio.sleep(interval_sec)
            self._post(TimerFired(timer=kind, generation=generation))
