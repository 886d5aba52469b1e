"""
Контроллер realtime-сессии транскрибации (один на WS-подключение).

Модель:
- актор: единственный mailbox, события обрабатываются последовательно
- ровно одно активное STT-соединение; во время рестарта старое дорабатывает
  grace-окно, но новое аудио после swap идёт только в новое
- у каждого соединения свой канал событий и своя pump-задача; старое соединение
  после swap получает half-close и pump читает его последние финалы до конца grace
  (или до конца его стрима), затем pump отменяется до close()

Состояния: STARTING -> ACTIVE <-> PAUSED -> CLOSING -> CLOSED.

Рестарт сегмента (дедлайн сегмента, health watchdog, ошибка провайдера,
команда клиента):
1. если рестарт уже идёт — игнор
2. flush транскрипта
3. open() нового соединения в фоне (с backoff); старое продолжает принимать аудио
4. ConnectionOpened: replay bridge buffer в новое соединение и swap — одна точка
   истины "куда идёт следующий чанк"
5. старое соединение получает half-close; через grace (или раньше, когда провайдер
   сам закрыл стрим) оно отцепляется и закрывается
6. дедлайн сегмента перевзводится от старта нового соединения
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from live_transcription_agent.common.config import get_settings
from live_transcription_agent.common.errors import ProviderError, ProviderTransientError
from live_transcription_agent.common.logging import get_project_logger
from live_transcription_agent.common.metrics import (
    AUDIO_CHUNKS_DROPPED_TOTAL,
    PROVIDER_CONNECT_LATENCY_MS,
    PROVIDER_ERRORS_TOTAL,
    SEGMENT_RESTARTS_TOTAL,
    SESSIONS_COMPLETED_TOTAL,
    provider_error_kind,
)
from live_transcription_agent.common.time import monotonic
from live_transcription_agent.contracts.ws_events import (
    error_event,
    session_complete_event,
    transcript_event,
)
from live_transcription_agent.domain.enums import (
    CompletionReason,
    ControlCommand,
    ControllerState,
    TimerKind,
)
from live_transcription_agent.domain.state_machine import is_terminal, transition
from live_transcription_agent.storage.session_store import TranscriptStore
from live_transcription_agent.stt.base import (
    ProviderConfig,
    ProviderErrorEvent,
    StreamClosedEvent,
    StreamingConnection,
    StreamingProvider,
    TranscriptEvent,
)

from .accumulator import TranscriptAccumulator
from .backoff import RestartBackoff
from .bridge_buffer import BridgeBuffer
from .events import (
    AudioIn,
    ConnectionOpened,
    ConnectionOpenFailed,
    ControlIn,
    GraceExpired,
    ProviderMessage,
    SessionEvent,
    Shutdown,
    TimerFired,
)
from .timers import SessionTimerSet, SessionTimings

log = get_project_logger()

_INITIAL_OPEN_REASONS = frozenset({"start", "resume"})

_CLOSE_CODES: dict[CompletionReason, tuple[int, str]] = {
    CompletionReason.silence_timeout: (1000, "Session completed due to silence"),
    CompletionReason.error: (1011, "Transcription error"),
    CompletionReason.server_shutdown: (1001, "Server shutting down"),
}


class ClientChannel(Protocol):
    """Исходящая сторона клиентского транспорта."""

    async def send_json(self, message: dict[str, Any]) -> None: ...

    async def close(self, *, code: int = 1000, reason: str = "") -> None: ...


class SessionController:
    def __init__(
        self,
        *,
        session_id: str,
        provider: StreamingProvider,
        store: TranscriptStore,
        channel: ClientChannel,
        timings: SessionTimings | None = None,
        provider_config: ProviderConfig | None = None,
    ) -> None:
        settings = get_settings()
        self.session_id = session_id
        self._provider = provider
        self._channel = channel
        self._timings = timings or SessionTimings.from_settings(settings)
        self._provider_config = provider_config or ProviderConfig.from_settings(settings)

        self._mailbox: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._state = ControllerState.starting
        self._bridge = BridgeBuffer(
            seconds=self._timings.bridge_buffer_sec,
            sample_rate=self._timings.sample_rate,
            sample_width=self._timings.sample_width,
        )
        self._accumulator = TranscriptAccumulator(session_id=session_id, store=store)
        self._timers = SessionTimerSet(post=self._post, timings=self._timings)
        self._backoff = RestartBackoff(
            initial_sec=self._timings.backoff_initial_sec,
            max_sec=self._timings.backoff_max_sec,
            max_attempts=self._timings.restart_max_attempts,
        )

        self._active: StreamingConnection | None = None
        self._pumps: dict[StreamingConnection, asyncio.Task] = {}
        self._retiring: dict[StreamingConnection, asyncio.Task] = {}
        self._open_task: asyncio.Task | None = None
        self._open_generation = 0
        self._run_task: asyncio.Task | None = None

        self.restart_count = 0
        self.completion_reason: CompletionReason | None = None
        self.last_audio_at = monotonic()

    # =====================================================================
    # PUBLIC API
    # =====================================================================
    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def is_paused(self) -> bool:
        return self._state is ControllerState.paused

    @property
    def is_closing(self) -> bool:
        return is_terminal(self._state)

    @property
    def is_closed(self) -> bool:
        return self._state is ControllerState.closed

    @property
    def is_restarting(self) -> bool:
        return self._open_task is not None and self._active is not None

    @property
    def accumulated_transcript(self) -> str:
        return self._accumulator.text

    @property
    def active_connection(self) -> StreamingConnection | None:
        return self._active

    @property
    def last_final_result_at(self) -> float | None:
        return self._accumulator.last_final_at

    @property
    def connection_started_at(self) -> float | None:
        return self._active.started_at if self._active is not None else None

    def start(self) -> asyncio.Task:
        if self._run_task is None:
            self._run_task = asyncio.create_task(self._run(), name=f"session-{self.session_id}")
        return self._run_task

    def submit_audio(self, chunk: bytes) -> None:
        self._post(AudioIn(chunk=chunk))

    def submit_control(self, command: ControlCommand) -> None:
        self._post(ControlIn(command=command))

    def request_shutdown(self, reason: CompletionReason) -> None:
        self._post(Shutdown(reason=reason))

    async def wait_closed(self) -> None:
        if self._run_task is None:
            return
        # shield: отмена вызывающего не должна прерывать финальный flush/complete
        await asyncio.shield(self._run_task)

    async def shutdown(self, reason: CompletionReason = CompletionReason.client_requested) -> None:
        if self._run_task is None or self._run_task.done():
            return
        self.request_shutdown(reason)
        await self.wait_closed()

    # =====================================================================
    # ЦИКЛ АКТОРА
    # =====================================================================
    def _post(self, event: SessionEvent) -> None:
        if self._state is ControllerState.closed:
            return
        self._mailbox.put_nowait(event)

    async def _run(self) -> None:
        log.info(
            "session_started",
            extra={"payload": {"session_id": self.session_id, "provider": self._provider.name}},
        )
        self._begin_open("start")
        try:
            while self._state is not ControllerState.closed:
                event = await self._mailbox.get()
                try:
                    await self._dispatch(event)
                except Exception as e:
                    log.error(
                        "session_event_failed",
                        extra={
                            "payload": {
                                "session_id": self.session_id,
                                "event": type(event).__name__,
                                "err": str(e)[:200],
                            }
                        },
                        exc_info=True,
                    )
                    await self._fail("Внутренняя ошибка сессии")
        except asyncio.CancelledError:
            await self._close(CompletionReason.server_shutdown)
            raise
        finally:
            await self._discard_pending()

    async def _discard_pending(self) -> None:
        # соединение, открытое уже после закрытия сессии, закрываем сразу
        while not self._mailbox.empty():
            event = self._mailbox.get_nowait()
            if isinstance(event, ConnectionOpened):
                await event.connection.close()

    async def _dispatch(self, event: SessionEvent) -> None:
        if isinstance(event, AudioIn):
            self._on_audio(event.chunk)
        elif isinstance(event, ProviderMessage):
            await self._on_provider_message(event)
        elif isinstance(event, TimerFired):
            await self._on_timer(event)
        elif isinstance(event, ControlIn):
            await self._on_control(event.command)
        elif isinstance(event, ConnectionOpened):
            await self._on_connection_opened(event)
        elif isinstance(event, ConnectionOpenFailed):
            await self._on_open_failed(event)
        elif isinstance(event, GraceExpired):
            await self._close_connection(event.connection)
        elif isinstance(event, Shutdown):
            await self._close(event.reason)

    # =====================================================================
    # АУДИО
    # =====================================================================
    def _on_audio(self, chunk: bytes) -> None:
        if self._state is ControllerState.paused:
            AUDIO_CHUNKS_DROPPED_TOTAL.labels(reason="paused").inc()
            return
        if is_terminal(self._state):
            AUDIO_CHUNKS_DROPPED_TOTAL.labels(reason="closing").inc()
            return
        self.last_audio_at = monotonic()
        self._bridge.append(chunk)
        if self._active is not None:
            self._active.write(chunk)

    # =====================================================================
    # КОМАНДЫ КЛИЕНТА
    # =====================================================================
    async def _on_control(self, command: ControlCommand) -> None:
        log.info(
            "session_control",
            extra={
                "payload": {
                    "session_id": self.session_id,
                    "command": command.value,
                    "state": self._state.value,
                }
            },
        )
        if command is ControlCommand.pause:
            await self._pause()
        elif command is ControlCommand.resume:
            self._resume()
        elif command is ControlCommand.restart_segment:
            self._start_restart("client_request")

    async def _pause(self) -> None:
        if not self._set_state(ControllerState.paused):
            return
        self._timers.cancel_all()
        self._cancel_open()
        for conn in self._connections():
            await self._close_connection(conn)
        self._active = None
        self._accumulator.request_flush()

    def _resume(self) -> None:
        if self._state is not ControllerState.paused:
            return
        self._set_state(ControllerState.active)
        self._backoff.reset()
        self.last_audio_at = monotonic()
        self._begin_open("resume")

    # =====================================================================
    # ТАЙМЕРЫ
    # =====================================================================
    async def _on_timer(self, event: TimerFired) -> None:
        if not self._timers.is_current(event):
            return
        if event.timer is TimerKind.flush:
            self._accumulator.request_flush()
        elif event.timer is TimerKind.segment_deadline:
            self._start_restart("segment_deadline")
        elif event.timer is TimerKind.silence:
            log.info(
                "session_silence_timeout",
                extra={
                    "payload": {
                        "session_id": self.session_id,
                        "timeout_sec": self._timings.silence_timeout_sec,
                    }
                },
            )
            await self._close(CompletionReason.silence_timeout)
        elif event.timer is TimerKind.health:
            idle_sec = monotonic() - self.last_audio_at
            if idle_sec <= self._timings.health_stale_sec:
                return
            log.warning(
                "session_audio_stale",
                extra={"payload": {"session_id": self.session_id, "idle_sec": round(idle_sec, 1)}},
            )
            # следующая проверка считает от момента рестарта
            self.last_audio_at = monotonic()
            self._start_restart("health_watchdog")

    # =====================================================================
    # STT-СОЕДИНЕНИЯ
    # =====================================================================
    def _begin_open(self, reason: str) -> None:
        self._open_generation += 1
        self._open_task = asyncio.create_task(
            self._open_with_backoff(reason, self._open_generation)
        )

    def _cancel_open(self) -> None:
        if self._open_task is not None:
            self._open_task.cancel()
            self._open_task = None
        self._open_generation += 1

    async def _open_with_backoff(self, reason: str, generation: int) -> None:
        while True:
            started = monotonic()
            try:
                conn = await self._provider.open(self._provider_config)
            except Exception as e:
                err = e if isinstance(e, ProviderError) else ProviderTransientError(str(e)[:300])
                PROVIDER_ERRORS_TOTAL.labels(
                    kind="unavailable" if err.retryable else "fatal"
                ).inc()
                if not err.retryable:
                    self._post(ConnectionOpenFailed(error=err, reason=reason, generation=generation))
                    return
                delay = self._backoff.next_delay()
                if delay is None:
                    self._post(
                        ConnectionOpenFailed(
                            error=err, reason=reason, generation=generation, exhausted=True
                        )
                    )
                    return
                log.warning(
                    "stt_connection_open_retry",
                    extra={
                        "payload": {
                            "session_id": self.session_id,
                            "reason": reason,
                            "attempt": self._backoff.attempts,
                            "delay_sec": delay,
                            "err": err.message[:200],
                        }
                    },
                )
                await asyncio.sleep(delay)
                continue
            PROVIDER_CONNECT_LATENCY_MS.observe((monotonic() - started) * 1000)
            self._post(ConnectionOpened(connection=conn, reason=reason, generation=generation))
            return

    async def _on_connection_opened(self, event: ConnectionOpened) -> None:
        conn = event.connection
        if event.generation != self._open_generation or self._state not in (
            ControllerState.starting,
            ControllerState.active,
        ):
            await conn.close()
            return
        self._open_task = None

        previous = self._active
        self._pumps[conn] = asyncio.create_task(self._pump(conn))
        replayed = self._bridge.replay(conn)
        self._active = conn
        self._backoff.reset()
        if previous is not None:
            await self._retire(previous)

        if self._state is ControllerState.starting:
            self._set_state(ControllerState.active)
        segment_delay = self._timings.segment_max_sec - conn.age_sec
        if self._timers.running:
            self._timers.arm_segment_deadline(segment_delay)
        else:
            self._timers.start_all(segment_delay_sec=segment_delay)

        if event.reason not in _INITIAL_OPEN_REASONS:
            self.restart_count += 1
        log.info(
            "stt_connection_active",
            extra={
                "payload": {
                    "session_id": self.session_id,
                    "connection_id": conn.connection_id,
                    "previous_connection_id": previous.connection_id if previous else None,
                    "reason": event.reason,
                    "restart_count": self.restart_count,
                    "replayed_bytes": replayed,
                }
            },
        )

    async def _on_open_failed(self, event: ConnectionOpenFailed) -> None:
        if event.generation != self._open_generation:
            return
        self._open_task = None
        if self._state not in (ControllerState.starting, ControllerState.active):
            return
        log.error(
            "stt_connection_open_failed",
            extra={
                "payload": {
                    "session_id": self.session_id,
                    "reason": event.reason,
                    "code": event.error.code,
                    "retryable": event.error.retryable,
                    "exhausted": event.exhausted,
                    "err": event.error.message[:200],
                }
            },
        )
        await self._fail("Сервис распознавания речи недоступен")

    def _start_restart(self, reason: str) -> None:
        if self._state is not ControllerState.active:
            return
        if self._open_task is not None:
            log.info(
                "segment_restart_skipped",
                extra={"payload": {"session_id": self.session_id, "reason": reason}},
            )
            return
        SEGMENT_RESTARTS_TOTAL.labels(reason=reason).inc()
        log.info(
            "segment_restart_begin",
            extra={
                "payload": {
                    "session_id": self.session_id,
                    "reason": reason,
                    "connection_id": self._active.connection_id if self._active else None,
                    "connection_age_sec": round(self._active.age_sec, 3) if self._active else None,
                }
            },
        )
        self._accumulator.request_flush()
        self._begin_open(reason)

    async def _retire(self, conn: StreamingConnection) -> None:
        self._retiring[conn] = asyncio.create_task(self._grace(conn))
        await conn.finish()

    async def _grace(self, conn: StreamingConnection) -> None:
        await asyncio.sleep(self._timings.restart_grace_sec)
        self._post(GraceExpired(connection=conn))

    async def _pump(self, conn: StreamingConnection) -> None:
        async for event in conn.events():
            self._post(ProviderMessage(connection=conn, event=event))

    def _detach(self, conn: StreamingConnection) -> None:
        pump = self._pumps.pop(conn, None)
        if pump is not None:
            pump.cancel()
        grace = self._retiring.pop(conn, None)
        if grace is not None:
            grace.cancel()

    async def _close_connection(self, conn: StreamingConnection) -> None:
        # сначала отцепляем канал событий, потом закрываем
        self._detach(conn)
        if conn is self._active:
            self._active = None
        await conn.close()

    def _connections(self) -> list[StreamingConnection]:
        conns = list(self._retiring)
        if self._active is not None and self._active not in self._retiring:
            conns.append(self._active)
        return conns

    # =====================================================================
    # СОБЫТИЯ ПРОВАЙДЕРА
    # =====================================================================
    async def _on_provider_message(self, message: ProviderMessage) -> None:
        conn = message.connection
        if conn is not self._active and conn not in self._retiring:
            return
        event = message.event
        if isinstance(event, TranscriptEvent):
            await self._on_transcript(event)
            return
        # ошибки старого соединения после swap уже не важны
        if conn is not self._active:
            if isinstance(event, StreamClosedEvent):
                await self._close_connection(conn)
            return
        if isinstance(event, ProviderErrorEvent):
            await self._on_provider_error(conn, event.error)
        elif isinstance(event, StreamClosedEvent):
            log.info(
                "stt_stream_closed",
                extra={
                    "payload": {
                        "session_id": self.session_id,
                        "connection_id": conn.connection_id,
                        "reason": event.reason,
                        "connection_age_sec": round(conn.age_sec, 3),
                    }
                },
            )
            self._start_restart("stream_closed")

    async def _on_transcript(self, event: TranscriptEvent) -> None:
        text = (event.text or "").strip()
        if not text:
            return
        if event.is_final:
            self._accumulator.on_final(text)
            if self._timers.running:
                self._timers.rearm_silence()
        await self._send(transcript_event(text, is_final=event.is_final))

    async def _on_provider_error(self, conn: StreamingConnection, err: ProviderError) -> None:
        PROVIDER_ERRORS_TOTAL.labels(kind=provider_error_kind(err.retryable)).inc()
        log.warning(
            "stt_provider_error",
            extra={
                "payload": {
                    "session_id": self.session_id,
                    "connection_id": conn.connection_id,
                    "code": err.code,
                    "retryable": err.retryable,
                    "err": err.message[:200],
                }
            },
        )
        if not err.retryable:
            await self._fail("Ошибка распознавания речи")
            return
        self._start_restart("provider_error")

    # =====================================================================
    # ЗАВЕРШЕНИЕ
    # =====================================================================
    async def _fail(self, message: str) -> None:
        if is_terminal(self._state):
            return
        await self._send(error_event(message))
        await self._close(CompletionReason.error)

    async def _close(self, reason: CompletionReason) -> None:
        if is_terminal(self._state):
            return
        self._set_state(ControllerState.closing)
        self.completion_reason = reason
        persisted = completed = False
        try:
            self._timers.cancel_all()
            self._cancel_open()
            for conn in self._connections():
                await self._close_connection(conn)
            self._active = None

            transcript = self._accumulator.text
            persisted = await self._accumulator.finalize()
            completed = await self._accumulator.complete()
            # при сбое БД текст всё равно уходит клиенту в session_complete
            await self._send(session_complete_event(transcript, reason=reason))
            close_code = _CLOSE_CODES.get(reason)
            if close_code is not None:
                code, close_reason = close_code
                try:
                    await self._channel.close(code=code, reason=close_reason)
                except Exception as e:
                    log.debug(
                        "client_close_failed",
                        extra={"payload": {"session_id": self.session_id, "err": str(e)[:200]}},
                    )
        finally:
            self._set_state(ControllerState.closed)
            SESSIONS_COMPLETED_TOTAL.labels(reason=reason.value).inc()
            log.info(
                "session_closed",
                extra={
                    "payload": {
                        "session_id": self.session_id,
                        "reason": reason.value,
                        "chars": len(self._accumulator.text),
                        "persisted": persisted,
                        "completed": completed,
                        "restart_count": self.restart_count,
                    }
                },
            )

    # =====================================================================
    # HELPERS
    # =====================================================================
    def _set_state(self, target: ControllerState) -> bool:
        result = transition(self._state, target)
        if not result.ok:
            log.debug(
                "session_transition_rejected",
                extra={"payload": {"session_id": self.session_id, "reason": result.reason}},
            )
            return False
        self._state = result.state
        return True

    async def _send(self, message: dict[str, Any]) -> None:
        try:
            await self._channel.send_json(message)
        except Exception as e:
            log.debug(
                "client_send_failed",
                extra={"payload": {"session_id": self.session_id, "err": str(e)[:200]}},
            )
