"""
Базовый интерфейс потокового STT (Speech-to-Text).

Назначение:
- единый контракт для всех провайдеров
- одно соединение = один экземпляр StreamingConnection (без состояния между рестартами)

Жизненный цикл соединения:
1. provider.open(config) — соединение создано, но провайдер может быть ещё не готов.
   Всё, что пишется до сигнала готовности, копится локально и уходит провайдеру
   в исходном порядке сразу после _mark_ready(); дальше write() пишет напрямую.
2. write(chunk) — fire-and-forget, никогда не бросает в вызывающий код.
3. events() — собственный канал событий соединения: TranscriptEvent,
   ProviderErrorEvent, StreamClosedEvent (последнее событие канала).
4. finish() — half-close: новые write() игнорируются, провайдер дописывает
   последние результаты, канал событий остаётся открытым.
5. close() — идемпотентно; транспорт закрывается ровно один раз, в том числе
   после ошибки стрима.

Адаптер классифицирует ошибки (retryable), но рестарт решает контроллер сессии.
У провайдера есть жёсткий лимит жизни стрима — адаптер его не скрывает.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

from live_transcription_agent.common.config import Settings, parse_csv
from live_transcription_agent.common.errors import ProviderError
from live_transcription_agent.common.ids import new_connection_id
from live_transcription_agent.common.logging import get_stt_logger
from live_transcription_agent.common.metrics import AUDIO_CHUNKS_DROPPED_TOTAL
from live_transcription_agent.common.time import monotonic

log = get_stt_logger()


# =============================================================================
# КОНФИГ
# =============================================================================
@dataclass(frozen=True)
class ProviderConfig:
    language_code: str = "ar-SA"
    alternative_language_codes: tuple[str, ...] = ()
    model: str = "default"
    sample_rate: int = 16000
    enable_punctuation: bool = True
    diarization_enabled: bool = True
    min_speakers: int = 2
    max_speakers: int = 4
    interim_results: bool = True
    send_queue_max_chunks: int = 200

    @classmethod
    def from_settings(cls, s: Settings) -> ProviderConfig:
        return cls(
            language_code=s.stt_language_code,
            alternative_language_codes=tuple(parse_csv(s.stt_alternative_language_codes)),
            model=s.stt_model,
            sample_rate=s.audio_sample_rate,
            enable_punctuation=s.stt_enable_punctuation,
            diarization_enabled=s.stt_diarization_enabled,
            min_speakers=s.stt_min_speakers,
            max_speakers=s.stt_max_speakers,
            interim_results=s.stt_interim_results,
            send_queue_max_chunks=max(1, s.provider_send_queue_max_chunks),
        )


# =============================================================================
# СОБЫТИЯ СОЕДИНЕНИЯ
# =============================================================================
@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    is_final: bool
    confidence: float | None = None


@dataclass(frozen=True)
class ProviderErrorEvent:
    error: ProviderError


@dataclass(frozen=True)
class StreamClosedEvent:
    reason: str = "closed"


ProviderEvent = TranscriptEvent | ProviderErrorEvent | StreamClosedEvent


# =============================================================================
# СОЕДИНЕНИЕ
# =============================================================================
class StreamingConnection:
    """
    Общая механика адаптера: буфер до готовности, backpressure, канал событий.

    Наследник реализует:
    - _start(): поднять стрим (сеть); готовность сообщить через _mark_ready()
    - _send(chunk): отдать чанк в транспорт провайдера (без блокировок)
    - _half_close(): сообщить провайдеру, что аудио больше не будет
    - _shutdown(): закрыть транспорт
    """

    def __init__(self, *, config: ProviderConfig) -> None:
        self.config = config
        self.connection_id = new_connection_id()
        self.started_at = monotonic()
        self._ready = False
        self._closed = False
        self._finishing = False
        self._transport_closed = False
        self._pending: deque[bytes] = deque()
        self._events: asyncio.Queue[ProviderEvent] = asyncio.Queue()
        self._stream_ended = False
        self.dropped_chunks = 0

    # ---------------------------------------------------------------------
    # public API
    # ---------------------------------------------------------------------
    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_finishing(self) -> bool:
        return self._finishing

    @property
    def age_sec(self) -> float:
        return monotonic() - self.started_at

    async def start(self) -> None:
        try:
            await self._start()
        except BaseException:
            await self.close()
            raise

    def write(self, chunk: bytes) -> None:
        if self._closed or self._finishing or not chunk:
            return
        if not self._ready:
            if len(self._pending) >= self.config.send_queue_max_chunks:
                self._pending.popleft()
                self._note_dropped()
            self._pending.append(chunk)
            return
        try:
            self._send(chunk)
        except Exception as e:
            # горячий путь аудио: ошибка транспорта придёт через канал событий
            log.debug(
                "stt_write_failed",
                extra={"payload": {"connection_id": self.connection_id, "err": str(e)[:200]}},
            )

    async def events(self) -> AsyncIterator[ProviderEvent]:
        while True:
            event = await self._events.get()
            yield event
            if isinstance(event, StreamClosedEvent):
                return

    async def finish(self) -> None:
        if self._closed or self._finishing:
            return
        self._finishing = True
        self._pending.clear()
        try:
            await self._half_close()
        except Exception as e:
            log.warning(
                "stt_connection_finish_failed",
                extra={"payload": {"connection_id": self.connection_id, "err": str(e)[:200]}},
            )

    async def close(self) -> None:
        if self._transport_closed:
            return
        self._transport_closed = True
        self._closed = True
        self._pending.clear()
        try:
            await self._shutdown()
        except Exception as e:
            log.warning(
                "stt_connection_close_failed",
                extra={"payload": {"connection_id": self.connection_id, "err": str(e)[:200]}},
            )
        self._end_stream("closed")

    # ---------------------------------------------------------------------
    # для наследников
    # ---------------------------------------------------------------------
    def _mark_ready(self) -> None:
        if self._ready or self._closed:
            return
        while self._pending:
            self._send(self._pending.popleft())
        self._ready = True
        log.debug("stt_connection_ready", extra={"payload": {"connection_id": self.connection_id}})

    def _emit(self, event: ProviderEvent) -> None:
        if self._stream_ended:
            return
        if isinstance(event, StreamClosedEvent):
            self._end_stream(event.reason)
            return
        self._events.put_nowait(event)

    def _fail(self, error: ProviderError) -> None:
        """
        Ошибка стрима: дальнейшие write() игнорируются, канал закрывается.
        Транспорт закрывает последующий close().
        """
        if self._stream_ended:
            return
        self._closed = True
        self._pending.clear()
        self._events.put_nowait(ProviderErrorEvent(error=error))
        self._end_stream("error")

    def _end_stream(self, reason: str) -> None:
        if self._stream_ended:
            return
        self._stream_ended = True
        self._events.put_nowait(StreamClosedEvent(reason=reason))

    def _note_dropped(self) -> None:
        self.dropped_chunks += 1
        AUDIO_CHUNKS_DROPPED_TOTAL.labels(reason="backpressure").inc()
        # одна запись на серию дропов
        if self.dropped_chunks == 1 or self.dropped_chunks % 100 == 0:
            log.warning(
                "stt_backpressure_drop_oldest",
                extra={
                    "payload": {
                        "connection_id": self.connection_id,
                        "dropped_chunks": self.dropped_chunks,
                    }
                },
            )

    async def _start(self) -> None:
        raise NotImplementedError

    def _send(self, chunk: bytes) -> None:
        raise NotImplementedError

    async def _half_close(self) -> None:
        return None

    async def _shutdown(self) -> None:
        return None


# =============================================================================
# ПРОВАЙДЕР
# =============================================================================
class StreamingProvider(Protocol):
    name: str

    async def open(self, config: ProviderConfig) -> StreamingConnection:
        """
        Открывает соединение.
        Бросает ProviderUnavailableError / ProviderFatalError.
        """
        ...
