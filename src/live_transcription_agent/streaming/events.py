"""
Внутренние события контроллера сессии.

Всё, что меняет состояние сессии (аудио, команды клиента, события STT,
результат открытия соединения, таймеры, завершение), приходит в один mailbox
и обрабатывается строго последовательно.
"""

from __future__ import annotations

from dataclasses import dataclass

from live_transcription_agent.common.errors import ProviderError
from live_transcription_agent.domain.enums import CompletionReason, ControlCommand, TimerKind
from live_transcription_agent.stt.base import ProviderEvent, StreamingConnection


@dataclass(frozen=True)
class AudioIn:
    chunk: bytes


@dataclass(frozen=True)
class ControlIn:
    command: ControlCommand


@dataclass(frozen=True)
class ProviderMessage:
    connection: StreamingConnection
    event: ProviderEvent


# generation — номер попытки open(); результат отменённой попытки игнорируется
@dataclass(frozen=True)
class ConnectionOpened:
    connection: StreamingConnection
    reason: str
    generation: int


@dataclass(frozen=True)
class ConnectionOpenFailed:
    error: ProviderError
    reason: str
    generation: int
    exhausted: bool = False


@dataclass(frozen=True)
class GraceExpired:
    """Старое соединение отработало grace-окно после swap."""

    connection: StreamingConnection


@dataclass(frozen=True)
class TimerFired:
    timer: TimerKind
    generation: int


@dataclass(frozen=True)
class Shutdown:
    reason: CompletionReason


SessionEvent = (
    AudioIn
    | ControlIn
    | ProviderMessage
    | ConnectionOpened
    | ConnectionOpenFailed
    | GraceExpired
    | TimerFired
    | Shutdown
)
