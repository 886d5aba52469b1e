"""
Доменные перечисления (enum).

Используются во всей системе:
- статус записи сессии в БД
- состояние контроллера realtime-сессии
- причина завершения сессии
"""

from __future__ import annotations

import enum


class SessionStatus(str, enum.Enum):
    """
    Статус записи сессии (БД).
    pending -> recording (первый flush) -> completed (конец сессии).
    """

    pending = "pending"
    recording = "recording"
    completed = "completed"


class ControllerState(str, enum.Enum):
    """
    Состояние контроллера сессии.
    Рестарт сегмента — подсостояние active, клиенту не виден.
    """

    starting = "starting"
    active = "active"
    paused = "paused"
    closing = "closing"
    closed = "closed"


class CompletionReason(str, enum.Enum):
    silence_timeout = "silence_timeout"
    client_requested = "client_requested"
    error = "error"
    server_shutdown = "server_shutdown"


class TimerKind(str, enum.Enum):
    flush = "flush"
    segment_deadline = "segment_deadline"
    silence = "silence"
    health = "health"


class ControlCommand(str, enum.Enum):
    """
    Управляющие команды клиента (text/JSON фреймы).
    """

    pause = "pause"
    resume = "resume"
    restart_segment = "restart_segment"
