"""
Контракты WebSocket-фреймов.

Вход (client -> server):
- binary: сырое PCM16 LE, mono, 16 kHz, произвольный размер чанка
- text:   JSON {"type": "pause" | "resume" | "restart_segment"}

Выход (server -> client), JSON:
- {"type": "transcript", "text": str, "isFinal": bool}
- {"type": "session_complete", "transcript": str, "reason": str}
- {"type": "error", "message": str}

Тип фрейма (text/binary) однозначно отделяет управление от аудио.
Старый клиент слал управление бинарными фреймами: для него есть режим
legacy_sniffing (маленький binary-фрейм, который парсится как JSON с "type").
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

from live_transcription_agent.domain.enums import CompletionReason, ControlCommand

# =============================================================================
# ТИПЫ СОБЫТИЙ
# =============================================================================
WSOutboundType = Literal["transcript", "session_complete", "error"]


# =============================================================================
# ВХОД
# =============================================================================
@dataclass(frozen=True)
class AudioFrame:
    chunk: bytes


@dataclass(frozen=True)
class ControlFrame:
    command: ControlCommand


ClientFrame = AudioFrame | ControlFrame


def _parse_control(raw: str | bytes) -> ControlFrame | None:
    try:
        obj = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(obj, dict):
        return None
    try:
        return ControlFrame(command=ControlCommand(str(obj.get("type"))))
    except ValueError:
        return None


def _looks_like_json_object(data: bytes) -> bool:
    head = data.lstrip()[:1]
    return head == b"{"


def parse_client_frame(
    *,
    text: str | None = None,
    data: bytes | None = None,
    legacy_sniffing: bool = False,
    control_max_bytes: int = 1024,
) -> ClientFrame | None:
    """
    Разбор входящего WS-сообщения.

    None — фрейм игнорируется (пустой, битый JSON в text, неизвестная команда).
    """
    if data is not None:
        if not data:
            return None
        if legacy_sniffing and len(data) < control_max_bytes and _looks_like_json_object(data):
            control = _parse_control(data)
            if control is not None:
                return control
        return AudioFrame(chunk=bytes(data))

    if text is not None:
        return _parse_control(text)

    return None


# =============================================================================
# ВЫХОД
# =============================================================================
def transcript_event(text: str, *, is_final: bool) -> dict[str, Any]:
    return {"type": "transcript", "text": text, "isFinal": is_final}


def session_complete_event(transcript: str, *, reason: CompletionReason) -> dict[str, Any]:
    return {"type": "session_complete", "transcript": transcript, "reason": reason.value}


def error_event(message: str) -> dict[str, Any]:
    return {"type": "error", "message": message}
