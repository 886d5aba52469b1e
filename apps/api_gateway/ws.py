"""
WebSocket обработчик realtime-транскрибации.

Протокол:
- подключение: /v1/ws?sessionId=<id> (сессия создана через POST /v1/sessions)
- binary-фреймы: PCM16 LE mono 16 kHz, произвольный размер чанка
- text-фреймы: {"type": "pause" | "resume" | "restart_segment"}
- сервер шлёт transcript / session_complete / error (см. contracts.ws_events)

Отказ в подключении (close 1008):
- нет sessionId
- сессия не найдена или уже завершена
- для сессии уже открыт другой поток

Отключение клиента = завершение сессии (flush + complete), без ответа клиенту.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, WebSocket, status
from starlette.websockets import WebSocketState

from live_transcription_agent.common.config import get_settings
from live_transcription_agent.common.errors import ConflictError
from live_transcription_agent.common.logging import get_project_logger
from live_transcription_agent.contracts.versions import WS_SCHEMA_VERSION
from live_transcription_agent.contracts.ws_events import (
    AudioFrame,
    ControlFrame,
    parse_client_frame,
)
from live_transcription_agent.domain.enums import CompletionReason, SessionStatus
from live_transcription_agent.storage.session_store import SqlSessionStore
from live_transcription_agent.streaming.controller import SessionController
from live_transcription_agent.streaming.registry import ConnectionRegistry

log = get_project_logger()

ws_router = APIRouter()


class WebSocketClientChannel:
    """
    Исходящая сторона WS для контроллера.
    После отключения клиента все отправки молча игнорируются.
    """

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed or self._ws.application_state != WebSocketState.CONNECTED

    def mark_closed(self) -> None:
        self._closed = True

    async def send_json(self, message: dict[str, Any]) -> None:
        if self.is_closed:
            return
        await self._ws.send_json(message)

    async def close(self, *, code: int = 1000, reason: str = "") -> None:
        if self.is_closed:
            return
        self._closed = True
        await self._ws.close(code=code, reason=reason)


async def _reject(ws: WebSocket, *, reason: str, session_id: str | None) -> None:
    log.warning(
        "ws_rejected",
        extra={
            "payload": {
                "session_id": session_id,
                "reason": reason,
                "client_ip": ws.client.host if ws.client else None,
            }
        },
    )
    await ws.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)


@ws_router.websocket("/ws")
async def websocket_session_endpoint(ws: WebSocket) -> None:
    settings = get_settings()
    session_id = ws.query_params.get("sessionId") or ws.query_params.get("session_id")
    if not session_id:
        await _reject(ws, reason="sessionId is required", session_id=None)
        return

    store: SqlSessionStore = ws.app.state.session_store
    registry: ConnectionRegistry = ws.app.state.registry

    rec = await store.get(session_id)
    if rec is None:
        await _reject(ws, reason="session not found", session_id=session_id)
        return
    if rec.status == SessionStatus.completed:
        await _reject(ws, reason="session already completed", session_id=session_id)
        return

    channel = WebSocketClientChannel(ws)
    controller = SessionController(
        session_id=session_id,
        provider=ws.app.state.stt_provider,
        store=store,
        channel=channel,
    )
    try:
        registry.register(controller)
    except ConflictError as e:
        await _reject(ws, reason=e.message, session_id=session_id)
        return

    try:
        await ws.accept()
        controller.start()
        log.info(
            "ws_connected",
            extra={"payload": {"session_id": session_id, "schema": WS_SCHEMA_VERSION}},
        )

        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            frame = parse_client_frame(
                text=message.get("text"),
                data=message.get("bytes"),
                legacy_sniffing=settings.ws_legacy_control_sniffing,
                control_max_bytes=settings.ws_control_frame_max_bytes,
            )
            if isinstance(frame, AudioFrame):
                controller.submit_audio(frame.chunk)
            elif isinstance(frame, ControlFrame):
                controller.submit_control(frame.command)
            elif message.get("text") is not None:
                log.debug(
                    "ws_frame_ignored",
                    extra={
                        "payload": {
                            "session_id": session_id,
                            "text": str(message.get("text"))[:100],
                        }
                    },
                )
    except Exception as e:
        log.error(
            "ws_fatal",
            extra={"payload": {"session_id": session_id, "err": str(e)[:200]}},
        )
    finally:
        channel.mark_closed()
        await registry.release(session_id, reason=CompletionReason.client_requested)
        log.info("ws_disconnected", extra={"payload": {"session_id": session_id}})
