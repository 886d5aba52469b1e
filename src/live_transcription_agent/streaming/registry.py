"""
Реестр активных realtime-сессий процесса.

- одна активная сессия на session_id (второй WS-стрим отклоняется)
- release() завершает контроллер и убирает его из реестра
- shutdown_all() — при остановке сервиса
"""

from __future__ import annotations

import asyncio

from live_transcription_agent.common.errors import ConflictError, ErrCode
from live_transcription_agent.common.logging import get_project_logger
from live_transcription_agent.common.metrics import ACTIVE_SESSIONS
from live_transcription_agent.domain.enums import CompletionReason

from .controller import SessionController

log = get_project_logger()


class ConnectionRegistry:
    def __init__(self) -> None:
        self._controllers: dict[str, SessionController] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._controllers

    def __len__(self) -> int:
        return len(self._controllers)

    def get(self, session_id: str) -> SessionController | None:
        return self._controllers.get(session_id)

    def register(self, controller: SessionController) -> None:
        if controller.session_id in self._controllers:
            raise ConflictError(
                "Для сессии уже открыт поток",
                details={"session_id": controller.session_id},
                code=ErrCode.SESSION_BUSY,
            )
        self._controllers[controller.session_id] = controller
        ACTIVE_SESSIONS.set(len(self._controllers))

    async def release(
        self,
        session_id: str,
        *,
        reason: CompletionReason = CompletionReason.client_requested,
    ) -> None:
        controller = self._controllers.pop(session_id, None)
        ACTIVE_SESSIONS.set(len(self._controllers))
        if controller is None:
            return
        await controller.shutdown(reason)

    async def shutdown_all(
        self, reason: CompletionReason = CompletionReason.server_shutdown
    ) -> None:
        session_ids = list(self._controllers)
        if not session_ids:
            return
        log.info(
            "sessions_shutdown",
            extra={"payload": {"count": len(session_ids), "reason": reason.value}},
        )
        await asyncio.gather(
            *(self.release(sid, reason=reason) for sid in session_ids),
            return_exceptions=True,
        )
