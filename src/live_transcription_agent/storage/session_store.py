"""
Хранилище сессий для realtime-ядра.

Назначение:
- async-обёртка над SessionRepository (синхронный SQLAlchemy через asyncio.to_thread)
- наружу отдаём SessionRecord, а не ORM-объекты (сессия БД к тому моменту закрыта)
- TranscriptStore — узкий контракт, который нужен контроллеру сессии
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from live_transcription_agent.common.errors import ConflictError, ErrCode, NotFoundError
from live_transcription_agent.domain.enums import SessionStatus

from .db import db_session
from .models import TranscriptionSession
from .repositories import SessionRepository


@dataclass(frozen=True)
class SessionRecord:
    id: str
    status: SessionStatus
    transcribed_text: str | None
    created_at: datetime
    completed_at: datetime | None = None


def _to_record(s: TranscriptionSession) -> SessionRecord:
    return SessionRecord(
        id=s.id,
        status=SessionStatus(s.status),
        transcribed_text=s.transcribed_text,
        created_at=s.created_at,
        completed_at=s.completed_at,
    )


class TranscriptStore(Protocol):
    async def update_transcript(self, session_id: str, transcript: str) -> None: ...

    async def complete(self, session_id: str) -> None: ...


class SqlSessionStore:
    # ---------------------------------------------------------------------
    # sync-часть (выполняется в пуле потоков)
    # ---------------------------------------------------------------------
    @staticmethod
    def _create() -> SessionRecord:
        with db_session() as s:
            return _to_record(SessionRepository(s).create())

    @staticmethod
    def _get(session_id: str) -> SessionRecord | None:
        with db_session() as s:
            row = SessionRepository(s).get(session_id)
            return _to_record(row) if row else None

    @staticmethod
    def _list_all() -> list[SessionRecord]:
        with db_session() as s:
            return [_to_record(row) for row in SessionRepository(s).list_all()]

    @staticmethod
    def _update_transcript(session_id: str, transcript: str) -> None:
        with db_session() as s:
            repo = SessionRepository(s)
            if repo.get(session_id) is None:
                raise NotFoundError("Сессия не найдена", details={"session_id": session_id})
            if not repo.update_transcript(session_id, transcript):
                raise ConflictError(
                    "Сессия уже завершена",
                    details={"session_id": session_id},
                    code=ErrCode.SESSION_COMPLETED,
                )

    @staticmethod
    def _complete(session_id: str) -> None:
        with db_session() as s:
            if not SessionRepository(s).complete(session_id):
                raise NotFoundError("Сессия не найдена", details={"session_id": session_id})

    # ---------------------------------------------------------------------
    # async API
    # ---------------------------------------------------------------------
    async def create(self) -> SessionRecord:
        return await asyncio.to_thread(self._create)

    async def get(self, session_id: str) -> SessionRecord | None:
        return await asyncio.to_thread(self._get, session_id)

    async def list_all(self) -> list[SessionRecord]:
        return await asyncio.to_thread(self._list_all)

    async def update_transcript(self, session_id: str, transcript: str) -> None:
        await asyncio.to_thread(self._update_transcript, session_id, transcript)

    async def complete(self, session_id: str) -> None:
        await asyncio.to_thread(self._complete, session_id)
