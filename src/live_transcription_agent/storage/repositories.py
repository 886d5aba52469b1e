"""
Репозитории (DAO слой).

Правила:
- Никакой бизнес-логики
- Только CRUD и запросы
- completed-запись не мутируется
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from live_transcription_agent.common.time import utc_now
from live_transcription_agent.domain.enums import SessionStatus

from .models import TranscriptionSession


# =============================================================================
# SESSION REPOSITORY
# =============================================================================
class SessionRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self) -> TranscriptionSession:
        s = TranscriptionSession(status=SessionStatus.pending)
        self.session.add(s)
        self.session.flush()
        return s

    def get(self, session_id: str) -> TranscriptionSession | None:
        return self.session.get(TranscriptionSession, session_id)

    def list_all(self) -> list[TranscriptionSession]:
        return (
            self.session.query(TranscriptionSession)
            .order_by(TranscriptionSession.created_at)
            .all()
        )

    def update_transcript(self, session_id: str, transcript: str) -> bool:
        """
        Записывает полный накопленный текст, pending -> recording.
        False — запись не найдена или уже completed.
        """
        s = self.get(session_id)
        if s is None or s.status == SessionStatus.completed:
            return False
        s.transcribed_text = transcript
        s.status = SessionStatus.recording
        return True

    def complete(self, session_id: str) -> bool:
        """
        Идемпотентно: повторный вызов не трогает completed_at.
        False — запись не найдена.
        """
        s = self.get(session_id)
        if s is None:
            return False
        if s.status != SessionStatus.completed:
            s.status = SessionStatus.completed
            s.completed_at = utc_now()
        return True
