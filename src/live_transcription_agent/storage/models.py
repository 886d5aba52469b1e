"""
ORM-модели базы данных.

Назначение:
- Хранение записи сессии и накопленного текста
- Аудио НЕ хранится (требование приватности)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Enum, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from live_transcription_agent.common.ids import new_session_id
from live_transcription_agent.common.time import utc_now
from live_transcription_agent.domain.enums import SessionStatus


# =============================================================================
# BASE
# =============================================================================
class Base(DeclarativeBase):
    pass


# =============================================================================
# TRANSCRIPTION SESSION
# =============================================================================
class TranscriptionSession(Base):
    """
    Сессия записи: только текст и статус.
    """

    __tablename__ = "transcription_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_session_id)

    transcribed_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus), default=SessionStatus.pending, nullable=False
    )

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
