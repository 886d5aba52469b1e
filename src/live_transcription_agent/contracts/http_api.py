"""
HTTP API контракты (Pydantic-модели).

Назначение:
- валидация выхода на уровне FastAPI
- camelCase-поля, как ожидает браузерный клиент
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from live_transcription_agent.domain.enums import SessionStatus

from .versions import HTTP_API_VERSION


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# ОТВЕТЫ
# =============================================================================
class SessionCreateResponse(_CamelModel):
    session_id: str = Field(alias="sessionId")
    status: str = "success"


class SessionGetResponse(_CamelModel):
    api_version: str = Field(default=HTTP_API_VERSION, alias="apiVersion")
    id: str
    status: SessionStatus
    transcribed_text: str | None = Field(default=None, alias="transcribedText")
    created_at: datetime = Field(alias="createdAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")
