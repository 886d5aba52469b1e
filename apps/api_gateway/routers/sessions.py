"""
HTTP роуты для сессий транскрибации.

- POST /v1/sessions             — создать сессию (status=pending)
- GET  /v1/sessions/{session_id}
- GET  /v1/sessions
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from apps.api_gateway.deps import get_session_store
from live_transcription_agent.common.errors import ErrCode
from live_transcription_agent.common.logging import get_project_logger
from live_transcription_agent.contracts.http_api import SessionCreateResponse, SessionGetResponse
from live_transcription_agent.storage.session_store import SessionRecord, SqlSessionStore

log = get_project_logger()

router = APIRouter()


def _to_response(rec: SessionRecord) -> SessionGetResponse:
    return SessionGetResponse(
        id=rec.id,
        status=rec.status,
        transcribed_text=rec.transcribed_text,
        created_at=rec.created_at,
        completed_at=rec.completed_at,
    )


@router.post("/sessions", response_model=SessionCreateResponse, response_model_by_alias=True)
async def create_session(
    store: SqlSessionStore = Depends(get_session_store),
) -> SessionCreateResponse:
    rec = await store.create()
    log.info("session_created", extra={"payload": {"session_id": rec.id}})
    return SessionCreateResponse(session_id=rec.id)


@router.get(
    "/sessions/{session_id}",
    response_model=SessionGetResponse,
    response_model_by_alias=True,
)
async def get_session(
    session_id: str,
    store: SqlSessionStore = Depends(get_session_store),
) -> SessionGetResponse:
    rec = await store.get(session_id)
    if rec is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": ErrCode.NOT_FOUND, "message": "Сессия не найдена"},
        )
    return _to_response(rec)


@router.get(
    "/sessions",
    response_model=list[SessionGetResponse],
    response_model_by_alias=True,
)
async def list_sessions(
    store: SqlSessionStore = Depends(get_session_store),
) -> list[SessionGetResponse]:
    return [_to_response(rec) for rec in await store.list_all()]
