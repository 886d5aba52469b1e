"""
FastAPI Depends.

Общие объекты процесса живут в app.state (создаются на startup):
- session_store — хранилище сессий
- registry      — активные WS-сессии (ws.py берёт напрямую из ws.app.state)
- stt_provider  — потоковый STT
"""

from __future__ import annotations

from fastapi import Request

from live_transcription_agent.storage.session_store import SqlSessionStore


def get_session_store(request: Request) -> SqlSessionStore:
    return request.app.state.session_store
