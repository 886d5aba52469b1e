"""
API Gateway (FastAPI).

Функции:
- /health
- /metrics
- HTTP API сессий транскрибации
- WebSocket для приёма PCM-аудио и отдачи транскрипта в реальном времени

Архитектурно:
- на каждое WS-подключение создаётся SessionController (актор сессии)
- контроллер держит STT-соединение, пересоздаёт его до лимита провайдера
  и периодически сохраняет накопленный текст в БД
- ConnectionRegistry следит, чтобы на одну сессию был один поток
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.api_gateway.routers.sessions import router as sessions_router
from apps.api_gateway.ws import ws_router
from live_transcription_agent.common.config import get_settings, parse_csv
from live_transcription_agent.common.logging import get_project_logger, setup_logging
from live_transcription_agent.common.metrics import setup_metrics_endpoint
from live_transcription_agent.storage.db import init_db
from live_transcription_agent.storage.session_store import SqlSessionStore
from live_transcription_agent.streaming.registry import ConnectionRegistry
from live_transcription_agent.stt.factory import build_streaming_provider

log = get_project_logger()


def _is_prod_env(app_env: str | None) -> bool:
    env = (app_env or "").strip().lower()
    return env in {"prod", "production"}


def _cors_params() -> tuple[list[str], bool]:
    settings = get_settings()
    allow_origins = parse_csv(settings.cors_allowed_origins) or ["*"]
    allow_credentials = bool(settings.cors_allow_credentials)

    if _is_prod_env(settings.app_env) and "*" in allow_origins:
        raise RuntimeError("CORS wildcard '*' запрещён в APP_ENV=prod")

    # '*' нельзя использовать вместе с credentials=true
    if "*" in allow_origins:
        allow_credentials = False

    return allow_origins, allow_credentials


def _create_app() -> FastAPI:
    app = FastAPI(title="Live Transcription Agent", version="0.1.0")
    allow_origins, allow_credentials = _cors_params()
    settings = get_settings()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=allow_credentials,
    )

    setup_metrics_endpoint(app, service=settings.service_name)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"ok": True}

    @app.on_event("startup")
    async def startup() -> None:
        init_db()
        app.state.registry = ConnectionRegistry()
        app.state.session_store = SqlSessionStore()
        app.state.stt_provider = build_streaming_provider(settings)
        log.info(
            "gateway_started",
            extra={
                "payload": {
                    "service": settings.service_name,
                    "stt_provider": app.state.stt_provider.name,
                }
            },
        )

    @app.on_event("shutdown")
    async def shutdown() -> None:
        registry: ConnectionRegistry | None = getattr(app.state, "registry", None)
        if registry is not None:
            await registry.shutdown_all()
        log.info("gateway_stopped")

    app.include_router(sessions_router, prefix="/v1")
    app.include_router(ws_router, prefix="/v1")

    return app


setup_logging()

app = _create_app()


if __name__ == "__main__":
    import uvicorn

    _s = get_settings()
    uvicorn.run(app, host=_s.api_host, port=_s.api_port, log_config=None)
