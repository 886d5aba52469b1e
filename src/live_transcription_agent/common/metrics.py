"""
Метрики Prometheus для сервиса.

Назначение:
- Экспорт /metrics
- HTTP-счётчики gateway
- Счётчики realtime-сессий: рестарты сегментов, flush, ошибки STT, дропы аудио
"""

from __future__ import annotations

import time

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# =============================================================================
# HTTP
# =============================================================================
REQUESTS_TOTAL = Counter(
    "transcriber_requests_total",
    "Общее количество HTTP запросов",
    ["service", "route", "method", "status"],
)

HTTP_REQUEST_LATENCY_MS = Histogram(
    "transcriber_http_request_latency_ms",
    "Задержка HTTP запроса (мс)",
    ["service", "route", "method"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
)

# =============================================================================
# REALTIME-СЕССИИ
# =============================================================================
ACTIVE_SESSIONS = Gauge(
    "transcriber_active_sessions",
    "Количество активных WS-сессий транскрибации",
)

SESSIONS_COMPLETED_TOTAL = Counter(
    "transcriber_sessions_completed_total",
    "Завершённые сессии",
    ["reason"],  # silence_timeout|client_requested|error|server_shutdown
)

SEGMENT_RESTARTS_TOTAL = Counter(
    "transcriber_segment_restarts_total",
    "Пересоздания STT-соединения",
    ["reason"],  # segment_deadline|health_watchdog|provider_error|stream_closed|client_request
)

PROVIDER_ERRORS_TOTAL = Counter(
    "transcriber_provider_errors_total",
    "Ошибки STT-провайдера",
    ["kind"],  # transient|fatal|unavailable
)

PROVIDER_CONNECT_LATENCY_MS = Histogram(
    "transcriber_provider_connect_latency_ms",
    "Время открытия STT-соединения (мс)",
    buckets=(10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
)

TRANSCRIPT_FLUSH_TOTAL = Counter(
    "transcriber_transcript_flush_total",
    "Сохранения накопленного транскрипта",
    ["result"],  # ok|failed
)

AUDIO_CHUNKS_DROPPED_TOTAL = Counter(
    "transcriber_audio_chunks_dropped_total",
    "Отброшенные аудио-чанки",
    ["reason"],  # paused|backpressure|closing
)


def provider_error_kind(retryable: bool) -> str:
    return "transient" if retryable else "fatal"


# =============================================================================
# ENDPOINT /metrics
# =============================================================================
def setup_metrics_endpoint(app: FastAPI, *, service: str = "api-gateway") -> None:
    """
    Регистрирует endpoint /metrics для Prometheus.
    """

    @app.middleware("http")
    async def http_metrics(request: Request, call_next):
        route = request.url.path
        method = request.method
        started = time.perf_counter()

        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        status_code = str(response.status_code)

        REQUESTS_TOTAL.labels(
            service=service,
            route=route,
            method=method,
            status=status_code,
        ).inc()
        HTTP_REQUEST_LATENCY_MS.labels(
            service=service,
            route=route,
            method=method,
        ).observe(elapsed_ms)
        return response

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
