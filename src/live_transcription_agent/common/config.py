"""
Централизованная конфигурация проекта (ENV / .env).

Важно:
- настройки читаются из .env и переменных окружения
- типизированные значения через pydantic-settings
- любое поле можно передать файлом: <ALIAS>_FILE=/path/to/value
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Runtime
    # -------------------------------------------------------------------------
    app_env: str = Field(default="dev", alias="APP_ENV")
    service_name: str = Field(default="api-gateway", alias="SERVICE_NAME")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8010, alias="API_PORT")
    cors_allowed_origins: str = Field(default="*", alias="CORS_ALLOWED_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------
    database_url: str = Field(default="sqlite:///./sessions.db", alias="DATABASE_URL")

    # -------------------------------------------------------------------------
    # STT
    # -------------------------------------------------------------------------
    stt_provider: str = Field(default="google", alias="STT_PROVIDER")  # google|mock

    # Google Cloud Speech (service account JSON целиком, не путь)
    google_credentials_json: str | None = Field(
        default=None, alias="GOOGLE_APPLICATION_CREDENTIALS_JSON"
    )
    stt_language_code: str = Field(default="ar-SA", alias="STT_LANGUAGE_CODE")
    stt_alternative_language_codes: str = Field(
        default="ar-AE,ar-EG", alias="STT_ALTERNATIVE_LANGUAGE_CODES"
    )
    stt_model: str = Field(default="default", alias="STT_MODEL")
    stt_enable_punctuation: bool = Field(default=True, alias="STT_ENABLE_PUNCTUATION")
    stt_diarization_enabled: bool = Field(default=True, alias="STT_DIARIZATION_ENABLED")
    stt_min_speakers: int = Field(default=2, alias="STT_MIN_SPEAKERS")
    stt_max_speakers: int = Field(default=4, alias="STT_MAX_SPEAKERS")
    stt_interim_results: bool = Field(default=True, alias="STT_INTERIM_RESULTS")

    # Mock-провайдер (dev/тесты)
    mock_stt_final_every_sec: float = Field(default=2.0, alias="MOCK_STT_FINAL_EVERY_SEC")
    mock_stt_voice_rms: float = Field(default=500.0, alias="MOCK_STT_VOICE_RMS")

    # -------------------------------------------------------------------------
    # Audio (PCM16 mono от браузера)
    # -------------------------------------------------------------------------
    audio_sample_rate: int = Field(default=16000, alias="AUDIO_SAMPLE_RATE")
    audio_sample_width: int = Field(default=2, alias="AUDIO_SAMPLE_WIDTH")

    # -------------------------------------------------------------------------
    # Session timing
    # -------------------------------------------------------------------------
    bridge_buffer_sec: float = Field(default=3.0, alias="BRIDGE_BUFFER_SEC")
    session_flush_interval_sec: float = Field(default=30.0, alias="SESSION_FLUSH_INTERVAL_SEC")
    # Google обрывает стрим примерно через 5 минут
    session_segment_max_sec: float = Field(default=240.0, alias="SESSION_SEGMENT_MAX_SEC")
    session_silence_timeout_sec: float = Field(
        default=300.0, alias="SESSION_SILENCE_TIMEOUT_SEC"
    )
    session_health_check_interval_sec: float = Field(
        default=15.0, alias="SESSION_HEALTH_CHECK_INTERVAL_SEC"
    )
    session_health_stale_sec: float = Field(default=45.0, alias="SESSION_HEALTH_STALE_SEC")
    session_restart_grace_sec: float = Field(default=1.5, alias="SESSION_RESTART_GRACE_SEC")
    session_restart_backoff_initial_ms: int = Field(
        default=500, alias="SESSION_RESTART_BACKOFF_INITIAL_MS"
    )
    session_restart_backoff_max_ms: int = Field(
        default=10_000, alias="SESSION_RESTART_BACKOFF_MAX_MS"
    )
    session_restart_max_attempts: int = Field(default=8, alias="SESSION_RESTART_MAX_ATTEMPTS")
    provider_send_queue_max_chunks: int = Field(
        default=200, alias="PROVIDER_SEND_QUEUE_MAX_CHUNKS"
    )

    # -------------------------------------------------------------------------
    # WebSocket
    # -------------------------------------------------------------------------
    ws_legacy_control_sniffing: bool = Field(default=False, alias="WS_LEGACY_CONTROL_SNIFFING")
    ws_control_frame_max_bytes: int = Field(default=1024, alias="WS_CONTROL_FRAME_MAX_BYTES")

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # json|text

    def model_post_init(self, __context) -> None:
        _apply_file_overrides(self)


_CSV_ENV_FIELDS = {
    "STT_ALTERNATIVE_LANGUAGE_CODES",
}


def _normalize_file_value(env_key: str, raw: str) -> str:
    value = (raw or "").strip()
    if env_key in _CSV_ENV_FIELDS and "\n" in value and "," not in value:
        parts = [p.strip() for p in value.splitlines() if p.strip()]
        return ",".join(parts)
    return value


def _apply_file_overrides(settings: Settings) -> None:
    alias_to_field = {}
    for name, field in type(settings).model_fields.items():
        alias = field.alias or name
        alias_to_field[str(alias)] = name
        alias_to_field[str(name)] = name

    for key, path in os.environ.items():
        if not key.endswith("_FILE"):
            continue
        base = key[: -len("_FILE")]
        target = alias_to_field.get(base)
        if not target:
            continue
        file_path = (path or "").strip()
        if not file_path:
            continue
        try:
            raw = Path(file_path).read_text(encoding="utf-8")
        except Exception as e:
            logging.getLogger("live-transcription-agent").error(
                "config_file_read_failed",
                extra={"payload": {"env_key": key, "path": file_path, "error": str(e)[:200]}},
            )
            raise RuntimeError(f"Failed to read {key} from {file_path}") from e
        value = _normalize_file_value(base, raw)
        setattr(settings, target, value)


def parse_csv(raw: str | None) -> list[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


_SETTINGS = Settings()


def get_settings() -> Settings:
    return _SETTINGS
