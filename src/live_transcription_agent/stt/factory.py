"""
Выбор потокового STT-провайдера по STT_PROVIDER.
"""

from __future__ import annotations

from live_transcription_agent.common.config import Settings
from live_transcription_agent.common.logging import get_stt_logger
from live_transcription_agent.stt.base import StreamingProvider

log = get_stt_logger()


def build_streaming_provider(settings: Settings) -> StreamingProvider:
    provider = (settings.stt_provider or "").strip().lower()

    if provider == "mock":
        from live_transcription_agent.stt.mock import MockStreamingProvider

        return MockStreamingProvider(
            final_every_sec=settings.mock_stt_final_every_sec,
            voice_rms=settings.mock_stt_voice_rms,
        )

    if provider == "google":
        # google-cloud-speech тяжёлый: импортируем только когда он реально нужен
        from live_transcription_agent.stt.google import GoogleStreamingProvider

        if not settings.google_credentials_json:
            log.warning("google_stt_credentials_missing")
        return GoogleStreamingProvider(credentials_json=settings.google_credentials_json)

    raise ValueError(f"Unknown STT_PROVIDER: {settings.stt_provider!r}")
