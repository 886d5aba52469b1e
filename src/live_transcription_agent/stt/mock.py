from __future__ import annotations

import asyncio

from live_transcription_agent.common.audio import chunk_duration_sec, pcm16_rms
from live_transcription_agent.stt.base import (
    ProviderConfig,
    StreamingConnection,
    StreamingProvider,
    TranscriptEvent,
)


class MockStreamingConnection(StreamingConnection):
    """
    Заглушка потокового STT: по "голосовым" чанкам (RMS выше порога) шлёт interim,
    и один final на каждые final_every_sec голосового аудио.
    """

    def __init__(
        self,
        *,
        config: ProviderConfig,
        final_every_sec: float,
        voice_rms: float,
        sample_width: int = 2,
    ) -> None:
        super().__init__(config=config)
        self._final_every_sec = max(0.01, final_every_sec)
        self._voice_rms = voice_rms
        self._sample_width = sample_width
        self._voiced_sec = 0.0
        self._segments = 0

    async def _start(self) -> None:
        # готовность приходит асинхронно, как у настоящего провайдера
        asyncio.get_running_loop().call_soon(self._mark_ready)

    def _send(self, chunk: bytes) -> None:
        if pcm16_rms(chunk) < self._voice_rms:
            return
        self._voiced_sec += chunk_duration_sec(
            chunk, sample_rate=self.config.sample_rate, sample_width=self._sample_width
        )
        n = self._segments + 1
        if self._voiced_sec < self._final_every_sec:
            if self.config.interim_results:
                self._emit(TranscriptEvent(text=f"mock segment {n}", is_final=False))
            return
        self._voiced_sec -= self._final_every_sec
        self._segments = n
        self._emit(TranscriptEvent(text=f"mock segment {n}", is_final=True, confidence=1.0))


class MockStreamingProvider(StreamingProvider):
    name = "mock"

    def __init__(self, *, final_every_sec: float = 2.0, voice_rms: float = 500.0) -> None:
        self._final_every_sec = final_every_sec
        self._voice_rms = voice_rms

    async def open(self, config: ProviderConfig) -> StreamingConnection:
        conn = MockStreamingConnection(
            config=config,
            final_every_sec=self._final_every_sec,
            voice_rms=self._voice_rms,
        )
        await conn.start()
        return conn
