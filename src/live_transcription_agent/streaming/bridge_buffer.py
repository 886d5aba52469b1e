"""
Bridge buffer: скользящее окно последних N секунд сырого аудио.

Нужен, чтобы новое STT-соединение (рестарт сегмента / resume) сразу получило
контекст и детектор границ фраз провайдера не стартовал "с холода".
Только память процесса, на диск ничего не пишется.
"""

from __future__ import annotations

from collections import deque

from live_transcription_agent.common.audio import budget_bytes
from live_transcription_agent.stt.base import StreamingConnection


class BridgeBuffer:
    def __init__(self, *, seconds: float, sample_rate: int = 16000, sample_width: int = 2) -> None:
        self.max_bytes = budget_bytes(seconds, sample_rate=sample_rate, sample_width=sample_width)
        self._chunks: deque[bytes] = deque()
        self._size = 0

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def size_bytes(self) -> int:
        return self._size

    def append(self, chunk: bytes) -> None:
        if not chunk:
            return
        self._chunks.append(chunk)
        self._size += len(chunk)
        while self._size > self.max_bytes and self._chunks:
            self._size -= len(self._chunks.popleft())

    def replay(self, connection: StreamingConnection) -> int:
        """
        Пишет все чанки по порядку в соединение. Возвращает число байт.
        """
        for chunk in self._chunks:
            connection.write(chunk)
        return self._size

    def clear(self) -> None:
        self._chunks.clear()
        self._size = 0
