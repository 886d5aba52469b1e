"""
Утилиты для PCM16 (mono, little-endian).

Аудио нигде не сохраняется: только подсчёт байт/длительности и уровня сигнала.
"""

from __future__ import annotations

import numpy as np


def bytes_per_second(*, sample_rate: int, sample_width: int) -> int:
    return sample_rate * sample_width


def budget_bytes(seconds: float, *, sample_rate: int, sample_width: int) -> int:
    """
    Сколько байт занимает `seconds` аудио.
    """
    return int(seconds * bytes_per_second(sample_rate=sample_rate, sample_width=sample_width))


def chunk_duration_sec(chunk: bytes, *, sample_rate: int, sample_width: int) -> float:
    return len(chunk) / float(bytes_per_second(sample_rate=sample_rate, sample_width=sample_width))


def pcm16_rms(chunk: bytes) -> float:
    """
    RMS уровня сигнала PCM16. Нечётный хвост (половина сэмпла) отбрасывается.
    """
    usable = len(chunk) - (len(chunk) % 2)
    if usable <= 0:
        return 0.0
    samples = np.frombuffer(chunk[:usable], dtype="<i2").astype(np.float64)
    return float(np.sqrt(np.mean(samples * samples)))
