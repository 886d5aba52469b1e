"""
Экспоненциальный backoff для пересоздания STT-соединения.

Состояние принадлежит контроллеру сессии и сбрасывается на каждом успешном open().
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RestartBackoff:
    initial_sec: float = 0.5
    max_sec: float = 10.0
    max_attempts: int = 8
    attempts: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def next_delay(self) -> float | None:
        """
        Задержка перед следующей попыткой; None — попытки исчерпаны.
        """
        if self.exhausted:
            return None
        delay = min(self.max_sec, self.initial_sec * (2**self.attempts))
        self.attempts += 1
        return delay

    def reset(self) -> None:
        self.attempts = 0
