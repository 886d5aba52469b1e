"""
Утилиты времени.

Назначение:
- единый формат времени (UTC) для записей в БД
- monotonic-часы для таймеров сессии
"""

from __future__ import annotations

import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Текущее время в UTC (datetime).
    """
    return datetime.now(UTC)


def monotonic() -> float:
    return time.monotonic()
