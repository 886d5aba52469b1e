"""
Генерация идентификаторов.

Назначение:
- session_id (uuid4, как gen_random_uuid() в БД)
- connection_id для логов STT-соединений
"""

from __future__ import annotations

import secrets
import uuid


def new_session_id() -> str:
    """UUIDv4 строкой."""
    return str(uuid.uuid4())


def new_connection_id(prefix: str = "stt") -> str:
    """Короткий идентификатор одного STT-соединения."""
    return f"{prefix}_{secrets.token_hex(6)}"
