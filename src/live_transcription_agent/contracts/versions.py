"""
Версии контрактов (WS/HTTP).

Назначение:
- единая точка истинных версий
- удобная проверка совместимости
"""

from __future__ import annotations

WS_SCHEMA_VERSION = "v1"
HTTP_API_VERSION = "v1"
