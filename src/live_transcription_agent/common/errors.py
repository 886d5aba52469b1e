"""
Единые ошибки и коды ошибок.

Назначение:
- предсказуемые коды для HTTP/WS/логов
- единый стиль исключений по проекту
- классификация ошибок STT: retryable решает контроллер сессии, не адаптер
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # Общие
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"

    # Realtime
    SESSION_BUSY = "session_busy"
    SESSION_COMPLETED = "session_completed"

    # Провайдеры STT
    STT_PROVIDER_UNAVAILABLE = "stt_provider_unavailable"
    STT_PROVIDER_TRANSIENT = "stt_provider_transient"
    STT_PROVIDER_FATAL = "stt_provider_fatal"


@dataclass
class AppError(Exception):
    """
    Базовая ошибка приложения.
    - code: стабильный код ошибки
    - message: безопасное сообщение
    - details: доп. данные (без секретов/PII)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}"


class NotFoundError(AppError):
    def __init__(self, message: str = "Не найдено", details: dict | None = None) -> None:
        super().__init__(ErrCode.NOT_FOUND, message, details)


class ConflictError(AppError):
    def __init__(
        self,
        message: str = "Конфликт",
        details: dict | None = None,
        code: str = ErrCode.CONFLICT,
    ) -> None:
        super().__init__(code, message, details)


class ProviderError(AppError):
    """
    Ошибка STT-провайдера.
    retryable=True: соединение можно пересоздать (с backoff).
    """

    retryable: bool = False

    def __init__(
        self,
        code: str,
        message: str,
        details: dict | None = None,
        *,
        retryable: bool = False,
    ) -> None:
        super().__init__(code, message, details)
        self.retryable = retryable


class ProviderUnavailableError(ProviderError):
    """Не удалось открыть соединение (сеть: retryable, креды/конфиг: нет)."""

    def __init__(
        self,
        message: str = "STT-провайдер недоступен",
        details: dict | None = None,
        *,
        retryable: bool = True,
    ) -> None:
        super().__init__(
            ErrCode.STT_PROVIDER_UNAVAILABLE, message, details, retryable=retryable
        )


class ProviderTransientError(ProviderError):
    def __init__(
        self, message: str = "Временная ошибка STT", details: dict | None = None
    ) -> None:
        super().__init__(ErrCode.STT_PROVIDER_TRANSIENT, message, details, retryable=True)


class ProviderFatalError(ProviderError):
    def __init__(self, message: str = "Ошибка STT", details: dict | None = None) -> None:
        super().__init__(ErrCode.STT_PROVIDER_FATAL, message, details, retryable=False)
