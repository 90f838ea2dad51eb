"""
Единые ошибки и коды ошибок.

Назначение:
- предсказуемые коды для HTTP/очередей/DLQ
- единый стиль исключений по проекту
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # Общие
    UNKNOWN = "unknown"
    VALIDATION = "validation"

    # Маршрутизация / события
    UNKNOWN_CHANNEL = "unknown_channel"
    MALFORMED_EVENT = "malformed_event"

    # Провайдеры
    DELIVERY_PROVIDER_ERROR = "delivery_provider_error"

    # Инфра
    QUEUE_UNAVAILABLE = "queue_unavailable"


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


class ValidationError(AppError):
    def __init__(self, message: str = "Ошибка валидации", details: dict | None = None) -> None:
        super().__init__(ErrCode.VALIDATION, message, details)


class UnknownChannelError(AppError):
    def __init__(self, channel: str) -> None:
        super().__init__(
            ErrCode.UNKNOWN_CHANNEL, f"unknown channel: {channel}", {"channel": channel}
        )


class MalformedEventError(AppError):
    def __init__(self, message: str = "Некорректная запись события", details: dict | None = None) -> None:
        super().__init__(ErrCode.MALFORMED_EVENT, message, details)


class QueueUnavailableError(AppError):
    def __init__(self, message: str = "Очередь недоступна", details: dict | None = None) -> None:
        super().__init__(ErrCode.QUEUE_UNAVAILABLE, message, details)


class ProviderError(AppError):
    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(code, message, details)
