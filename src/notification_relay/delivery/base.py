"""
Базовые интерфейсы доставки.

Назначение:
- Единый контракт для каналов (email/sms)
- Адаптер выбирается по имени канала через реестр (registry.py)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass
class DeliveryResult:
    """
    Результат доставки.
    """

    ok: bool
    provider: str
    message_id: str | None = None
    error: str | None = None
    meta: dict[str, Any] | None = None


class NotificationAdapter(Protocol):
    """
    Контракт адаптера канала: отправить сообщение одному получателю.
    Ошибку доставки адаптер возвращает как ok=False.
    """

    def send(self, recipient: str, message: str) -> DeliveryResult: ...


def ok_result(
    provider: str, message_id: str | None = None, meta: dict | None = None
) -> DeliveryResult:
    return DeliveryResult(ok=True, provider=provider, message_id=message_id, meta=meta)


def fail_result(provider: str, error: str, meta: dict | None = None) -> DeliveryResult:
    return DeliveryResult(ok=False, provider=provider, error=error, meta=meta)
