"""
Маршрутизация события в канал доставки.

high -> sms, всё остальное (включая пустое/неизвестное) -> email.
Неизвестная важность молча уходит в email - это задокументированное поведение.
"""

from __future__ import annotations

from notification_relay.domain.enums import Channel, Severity
from notification_relay.domain.events import Event


def determine_channel(event: Event) -> str:
    if event.severity == Severity.high.value:
        return Channel.sms.value
    return Channel.email.value
