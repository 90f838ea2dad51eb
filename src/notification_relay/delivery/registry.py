"""
Реестр адаптеров доставки: канал -> адаптер.

Строится один раз при старте и дальше только читается,
поэтому отдаётся как read-only mapping.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from notification_relay.common.config import Settings, get_settings
from notification_relay.common.errors import ErrCode, ProviderError
from notification_relay.delivery.base import NotificationAdapter
from notification_relay.delivery.email.sender import SMTPEmailAdapter
from notification_relay.delivery.mock import LogOnlyAdapter
from notification_relay.delivery.sms.sender import TwilioSMSAdapter
from notification_relay.domain.enums import Channel

AdapterMap = Mapping[str, NotificationAdapter]


def freeze_adapters(adapters: Mapping[str, NotificationAdapter]) -> AdapterMap:
    known = {c.value for c in Channel}
    unknown = sorted(set(adapters) - known)
    if unknown:
        raise ProviderError(
            ErrCode.DELIVERY_PROVIDER_ERROR,
            "Неизвестные каналы в реестре адаптеров",
            {"channels": unknown},
        )
    return MappingProxyType(dict(adapters))


def build_adapters(settings: Settings | None = None) -> AdapterMap:
    s = settings or get_settings()
    mode = (s.delivery_mode or "").strip().lower()
    if mode == "mock":
        return freeze_adapters({c.value: LogOnlyAdapter(c.value) for c in Channel})
    if mode == "live":
        return freeze_adapters(
            {
                Channel.email.value: SMTPEmailAdapter(s),
                Channel.sms.value: TwilioSMSAdapter(s),
            }
        )
    raise ProviderError(
        ErrCode.DELIVERY_PROVIDER_ERROR,
        "Неизвестный DELIVERY_MODE",
        {"delivery_mode": s.delivery_mode},
    )
