"""
Mock-адаптер доставки (dev/inline режим): ничего не отправляет, только логирует.
"""

from __future__ import annotations

from notification_relay.common.ids import new_message_id
from notification_relay.common.logging import get_delivery_logger
from notification_relay.delivery.base import DeliveryResult, ok_result

log = get_delivery_logger()


class LogOnlyAdapter:
    def __init__(self, channel: str) -> None:
        self.channel = channel
        self.provider = f"mock_{channel}"

    def send(self, recipient: str, message: str) -> DeliveryResult:
        message_id = new_message_id(self.channel)
        log.info(
            "mock_delivery_sent",
            extra={
                "payload": {
                    "channel": self.channel,
                    "to": recipient,
                    "message_len": len(message),
                    "message_id": message_id,
                }
            },
        )
        return ok_result(self.provider, message_id=message_id)
