"""
SMS через Twilio (twilio.rest.Client, ресурс Messages).

Важно:
- ошибка провайдера возвращается как fail_result, процесс не падает
- текст сообщения не логируем, только получатель и статус
- клиент создаётся лениво: без учётных данных адаптер просто отказывает
"""

from __future__ import annotations

from dataclasses import dataclass

import requests
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from notification_relay.common.config import Settings, get_settings
from notification_relay.common.logging import get_delivery_logger
from notification_relay.delivery.base import DeliveryResult, fail_result, ok_result

log = get_delivery_logger()


@dataclass
class TwilioConfig:
    """Настройки Twilio."""

    account_sid: str
    auth_token: str
    from_number: str
    region: str | None = None
    edge: str | None = None
    timeout_s: int = 10


class TwilioSMSAdapter:
    provider = "twilio"

    def __init__(self, settings: Settings | None = None, client: Client | None = None) -> None:
        s = settings or get_settings()
        self.cfg = TwilioConfig(
            account_sid=s.twilio_account_sid or "",
            auth_token=s.twilio_auth_token or "",
            from_number=s.twilio_from_number or "",
            region=s.twilio_region,
            edge=s.twilio_edge,
            timeout_s=s.sms_timeout_sec,
        )
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(
                self.cfg.account_sid,
                self.cfg.auth_token,
                region=self.cfg.region,
                edge=self.cfg.edge,
                http_client=TwilioHttpClient(timeout=self.cfg.timeout_s),
            )
        return self._client

    def send(self, recipient: str, message: str) -> DeliveryResult:
        if not recipient:
            return fail_result(self.provider, "recipient_empty")
        if not (self.cfg.account_sid and self.cfg.auth_token and self.cfg.from_number):
            return fail_result(self.provider, "TWILIO_credentials_not_set")

        try:
            sent = self.client.messages.create(
                to=recipient, from_=self.cfg.from_number, body=message
            )
        except TwilioRestException as e:
            log.error(
                "sms_send_failed",
                extra={"payload": {"to": recipient, "status": e.status, "twilio_code": e.code}},
            )
            return fail_result(
                self.provider,
                f"twilio_status_{e.status}",
                meta={"twilio_code": e.code, "text_head": str(e.msg)[:500]},
            )
        except (TwilioException, requests.RequestException) as e:
            log.error(
                "sms_http_error",
                extra={"payload": {"to": recipient, "err": str(e)[:200]}},
            )
            return fail_result(self.provider, f"http_error: {str(e)[:200]}")

        log.info("sms_sent", extra={"payload": {"to": recipient, "provider": self.provider}})
        return ok_result(self.provider, message_id=getattr(sent, "sid", None))
