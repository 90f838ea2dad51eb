"""
SMTP-отправка email.

Важно:
- Не логировать содержимое сообщений
- Логировать только метаданные (кому, статус, message-id)
"""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from email.utils import make_msgid

from notification_relay.common.config import Settings, get_settings
from notification_relay.common.logging import get_delivery_logger
from notification_relay.delivery.base import DeliveryResult, fail_result, ok_result

log = get_delivery_logger()


class SMTPEmailAdapter:
    provider = "smtp"

    def __init__(self, settings: Settings | None = None) -> None:
        self.s = settings or get_settings()

    def build_message(self, recipient: str, message: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.s.email_from
        msg["To"] = recipient
        msg["Subject"] = self.s.email_subject
        msg["Message-ID"] = make_msgid()
        msg.set_content(message)
        return msg

    def send(self, recipient: str, message: str) -> DeliveryResult:
        if not recipient:
            return fail_result(self.provider, "recipient_empty")

        if not self.s.smtp_host:
            return fail_result(self.provider, "SMTP_HOST_not_set")

        msg = self.build_message(recipient, message)

        try:
            with smtplib.SMTP(self.s.smtp_host, self.s.smtp_port, timeout=self.s.smtp_timeout_sec) as smtp:
                smtp.ehlo()
                # STARTTLS только если сервер его объявил (в dev бывает без TLS)
                if smtp.has_extn("starttls"):
                    smtp.starttls()
                    smtp.ehlo()

                if self.s.smtp_user and self.s.smtp_pass:
                    smtp.login(self.s.smtp_user, self.s.smtp_pass)

                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            log.error(
                "email_send_failed",
                extra={"payload": {"to": recipient, "err": str(e)[:200]}},
            )
            return fail_result(self.provider, str(e))

        log.info("email_sent", extra={"payload": {"to": recipient, "provider": self.provider}})
        return ok_result(self.provider, message_id=msg.get("Message-ID"))
