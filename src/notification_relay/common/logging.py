"""
Логирование relay-сервисов.

- одна JSON-строка на событие в stdout, text для локальной отладки (LOG_FORMAT)
- в каждой строке сервис (SERVICE_NAME) и поток: обработчик и retry-планировщик
  пишут в один процесс
- структурные поля передаются через extra={"payload": {...}}
- тело уведомления в лог не попадает, получатель маскируется
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from notification_relay.common.config import get_settings

PROJECT_LOGGER = "notification-relay"

_DROPPED_KEYS = frozenset({"message", "body"})
_MASKED_KEYS = frozenset({"recipient", "to"})


def mask_recipient(value: str) -> str:
    """
    a.user@example.com -> a***@example.com, +15551234567 -> +155***67
    """
    if not value:
        return value
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:1]}***@{domain}"
    if len(value) <= 6:
        return "***"
    return f"{value[:4]}***{value[-2:]}"


def scrub_payload(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in payload.items():
        if key in _DROPPED_KEYS:
            continue
        if key in _MASKED_KEYS and isinstance(value, str):
            out[key] = mask_recipient(value)
        else:
            out[key] = value
    return out


class JsonFormatter(logging.Formatter):
    def __init__(self, service: str | None = None) -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        if self.service:
            line["service"] = self.service
        extra_payload = getattr(record, "payload", None)
        if isinstance(extra_payload, dict):
            line["payload"] = scrub_payload(extra_payload)
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


def _build_formatter(service: str) -> logging.Formatter:
    s = get_settings()
    if (s.log_format or "").lower() == "text":
        return logging.Formatter(
            fmt=f"%(asctime)s %(levelname)s {service} [%(threadName)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    return JsonFormatter(service=service)


def setup_logging(service: str | None = None) -> None:
    """
    service переопределяет SERVICE_NAME (воркер и API в одном образе).
    """
    s = get_settings()
    root = logging.getLogger()
    level = getattr(logging, (s.log_level or "INFO").upper(), logging.INFO)
    root.setLevel(level)

    # Не плодим хэндлеры при повторном вызове
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter(service or s.service_name))
    root.addHandler(handler)

    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(level)
    # redis-py пишет на DEBUG каждый reconnect
    logging.getLogger("redis").setLevel(max(level, logging.INFO))


def get_project_logger(name: str = PROJECT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def get_delivery_logger() -> logging.Logger:
    """
    Логгер адаптеров доставки: email/sms провайдеры пишут сюда.
    """
    return logging.getLogger(f"{PROJECT_LOGGER}.delivery")
