"""
Централизованная конфигурация проекта (ENV / .env).

Важно:
- настройки читаются из .env и переменных окружения
- типизированные значения через pydantic-settings
- секреты можно передать файлом: <KEY>_FILE=/run/secrets/...
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Runtime
    # -------------------------------------------------------------------------
    service_name: str = Field(default="api-gateway", alias="SERVICE_NAME")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8080, alias="API_PORT")

    # -------------------------------------------------------------------------
    # Queues
    # -------------------------------------------------------------------------
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    # запас сверх таймаута BRPOP, иначе пустое ожидание оборвётся socket timeout
    redis_socket_timeout_sec: float = Field(default=5.0, alias="REDIS_SOCKET_TIMEOUT_SEC")
    redis_health_check_sec: int = Field(default=30, alias="REDIS_HEALTH_CHECK_SEC")
    queue_mode: str = Field(default="redis", alias="QUEUE_MODE")  # redis|inline
    queue_events: str = Field(default="q:events", alias="QUEUE_EVENTS")
    queue_retry: str = Field(default="q:retry", alias="QUEUE_RETRY")
    queue_dlq: str = Field(default="q:dlq", alias="QUEUE_DLQ")

    # Основной цикл ждёт ограниченно, чтобы видеть сигнал остановки
    event_pop_timeout_sec: float = Field(default=5.0, alias="EVENT_POP_TIMEOUT_SEC")
    queue_error_backoff_sec: float = Field(default=2.0, alias="QUEUE_ERROR_BACKOFF_SEC")
    # попыток push при передаче события между очередями (ретраи, DLQ)
    queue_push_attempts: int = Field(default=3, alias="QUEUE_PUSH_ATTEMPTS")

    # -------------------------------------------------------------------------
    # Retry / DLQ
    # -------------------------------------------------------------------------
    default_max_attempts: int = Field(default=3, alias="DEFAULT_MAX_ATTEMPTS")
    retry_backoff_base_sec: int = Field(default=1, alias="RETRY_BACKOFF_BASE_SEC")
    retry_backoff_max_sec: int = Field(default=60, alias="RETRY_BACKOFF_MAX_SEC")
    retry_pop_timeout_sec: float = Field(default=1.0, alias="RETRY_POP_TIMEOUT_SEC")
    retry_requeue_delay_sec: float = Field(default=0.1, alias="RETRY_REQUEUE_DELAY_SEC")
    dlq_list_default_limit: int = Field(default=100, alias="DLQ_LIST_DEFAULT_LIMIT")
    dlq_list_max_limit: int = Field(default=1000, alias="DLQ_LIST_MAX_LIMIT")

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------
    delivery_mode: str = Field(default="live", alias="DELIVERY_MODE")  # live|mock

    # SMTP
    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_user: str | None = Field(default=None, alias="SMTP_USER")
    smtp_pass: str | None = Field(default=None, alias="SMTP_PASS")
    smtp_timeout_sec: int = Field(default=20, alias="SMTP_TIMEOUT_SEC")
    email_from: str = Field(default="notifications@example.com", alias="EMAIL_FROM")
    email_subject: str = Field(default="Notification", alias="EMAIL_SUBJECT")

    # SMS (Twilio)
    twilio_account_sid: str | None = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str | None = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_from_number: str | None = Field(default=None, alias="TWILIO_FROM_NUMBER")
    twilio_region: str | None = Field(default=None, alias="TWILIO_REGION")
    twilio_edge: str | None = Field(default=None, alias="TWILIO_EDGE")
    sms_timeout_sec: int = Field(default=10, alias="SMS_TIMEOUT_SEC")

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # json|text

    def model_post_init(self, __context) -> None:
        _apply_file_overrides(self)


def _apply_file_overrides(settings: Settings) -> None:
    alias_to_field = {}
    for name, field in type(settings).model_fields.items():
        alias = field.alias or name
        alias_to_field[str(alias)] = name
        alias_to_field[str(name)] = name

    for key, path in os.environ.items():
        if not key.endswith("_FILE"):
            continue
        base = key[: -len("_FILE")]
        target = alias_to_field.get(base)
        if not target:
            continue
        file_path = (path or "").strip()
        if not file_path:
            continue
        try:
            raw = Path(file_path).read_text(encoding="utf-8")
        except OSError as e:
            logging.getLogger("notification-relay").error(
                "config_file_read_failed",
                extra={"payload": {"env_key": key, "path": file_path, "error": str(e)[:200]}},
            )
            raise RuntimeError(f"Failed to read {key} from {file_path}") from e
        setattr(settings, target, raw.strip())


_SETTINGS = Settings()


def get_settings() -> Settings:
    return _SETTINGS
