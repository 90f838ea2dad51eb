"""
Событие уведомления: единица работы пайплайна доставки.

Правила:
- запись в очереди - плоский JSON-объект, все поля примитивные
- таймстампы в ISO UTC (null, пока не выставлены)
- неизвестные ключи игнорируются (например, legacy-поле channel)
- attempt_count увеличивает только обработчик основной очереди
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from notification_relay.common.errors import MalformedEventError
from notification_relay.common.time import parse_iso, to_iso

DEFAULT_MAX_ATTEMPTS = 3

_STR_FIELDS = ("user_id", "event_type", "message", "severity", "recipient", "last_error")
_TS_FIELDS = ("created_at", "last_attempt_at")


@dataclass
class Event:
    user_id: str = ""
    event_type: str = ""
    message: str = ""
    severity: str = ""
    recipient: str = ""

    attempt_count: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    last_error: str = ""
    created_at: datetime | None = None
    last_attempt_at: datetime | None = None

    def should_retry(self) -> bool:
        return self.attempt_count < self.max_attempts

    def record_attempt(self, now: datetime) -> None:
        """
        Отметить попытку доставки: счётчик +1 и время последней попытки.
        """
        self.attempt_count += 1
        self.last_attempt_at = now

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "event_type": self.event_type,
            "message": self.message,
            "severity": self.severity,
            "recipient": self.recipient,
            "attempt_count": self.attempt_count,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "created_at": to_iso(self.created_at),
            "last_attempt_at": to_iso(self.last_attempt_at),
        }

    def to_record(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_record(cls, raw: str | bytes) -> Event:
        """
        Разбор записи очереди. Любая проблема формата -> MalformedEventError.
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MalformedEventError("invalid_json", {"error": str(e)[:200]}) from e
        if not isinstance(data, dict):
            raise MalformedEventError("record_not_object", {"type": type(data).__name__})
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        kwargs: dict[str, Any] = {}

        for name in _STR_FIELDS:
            value = data.get(name)
            if value is None:
                continue
            if not isinstance(value, str):
                raise MalformedEventError("field_not_string", {"field": name})
            kwargs[name] = value

        for name in ("attempt_count", "max_attempts"):
            value = data.get(name)
            if value is None:
                continue
            # bool - подкласс int, но в записи это ошибка формата
            if isinstance(value, bool) or not isinstance(value, int):
                raise MalformedEventError("field_not_integer", {"field": name})
            kwargs[name] = value

        for name in _TS_FIELDS:
            try:
                kwargs[name] = parse_iso(data.get(name))
            except ValueError as e:
                raise MalformedEventError(
                    "bad_timestamp", {"field": name, "error": str(e)[:200]}
                ) from e

        event = cls(**kwargs)
        if event.attempt_count < 0:
            raise MalformedEventError("attempt_count_negative", {"value": event.attempt_count})
        if event.max_attempts < 1:
            raise MalformedEventError("max_attempts_below_one", {"value": event.max_attempts})
        return event
