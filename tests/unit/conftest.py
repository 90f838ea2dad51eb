from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from notification_relay.common.config import Settings
from notification_relay.common.errors import QueueUnavailableError
from notification_relay.delivery.base import DeliveryResult, fail_result, ok_result
from notification_relay.queue.service import InMemoryQueueService


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeAdapter:
    """
    Адаптер, который отвечает по заранее заданному сценарию.
    Последний элемент сценария повторяется.
    """

    def __init__(self, outcomes: list[bool | Exception] | None = None, provider: str = "fake") -> None:
        self.outcomes = outcomes or [True]
        self.provider = provider
        self.calls: list[tuple[str, str]] = []

    def send(self, recipient: str, message: str) -> DeliveryResult:
        self.calls.append((recipient, message))
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        if outcome:
            return ok_result(self.provider, message_id=f"m-{len(self.calls)}")
        return fail_result(self.provider, "provider down")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        QUEUE_MODE="inline",
        EVENT_POP_TIMEOUT_SEC=0.01,
        RETRY_POP_TIMEOUT_SEC=0.01,
        RETRY_REQUEUE_DELAY_SEC=0,
        QUEUE_ERROR_BACKOFF_SEC=0.01,
    )


@pytest.fixture
def queue() -> InMemoryQueueService:
    return InMemoryQueueService()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FlakyPushQueue(InMemoryQueueService):
    """
    push в заданную очередь падает первые `failures` раз, дальше работает.
    """

    def __init__(self, broken_queue: str, failures: int = 1) -> None:
        super().__init__()
        self.broken_queue = broken_queue
        self.failures = failures
        self.failed_pushes = 0

    def push(self, queue_name: str, record: str) -> None:
        if queue_name == self.broken_queue and self.failed_pushes < self.failures:
            self.failed_pushes += 1
            raise QueueUnavailableError("push_failed", {"queue": queue_name})
        super().push(queue_name, record)

    def total(self) -> int:
        with self._cond:
            return sum(len(q) for q in self._queues.values())
