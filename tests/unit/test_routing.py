from __future__ import annotations

import pytest

from notification_relay.domain.events import Event
from notification_relay.domain.routing import determine_channel


def test_high_severity_goes_to_sms() -> None:
    assert determine_channel(Event(severity="high")) == "sms"


@pytest.mark.parametrize("severity", ["low", "medium", "", "HIGH", " high", "critical"])
def test_everything_else_goes_to_email(severity: str) -> None:
    assert determine_channel(Event(severity=severity)) == "email"


def test_routing_is_deterministic() -> None:
    event = Event(severity="high")
    assert {determine_channel(event) for _ in range(5)} == {"sms"}
