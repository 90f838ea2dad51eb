"""
Доменные перечисления (enum).
"""

from __future__ import annotations

import enum


class Channel(str, enum.Enum):
    """
    Канал доставки уведомления.
    """

    email = "email"
    sms = "sms"


class Severity(str, enum.Enum):
    """
    Известные уровни важности. Поле события свободное: всё, кроме high, идёт в email.
    """

    high = "high"
    low = "low"
