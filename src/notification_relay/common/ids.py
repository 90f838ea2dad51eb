"""
Генерация идентификаторов.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime


def new_message_id(prefix: str = "msg") -> str:
    """
    Идентификатор сообщения (mock-доставка, логи).
    Формат: <prefix>_<UTCYYYYMMDDHHMMSS>_<rand>
    """
    ts = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
    rnd = secrets.token_hex(6)
    return f"{prefix}_{ts}_{rnd}"
