"""
Redis-клиент очередей relay.

- один клиент на процесс: API, обработчик и retry-планировщик делят пул соединений
- socket_timeout больше самого длинного BRPOP, чтобы пустое ожидание
  не превращалось в ошибку соединения
"""

from __future__ import annotations

import threading

import redis

from notification_relay.common.config import Settings, get_settings

_client: redis.Redis | None = None
_lock = threading.Lock()


def client_options(s: Settings) -> dict:
    longest_pop = max(s.event_pop_timeout_sec, s.retry_pop_timeout_sec)
    return {
        "decode_responses": True,
        "socket_connect_timeout": s.redis_socket_timeout_sec,
        "socket_timeout": longest_pop + s.redis_socket_timeout_sec,
        "health_check_interval": s.redis_health_check_sec,
    }


def redis_client() -> redis.Redis:
    global _client
    with _lock:
        if _client is None:
            s = get_settings()
            _client = redis.Redis.from_url(s.redis_url, **client_options(s))
        return _client
