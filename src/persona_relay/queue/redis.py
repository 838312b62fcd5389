"""
Redis-клиент для очередей и claim-ключей.

Назначение:
- единая точка подключения к Redis
- ограниченный таймаут соединения (REDIS_CONNECT_TIMEOUT_SEC)
- используется очередями, гейтами, health monitor'ом и readiness
"""

from __future__ import annotations

import redis

from persona_relay.common.config import get_settings
from persona_relay.common.errors import StartupError
from persona_relay.common.logging import get_project_logger

log = get_project_logger()

_client: redis.Redis | None = None


def redis_client() -> redis.Redis:
    """
    Singleton Redis client.
    """
    global _client
    if _client is None:
        s = get_settings()
        if not (s.redis_url or "").strip():
            raise StartupError("REDIS_URL не задан", details={"env": "REDIS_URL"})
        timeout = float(s.redis_connect_timeout_sec)
        _client = redis.Redis.from_url(
            s.redis_url,
            decode_responses=True,
            socket_connect_timeout=timeout,
            health_check_interval=30,
        )
        log.info(
            "redis_client_created",
            extra={"payload": {"connect_timeout_sec": timeout}},
        )
    return _client


def close_redis_client() -> None:
    global _client
    if _client is None:
        return
    try:
        _client.close()
    except redis.RedisError as e:
        log.warning("redis_close_failed", extra={"payload": {"err": str(e)[:200]}})
    _client = None
