"""
Claim-ключи: атомарный "set if absent + expire".

Зачем нужно:
- cooldown автора и burst-дедуп строятся на одном примитиве
- claim атомарный (SET NX PX), никогда не read-then-write
- ключи никто не удаляет явно: истечение TTL и есть "окно закрыто"

Реализация:
- redis: SET key "1" NX PX <ttl_ms>
- inline (QUEUE_MODE=inline): словарь с временем истечения под mutex'ом,
  годится для одного процесса и для тестов
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Protocol

import redis

from persona_relay.common.config import get_settings
from persona_relay.common.errors import StoreUnavailableError

from .redis import redis_client

_INLINE_PRUNE_THRESHOLD = 20_000


class ClaimStore(Protocol):
    def claim(self, key: str, ttl_ms: int) -> bool: ...

    def ping(self) -> bool: ...


class RedisClaimStore:
    def __init__(self, client: redis.Redis | None = None) -> None:
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis_client()
        return self._client

    def claim(self, key: str, ttl_ms: int) -> bool:
        """
        True, если ключ НОВЫЙ (claim получен), False, если окно ещё открыто.
        """
        try:
            ok = self.client.set(name=key, value="1", nx=True, px=max(1, int(ttl_ms)))
        except redis.RedisError as e:
            raise StoreUnavailableError(details={"op": "claim", "err": str(e)[:200]}) from e
        return bool(ok)

    def ping(self) -> bool:
        return bool(self.client.ping())


class InlineClaimStore:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires: dict[str, float] = {}
        self._lock = threading.Lock()

    def claim(self, key: str, ttl_ms: int) -> bool:
        with self._lock:
            now = self._clock()
            expires = self._expires.get(key, 0.0)
            if expires > now:
                return False
            self._expires[key] = now + max(1, int(ttl_ms)) / 1000.0
            if len(self._expires) > _INLINE_PRUNE_THRESHOLD:
                for k, exp in list(self._expires.items()):
                    if exp <= now:
                        self._expires.pop(k, None)
            return True

    def ping(self) -> bool:
        return True


_store: ClaimStore | None = None


def get_claim_store() -> ClaimStore:
    """
    Singleton store по QUEUE_MODE.
    """
    global _store
    if _store is None:
        if (get_settings().queue_mode or "").strip().lower() == "inline":
            _store = InlineClaimStore()
        else:
            _store = RedisClaimStore()
    return _store


def reset_claim_store(store: ClaimStore | None = None) -> None:
    """
    Подменить/сбросить singleton (тесты, пересборка после смены настроек).
    """
    global _store
    _store = store
