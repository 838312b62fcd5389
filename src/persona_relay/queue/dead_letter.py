"""
DLQ: хранилище записей об окончательно упавших задачах.

Назначение:
- отдельный от intake-очереди список <queue>:dlq
- только дописывание (LPUSH), хранение ограничено DLQ_KEEP (LTRIM)
- чтение для операторских утилит (разбор/переигрывание вне этого сервиса)
"""

from __future__ import annotations

import json
import threading
from collections import deque
from typing import Protocol

import redis

from persona_relay.common.config import get_settings
from persona_relay.contracts.queue_events import DeadLetterRecord

from .redis import redis_client


def dlq_name(queue_name: str) -> str:
    return f"{queue_name}:dlq"


class DeadLetterStore(Protocol):
    source_queue: str

    def record(self, entry: DeadLetterRecord) -> None: ...

    def list_records(self, limit: int = 100) -> list[DeadLetterRecord]: ...

    def depth(self) -> int: ...


class RedisDeadLetterStore:
    def __init__(self, source_queue: str, keep: int, client: redis.Redis | None = None) -> None:
        self.source_queue = source_queue
        self.key = dlq_name(source_queue)
        self._keep = max(1, int(keep))
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis_client()
        return self._client

    def record(self, entry: DeadLetterRecord) -> None:
        pipe = self.client.pipeline(transaction=True)
        pipe.lpush(self.key, json.dumps(entry.to_payload(), ensure_ascii=False))
        pipe.ltrim(self.key, 0, self._keep - 1)
        pipe.execute()

    def list_records(self, limit: int = 100) -> list[DeadLetterRecord]:
        raw_items = self.client.lrange(self.key, 0, max(1, int(limit)) - 1)
        return [DeadLetterRecord.model_validate(json.loads(raw)) for raw in raw_items]

    def depth(self) -> int:
        return int(self.client.llen(self.key))


class InlineDeadLetterStore:
    def __init__(self, source_queue: str, keep: int) -> None:
        self.source_queue = source_queue
        self.key = dlq_name(source_queue)
        self._items: deque[str] = deque(maxlen=max(1, int(keep)))
        self._lock = threading.Lock()

    def record(self, entry: DeadLetterRecord) -> None:
        with self._lock:
            self._items.appendleft(json.dumps(entry.to_payload(), ensure_ascii=False))

    def list_records(self, limit: int = 100) -> list[DeadLetterRecord]:
        with self._lock:
            raw_items = list(self._items)[: max(1, int(limit))]
        return [DeadLetterRecord.model_validate(json.loads(raw)) for raw in raw_items]

    def depth(self) -> int:
        with self._lock:
            return len(self._items)


_stores: dict[str, DeadLetterStore] = {}


def get_dead_letter_store(source_queue: str) -> DeadLetterStore:
    store = _stores.get(source_queue)
    if store is None:
        s = get_settings()
        if (s.queue_mode or "").strip().lower() == "inline":
            store = InlineDeadLetterStore(source_queue, keep=s.dlq_keep)
        else:
            store = RedisDeadLetterStore(source_queue, keep=s.dlq_keep)
        _stores[source_queue] = store
    return store


def reset_dead_letter_stores() -> None:
    _stores.clear()
