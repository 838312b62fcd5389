from __future__ import annotations

import pytest

from persona_relay.common.config import get_settings
from persona_relay.queue.claims import reset_claim_store
from persona_relay.queue.dead_letter import reset_dead_letter_stores
from persona_relay.queue.jobs import reset_queues


@pytest.fixture(autouse=True)
def inline_backends(monkeypatch):
    # в unit-тестах Redis не нужен: очереди, claim-ключи и DLQ живут в памяти процесса
    monkeypatch.setattr(get_settings(), "queue_mode", "inline")
    reset_queues()
    reset_claim_store()
    reset_dead_letter_stores()
    yield
    reset_queues()
    reset_claim_store()
    reset_dead_letter_stores()


class FakeClock:
    """Управляемые часы: секунды для claim-хранилища, миллисекунды для очередей."""

    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now_ms = start_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms

    def seconds(self) -> float:
        return self.now_ms / 1000.0

    def millis(self) -> int:
        return self.now_ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FakeRedis:
    def __init__(self) -> None:
        self.kv: dict[str, str] = {}
        self.px: dict[str, int] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.sets: dict[str, set[str]] = {}
        self.fail_with: Exception | None = None
        # ошибка ровно одного следующего execute() пайплайна
        self.fail_next_execute: Exception | None = None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    # strings
    def set(self, name, value, nx=False, px=None):
        self._check()
        if nx and name in self.kv:
            return None
        self.kv[name] = value
        if px is not None:
            self.px[name] = px
        return True

    def expire_now(self, name: str) -> None:
        self.kv.pop(name, None)
        self.px.pop(name, None)

    def ping(self):
        self._check()
        return True

    # hashes
    def hset(self, name, key=None, value=None, mapping=None):
        self._check()
        h = self.hashes.setdefault(name, {})
        if key is not None:
            h[key] = value
        for k, v in (mapping or {}).items():
            h[k] = v
        return 1

    def hgetall(self, name):
        self._check()
        return dict(self.hashes.get(name, {}))

    # lists
    def lpush(self, name, *values):
        self._check()
        lst = self.lists.setdefault(name, [])
        for v in values:
            lst.insert(0, v)
        return len(lst)

    def lrange(self, name, start, end):
        lst = self.lists.get(name, [])
        end = len(lst) - 1 if end == -1 else end
        return lst[start : end + 1]

    def ltrim(self, name, start, end):
        lst = self.lists.get(name, [])
        end = len(lst) - 1 if end == -1 else end
        self.lists[name] = lst[start : end + 1]
        return True

    def lrem(self, name, count, value):
        lst = self.lists.get(name, [])
        if value in lst:
            lst.remove(value)
            return 1
        return 0

    def llen(self, name):
        return len(self.lists.get(name, []))

    def blmove(self, first_list, second_list, timeout, src="LEFT", dest="RIGHT"):
        self._check()
        lst = self.lists.get(first_list, [])
        if not lst:
            return None
        value = lst.pop() if src == "RIGHT" else lst.pop(0)
        target = self.lists.setdefault(second_list, [])
        if dest == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        return value

    # sorted sets
    def zadd(self, name, mapping):
        self.zsets.setdefault(name, {}).update(mapping)
        return len(mapping)

    def zrangebyscore(self, name, min, max):
        hi = float("inf") if max == "+inf" else float(max)
        items = sorted(self.zsets.get(name, {}).items(), key=lambda kv: kv[1])
        return [member for member, score in items if score <= hi]

    def zrem(self, name, *values):
        z = self.zsets.get(name, {})
        removed = 0
        for v in values:
            if z.pop(v, None) is not None:
                removed += 1
        return removed

    def zcard(self, name):
        return len(self.zsets.get(name, {}))

    def exists(self, *names):
        self._check()
        stores = (self.kv, self.hashes, self.lists, self.zsets, self.sets)
        return sum(1 for n in names if any(n in s for s in stores))

    # sets
    def sadd(self, name, *values):
        self._check()
        s = self.sets.setdefault(name, set())
        before = len(s)
        s.update(values)
        return len(s) - before

    def smembers(self, name):
        self._check()
        return set(self.sets.get(name, set()))

    def delete(self, *names):
        self._check()
        for n in names:
            self.sets.pop(n, None)
            self.kv.pop(n, None)
            self.hashes.pop(n, None)
            self.lists.pop(n, None)
            self.zsets.pop(n, None)
        return len(names)

    def pipeline(self, transaction=True):
        return _FakePipeline(self)


class _FakePipeline:
    """
    Буферизует команды до execute(). После watch() команды выполняются сразу,
    пока не вызван multi(), как в redis-py.
    """

    def __init__(self, client: FakeRedis) -> None:
        self._client = client
        self._ops: list = []
        self._immediate = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.reset()
        return False

    def reset(self) -> None:
        self._ops = []
        self._immediate = False

    def watch(self, *names) -> None:
        self._client._check()
        self._immediate = True

    def multi(self) -> None:
        self._immediate = False

    def __getattr__(self, name):
        method = getattr(self._client, name)
        if self._immediate:
            return method

        def _queue(*args, **kwargs):
            self._ops.append((method, args, kwargs))
            return self

        return _queue

    def execute(self):
        self._client._check()
        ops, self._ops = self._ops, []
        if self._client.fail_next_execute is not None:
            err, self._client.fail_next_execute = self._client.fail_next_execute, None
            raise err
        return [method(*args, **kwargs) for method, args, kwargs in ops]


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
