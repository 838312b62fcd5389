from __future__ import annotations

import json

from persona_relay.contracts.queue_events import DeadLetterRecord
from persona_relay.queue.dead_letter import (
    InlineDeadLetterStore,
    RedisDeadLetterStore,
    dlq_name,
    get_dead_letter_store,
)


def _record(i: int) -> DeadLetterRecord:
    return DeadLetterRecord(
        original_payload={"messageId": f"m{i}"},
        failure_reason="validation: invalid intake payload",
        attempts_made=3,
        recorded_at="2026-01-01T00:00:00Z",
        job_id=f"j{i}",
        queue="enhance",
    )


def test_dlq_name() -> None:
    assert dlq_name("enhance") == "enhance:dlq"


def test_inline_store_keeps_newest_first_and_bounded() -> None:
    store = InlineDeadLetterStore("enhance", keep=2)
    for i in range(3):
        store.record(_record(i))
    assert store.depth() == 2
    assert [r.job_id for r in store.list_records()] == ["j2", "j1"]


def test_redis_store_pushes_and_trims(fake_redis) -> None:
    store = RedisDeadLetterStore("enhance", keep=2, client=fake_redis)
    for i in range(3):
        store.record(_record(i))
    raw = fake_redis.lists["enhance:dlq"]
    assert len(raw) == 2
    assert json.loads(raw[0])["originalPayload"] == {"messageId": "m2"}
    assert store.depth() == 2
    assert store.list_records(limit=1)[0].job_id == "j2"


def test_get_dead_letter_store_is_cached_per_queue() -> None:
    store = get_dead_letter_store("enhance")
    assert isinstance(store, InlineDeadLetterStore)
    assert get_dead_letter_store("enhance") is store
