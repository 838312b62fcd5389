from __future__ import annotations

import pytest
import redis

from persona_relay.common.errors import StoreUnavailableError
from persona_relay.common.events import EVT_JOB_FAILED, EventBus
from persona_relay.domain.enums import JobStatus
from persona_relay.queue.dead_letter import InlineDeadLetterStore
from persona_relay.queue.jobs import InlineJobQueue, RedisJobQueue, get_queue
from persona_relay.queue.retry import JobOptions
from persona_relay.queue.worker import Worker
from persona_relay.services.dead_letter_service import DeadLetterRecorder


def test_inline_add_is_idempotent_by_job_id(clock) -> None:
    q = InlineJobQueue("dispatch", clock=clock.millis)
    first = q.add("dispatch", {"text": "a"}, JobOptions(job_id="m1"))
    second = q.add("dispatch", {"text": "b"}, JobOptions(job_id="m1"))
    assert first.created is True
    assert second.created is False
    assert second.job_id == "m1"
    assert q.counts()["waiting"] == 1
    assert q.get_job("m1").data == {"text": "a"}


def test_inline_generates_job_id_when_missing(clock) -> None:
    q = InlineJobQueue("enhance", clock=clock.millis)
    res = q.add("enhance", {}, JobOptions())
    assert res.job_id.startswith("enhance_")


def test_inline_fetch_complete(clock) -> None:
    q = InlineJobQueue("enhance", clock=clock.millis)
    q.add("enhance", {"raw": "x"}, JobOptions(job_id="j1"))
    job = q.fetch(0)
    assert job is not None
    assert job.status == JobStatus.active
    assert q.counts()["active"] == 1

    q.complete(job, {"status": "emitted"})
    stored = q.get_job("j1")
    assert stored.status == JobStatus.completed
    assert stored.return_value == {"status": "emitted"}
    assert q.counts() == {"waiting": 0, "active": 0, "delayed": 0, "completed": 1, "failed": 0}


def test_inline_fetch_times_out_empty(clock) -> None:
    q = InlineJobQueue("enhance", clock=clock.millis)
    assert q.fetch(0) is None


def test_inline_fail_backs_off_then_fails_finally(clock) -> None:
    q = InlineJobQueue("enhance", clock=clock.millis)
    q.add("enhance", {"raw": "x"}, JobOptions(job_id="j1", attempts=3, backoff_ms=1000))

    job = q.fetch(0)
    out = q.fail(job, "boom")
    assert (out.final, out.attempts_made, out.delay_ms) == (False, 1, 1000)
    assert q.promote_due() == 0
    clock.advance(999)
    assert q.promote_due() == 0
    clock.advance(1)
    assert q.promote_due() == 1

    out = q.fail(q.fetch(0), "boom")
    assert (out.final, out.attempts_made, out.delay_ms) == (False, 2, 2000)
    clock.advance(2000)
    q.promote_due()

    out = q.fail(q.fetch(0), "boom again")
    assert out.final is True
    assert out.attempts_made == 3
    stored = q.get_job("j1")
    assert stored.status == JobStatus.failed
    assert stored.failed_reason == "boom again"
    assert stored.data == {"raw": "x"}
    assert q.counts()["failed"] == 1


def test_inline_retention_drops_oldest_completed(clock) -> None:
    q = InlineJobQueue("enhance", clock=clock.millis)
    for i in range(3):
        q.add("enhance", {"i": i}, JobOptions(job_id=f"j{i}", keep_completed=2))
        q.complete(q.fetch(0), None)
    assert q.counts()["completed"] == 2
    assert q.get_job("j0") is None
    assert q.get_job("j2") is not None


def test_get_queue_is_singleton_per_name() -> None:
    assert get_queue("enhance") is get_queue("enhance")
    assert get_queue("enhance") is not get_queue("dispatch")
    assert isinstance(get_queue("enhance"), InlineJobQueue)


# =============================================================================
# Redis backend
# =============================================================================
def test_redis_add_collapses_duplicate_job_id(fake_redis) -> None:
    q = RedisJobQueue("dispatch", client=fake_redis)
    assert q.add("dispatch", {"text": "a"}, JobOptions(job_id="m1")).created is True
    assert q.add("dispatch", {"text": "b"}, JobOptions(job_id="m1")).created is False
    assert fake_redis.lists["rq:dispatch:wait"] == ["m1"]
    assert q.get_job("m1").data == {"text": "a"}


def test_redis_fetch_moves_to_active_and_completes(fake_redis) -> None:
    q = RedisJobQueue("enhance", client=fake_redis)
    q.add("enhance", {"raw": "x"}, JobOptions(job_id="j1"))
    job = q.fetch(1)
    assert job is not None
    assert job.id == "j1"
    assert fake_redis.lists["rq:enhance:active"] == ["j1"]

    q.complete(job, {"status": "skipped"})
    assert fake_redis.lists["rq:enhance:active"] == []
    assert fake_redis.lists["rq:enhance:completed"] == ["j1"]
    stored = q.get_job("j1")
    assert stored.status == JobStatus.completed
    assert stored.data == {"raw": "x"}


def test_redis_fail_delays_and_promotes(fake_redis, monkeypatch) -> None:
    now = {"ms": 5_000}
    monkeypatch.setattr("persona_relay.queue.jobs.utc_ms", lambda: now["ms"])
    q = RedisJobQueue("enhance", client=fake_redis)
    q.add("enhance", {"raw": "x"}, JobOptions(job_id="j1", attempts=2, backoff_ms=1000))

    out = q.fail(q.fetch(1), "boom")
    assert out.final is False
    assert fake_redis.zsets["rq:enhance:delayed"] == {"j1": 6_000}
    assert q.promote_due() == 0

    now["ms"] = 6_000
    assert q.promote_due() == 1
    assert q.counts()["delayed"] == 0

    out = q.fail(q.fetch(1), "boom")
    assert out.final is True
    assert fake_redis.lists["rq:enhance:failed"] == ["j1"]
    assert q.get_job("j1").attempts_made == 2


def test_redis_trim_deletes_old_job_hashes(fake_redis) -> None:
    q = RedisJobQueue("enhance", client=fake_redis)
    for i in range(3):
        q.add("enhance", {"i": i}, JobOptions(job_id=f"j{i}", keep_completed=1))
        q.complete(q.fetch(1), None)
    assert fake_redis.lists["rq:enhance:completed"] == ["j2"]
    assert q.get_job("j0") is None
    assert q.get_job("j1") is None


def test_redis_add_failure_leaves_no_placeholder(fake_redis) -> None:
    q = RedisJobQueue("enhance", client=fake_redis)
    fake_redis.fail_next_execute = redis.ConnectionError("connection reset")

    with pytest.raises(StoreUnavailableError):
        q.add("enhance", {"raw": "x"}, JobOptions(job_id="j1"))
    assert "rq:enhance:job:j1" not in fake_redis.hashes

    # повторная постановка того же id не должна схлопнуться в «дубликат»
    assert q.add("enhance", {"raw": "x"}, JobOptions(job_id="j1")).created is True
    assert q.counts()["waiting"] == 1
    assert q.get_job("j1").data == {"raw": "x"}


# =============================================================================
# Зависшие задачи (аренда в active)
# =============================================================================
def test_redis_job_stuck_in_active_after_store_failure_is_retried(
    fake_redis, monkeypatch
) -> None:
    now = {"ms": 10_000}
    monkeypatch.setattr("persona_relay.queue.jobs.utc_ms", lambda: now["ms"])
    q = RedisJobQueue("enhance", client=fake_redis, lock_ms=1000)
    q.add("enhance", {"raw": "x"}, JobOptions(job_id="j1", attempts=3, backoff_ms=1000))

    def _store_goes_down(job):
        fake_redis.fail_with = redis.ConnectionError("connection reset")
        raise StoreUnavailableError()

    # fail() сам падает: задача остаётся в active
    with pytest.raises(redis.ConnectionError):
        Worker(q, _store_goes_down, bus=EventBus()).process_next(timeout_sec=0)
    fake_redis.fail_with = None
    assert fake_redis.lists["rq:enhance:active"] == ["j1"]
    assert "rq:enhance:lock:j1" in fake_redis.kv

    # аренда жива: задачу не трогают
    now["ms"] = 10_500
    assert q.recover_stalled() == []
    now["ms"] = 11_000
    assert q.recover_stalled() == []
    assert fake_redis.lists["rq:enhance:active"] == ["j1"]

    fake_redis.expire_now("rq:enhance:lock:j1")
    now["ms"] = 11_500
    assert q.recover_stalled() == []

    assert fake_redis.lists["rq:enhance:active"] == []
    job = q.get_job("j1")
    assert job.status == JobStatus.delayed
    assert job.attempts_made == 1
    assert job.failed_reason == "stalled: job lease expired"
    assert job.data == {"raw": "x"}
    assert fake_redis.zsets["rq:enhance:delayed"] == {"j1": 12_500}


def test_redis_stalled_check_is_throttled(fake_redis, monkeypatch) -> None:
    now = {"ms": 10_000}
    monkeypatch.setattr("persona_relay.queue.jobs.utc_ms", lambda: now["ms"])
    q = RedisJobQueue("enhance", client=fake_redis, lock_ms=1000)
    q.add("enhance", {"raw": "x"}, JobOptions(job_id="j1"))
    q.fetch(1)
    fake_redis.expire_now("rq:enhance:lock:j1")

    q.recover_stalled()
    now["ms"] = 10_100
    q.recover_stalled()
    assert fake_redis.lists["rq:enhance:active"] == ["j1"]

    now["ms"] = 10_500
    q.recover_stalled()
    assert fake_redis.lists["rq:enhance:active"] == []


def test_stalled_job_without_attempts_left_is_dead_lettered(fake_redis, monkeypatch) -> None:
    now = {"ms": 10_000}
    monkeypatch.setattr("persona_relay.queue.jobs.utc_ms", lambda: now["ms"])
    bus = EventBus()
    failed_events: list[dict] = []
    bus.on(EVT_JOB_FAILED, failed_events.append)
    q = RedisJobQueue("enhance", client=fake_redis, lock_ms=1000)
    dlq = InlineDeadLetterStore("enhance", keep=10)
    DeadLetterRecorder(q, dlq).attach(bus)

    q.add("enhance", {"raw": ";say hi"}, JobOptions(job_id="j1", attempts=1))
    # воркер забрал задачу и умер, не продлив аренду
    q.fetch(1)
    fake_redis.expire_now("rq:enhance:lock:j1")

    worker = Worker(q, lambda job: None, bus=bus)
    assert worker.process_next(timeout_sec=0) is None
    now["ms"] = 10_500
    assert worker.process_next(timeout_sec=0) is None

    assert q.get_job("j1").status == JobStatus.failed
    assert fake_redis.lists["rq:enhance:failed"] == ["j1"]
    assert failed_events == [
        {
            "queue": "enhance",
            "jobId": "j1",
            "failedReason": "stalled: job lease expired",
            "attemptsMade": 1,
        }
    ]
    rec = dlq.list_records()[0]
    assert rec.original_payload == {"raw": ";say hi"}
    assert rec.attempts_made == 1


def test_inline_queue_has_nothing_to_recover(clock) -> None:
    q = InlineJobQueue("enhance", clock=clock.millis)
    q.add("enhance", {"v": 1}, JobOptions(job_id="j1"))
    q.fetch(0)
    assert q.recover_stalled() == []
