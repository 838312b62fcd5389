"""
Очередь задач поверх Redis (wait / active / delayed / completed / failed).

Назначение:
- постановка задач с детерминированным job_id (повторная постановка схлопывается)
- надёжная выборка: BLMOVE wait -> active, одна задача принадлежит одному воркеру
- ретраи через delayed (ZSET по времени готовности) + promote_due()
- задачи без живой аренды возвращаются из active через recover_stalled()
- ограниченное хранение completed/failed (обрезка списков и хэшей задач)

Ключи Redis (префикс rq:<queue>):
- rq:<queue>:job:<id>  HASH  данные и метаданные задачи
- rq:<queue>:wait      LIST  ожидающие (LPUSH / BLMOVE RIGHT)
- rq:<queue>:active    LIST  в работе
- rq:<queue>:delayed   ZSET  ожидающие ретрая, score = due_ms
- rq:<queue>:completed LIST  id завершённых (новые слева)
- rq:<queue>:failed    LIST  id окончательно упавших
- rq:<queue>:lock:<id> STRING аренда задачи в active (PX JOB_LOCK_MS)
- rq:<queue>:stalled  SET   id из active, помеченные прошлой проверкой зависаний

В QUEUE_MODE=inline используется InlineJobQueue с той же семантикой в памяти процесса.
"""

from __future__ import annotations

import copy
import json
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

import redis

from persona_relay.common.config import get_settings
from persona_relay.common.errors import StoreUnavailableError
from persona_relay.common.ids import new_job_id
from persona_relay.common.logging import get_queue_logger
from persona_relay.common.time import utc_ms
from persona_relay.domain.enums import JobStatus

from .redis import redis_client
from .retry import JobOptions, backoff_delay_ms, has_attempts_left

log = get_queue_logger()


# =============================================================================
# МОДЕЛИ
# =============================================================================
@dataclass
class Job:
    id: str
    name: str
    queue: str
    data: dict[str, Any]
    attempts_made: int = 0
    max_attempts: int = 1
    backoff_ms: int = 0
    backoff_max_ms: int | None = None
    keep_completed: int = 500
    keep_failed: int = 500
    status: JobStatus = JobStatus.waiting
    failed_reason: str | None = None
    return_value: dict[str, Any] | None = None
    created_at_ms: int = field(default_factory=utc_ms)
    processed_at_ms: int | None = None
    finished_at_ms: int | None = None

    def to_hash(self, *, include_data: bool = True) -> dict[str, str]:
        out = {
            "name": self.name,
            "attemptsMade": str(self.attempts_made),
            "maxAttempts": str(self.max_attempts),
            "backoffMs": str(self.backoff_ms),
            "keepCompleted": str(self.keep_completed),
            "keepFailed": str(self.keep_failed),
            "status": self.status.value,
            "createdAt": str(self.created_at_ms),
        }
        if include_data:
            out["data"] = json.dumps(self.data, ensure_ascii=False)
        if self.backoff_max_ms is not None:
            out["backoffMaxMs"] = str(self.backoff_max_ms)
        if self.failed_reason is not None:
            out["failedReason"] = self.failed_reason
        if self.return_value is not None:
            out["returnValue"] = json.dumps(self.return_value, ensure_ascii=False)
        if self.processed_at_ms is not None:
            out["processedAt"] = str(self.processed_at_ms)
        if self.finished_at_ms is not None:
            out["finishedAt"] = str(self.finished_at_ms)
        return out

    @classmethod
    def from_hash(cls, queue: str, job_id: str, h: dict[str, str]) -> Job:
        def _opt_int(key: str) -> int | None:
            v = h.get(key)
            return int(v) if v not in (None, "") else None

        return cls(
            id=job_id,
            name=h.get("name", ""),
            queue=queue,
            data=json.loads(h.get("data") or "{}"),
            attempts_made=int(h.get("attemptsMade") or 0),
            max_attempts=int(h.get("maxAttempts") or 1),
            backoff_ms=int(h.get("backoffMs") or 0),
            backoff_max_ms=_opt_int("backoffMaxMs"),
            keep_completed=int(h.get("keepCompleted") or 0),
            keep_failed=int(h.get("keepFailed") or 0),
            status=JobStatus(h.get("status") or JobStatus.waiting.value),
            failed_reason=h.get("failedReason"),
            return_value=json.loads(h["returnValue"]) if h.get("returnValue") else None,
            created_at_ms=int(h.get("createdAt") or 0),
            processed_at_ms=_opt_int("processedAt"),
            finished_at_ms=_opt_int("finishedAt"),
        )


@dataclass
class AddResult:
    job_id: str
    created: bool


@dataclass
class FailOutcome:
    final: bool
    attempts_made: int
    delay_ms: int = 0


class JobQueue(Protocol):
    name: str

    def add(self, name: str, data: dict[str, Any], opts: JobOptions) -> AddResult: ...

    def fetch(self, timeout_sec: float) -> Job | None: ...

    def complete(self, job: Job, return_value: dict[str, Any] | None) -> None: ...

    def fail(self, job: Job, reason: str) -> FailOutcome: ...

    def promote_due(self) -> int: ...

    def recover_stalled(self) -> list[Job]: ...

    def get_job(self, job_id: str) -> Job | None: ...

    def counts(self) -> dict[str, int]: ...


def _new_job(queue: str, name: str, data: dict[str, Any], opts: JobOptions) -> Job:
    return Job(
        id=opts.job_id or new_job_id(queue),
        name=name,
        queue=queue,
        data=data,
        max_attempts=max(1, int(opts.attempts)),
        backoff_ms=max(0, int(opts.backoff_ms)),
        backoff_max_ms=opts.backoff_max_ms,
        keep_completed=max(0, int(opts.keep_completed)),
        keep_failed=max(0, int(opts.keep_failed)),
    )


# =============================================================================
# REDIS
# =============================================================================
class RedisJobQueue:
    def __init__(
        self,
        name: str,
        client: redis.Redis | None = None,
        *,
        lock_ms: int | None = None,
    ) -> None:
        self.name = name
        self._client = client
        self._lock_ms = max(1, int(lock_ms or get_settings().job_lock_ms))
        self._next_stalled_check_ms = 0

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis_client()
        return self._client

    def _k(self, part: str) -> str:
        return f"rq:{self.name}:{part}"

    def _job_key(self, job_id: str) -> str:
        return self._k(f"job:{job_id}")

    def _lock_key(self, job_id: str) -> str:
        return self._k(f"lock:{job_id}")

    def add(self, name: str, data: dict[str, Any], opts: JobOptions) -> AddResult:
        job = _new_job(self.name, name, data, opts)
        key = self._job_key(job.id)
        try:
            with self.client.pipeline(transaction=True) as pipe:
                try:
                    # WATCH + MULTI: захват job_id, тело задачи и постановка в wait
                    # либо применяются вместе, либо не применяются вовсе
                    pipe.watch(key)
                    if pipe.exists(key):
                        return AddResult(job_id=job.id, created=False)
                    pipe.multi()
                    pipe.hset(key, mapping=job.to_hash())
                    pipe.lpush(self._k("wait"), job.id)
                    pipe.execute()
                except redis.WatchError:
                    return AddResult(job_id=job.id, created=False)
        except redis.RedisError as e:
            raise StoreUnavailableError(
                details={"op": "add", "queue": self.name, "err": str(e)[:200]}
            ) from e
        return AddResult(job_id=job.id, created=True)

    def fetch(self, timeout_sec: float) -> Job | None:
        job_id = self.client.blmove(
            self._k("wait"), self._k("active"), timeout_sec, src="RIGHT", dest="LEFT"
        )
        if not job_id:
            return None
        # аренда: пока ключ жив, задачу не считают зависшей
        self.client.set(self._lock_key(job_id), "1", px=self._lock_ms)
        h = self.client.hgetall(self._job_key(job_id))
        if not h:
            # хэш уже вычищен (retention), задача потеряна
            pipe = self.client.pipeline(transaction=True)
            pipe.lrem(self._k("active"), 1, job_id)
            pipe.delete(self._lock_key(job_id))
            pipe.execute()
            log.warning(
                "job_vanished_on_fetch", extra={"payload": {"queue": self.name, "job_id": job_id}}
            )
            return None
        job = Job.from_hash(self.name, job_id, h)
        job.status = JobStatus.active
        job.processed_at_ms = utc_ms()
        self.client.hset(
            self._job_key(job_id),
            mapping={"status": job.status.value, "processedAt": str(job.processed_at_ms)},
        )
        return job

    def complete(self, job: Job, return_value: dict[str, Any] | None) -> None:
        job.status = JobStatus.completed
        job.return_value = return_value
        job.finished_at_ms = utc_ms()
        pipe = self.client.pipeline(transaction=True)
        pipe.lrem(self._k("active"), 1, job.id)
        pipe.delete(self._lock_key(job.id))
        pipe.hset(self._job_key(job.id), mapping=job.to_hash(include_data=False))
        pipe.lpush(self._k("completed"), job.id)
        pipe.execute()
        self._trim(self._k("completed"), job.keep_completed)

    def fail(self, job: Job, reason: str) -> FailOutcome:
        pipe = self.client.pipeline(transaction=True)
        pipe.lrem(self._k("active"), 1, job.id)
        pipe.delete(self._lock_key(job.id))
        return self._record_failure(pipe, job, reason)

    def _record_failure(self, pipe: Any, job: Job, reason: str) -> FailOutcome:
        job.attempts_made += 1
        job.failed_reason = reason

        if has_attempts_left(job.attempts_made, job.max_attempts):
            delay = backoff_delay_ms(job.attempts_made, job.backoff_ms, job.backoff_max_ms)
            job.status = JobStatus.delayed
            pipe.hset(self._job_key(job.id), mapping=job.to_hash(include_data=False))
            pipe.zadd(self._k("delayed"), {job.id: utc_ms() + delay})
            pipe.execute()
            return FailOutcome(final=False, attempts_made=job.attempts_made, delay_ms=delay)

        job.status = JobStatus.failed
        job.finished_at_ms = utc_ms()
        pipe.hset(self._job_key(job.id), mapping=job.to_hash(include_data=False))
        pipe.lpush(self._k("failed"), job.id)
        pipe.execute()
        self._trim(self._k("failed"), job.keep_failed)
        return FailOutcome(final=True, attempts_made=job.attempts_made)

    def recover_stalled(self) -> list[Job]:
        """
        Вернуть в оборот задачи, зависшие в active без живой аренды
        (воркер упал или потерял Redis посреди попытки).

        Две фазы, не чаще раза в половину аренды: id из active помечаются
        в rq:<queue>:stalled, и на следующей проверке помеченные id без
        lock-ключа считаются зависшими. Зависание засчитывается как
        неудачная попытка (ретрай или окончательный провал).
        Возвращает окончательно упавшие задачи.
        """
        now = utc_ms()
        if now < self._next_stalled_check_ms:
            return []
        self._next_stalled_check_ms = now + self._lock_ms // 2

        stalled_key = self._k("stalled")
        marked = self.client.smembers(stalled_key)
        self.client.delete(stalled_key)

        finals: list[Job] = []
        for job_id in marked:
            if self.client.exists(self._lock_key(job_id)):
                continue
            # LREM выигрывает ровно один воркер
            if not self.client.lrem(self._k("active"), 1, job_id):
                continue
            h = self.client.hgetall(self._job_key(job_id))
            if not h:
                continue
            job = Job.from_hash(self.name, job_id, h)
            out = self._record_failure(
                self.client.pipeline(transaction=True), job, "stalled: job lease expired"
            )
            log.warning(
                "job_stalled_recovered",
                extra={
                    "payload": {
                        "queue": self.name,
                        "job_id": job_id,
                        "attempts_made": out.attempts_made,
                        "final": out.final,
                    }
                },
            )
            if out.final:
                finals.append(job)

        active = self.client.lrange(self._k("active"), 0, -1)
        if active:
            self.client.sadd(stalled_key, *active)
        return finals

    def promote_due(self) -> int:
        due = self.client.zrangebyscore(self._k("delayed"), "-inf", utc_ms())
        promoted = 0
        for job_id in due:
            # ZREM выигрывает ровно один воркер
            if not self.client.zrem(self._k("delayed"), job_id):
                continue
            pipe = self.client.pipeline(transaction=True)
            pipe.hset(self._job_key(job_id), "status", JobStatus.waiting.value)
            pipe.lpush(self._k("wait"), job_id)
            pipe.execute()
            promoted += 1
        return promoted

    def get_job(self, job_id: str) -> Job | None:
        h = self.client.hgetall(self._job_key(job_id))
        if not h:
            return None
        return Job.from_hash(self.name, job_id, h)

    def counts(self) -> dict[str, int]:
        pipe = self.client.pipeline(transaction=False)
        pipe.llen(self._k("wait"))
        pipe.llen(self._k("active"))
        pipe.zcard(self._k("delayed"))
        pipe.llen(self._k("completed"))
        pipe.llen(self._k("failed"))
        wait, active, delayed, completed, failed = pipe.execute()
        return {
            JobStatus.waiting.value: int(wait),
            JobStatus.active.value: int(active),
            JobStatus.delayed.value: int(delayed),
            JobStatus.completed.value: int(completed),
            JobStatus.failed.value: int(failed),
        }

    def _trim(self, list_key: str, keep: int) -> None:
        pipe = self.client.pipeline(transaction=True)
        pipe.lrange(list_key, keep, -1)
        if keep > 0:
            pipe.ltrim(list_key, 0, keep - 1)
        else:
            pipe.delete(list_key)
        stale = pipe.execute()[0]
        if stale:
            self.client.delete(*[self._job_key(job_id) for job_id in stale])


# =============================================================================
# INLINE (в памяти процесса)
# =============================================================================
class InlineJobQueue:
    def __init__(self, name: str, clock: Callable[[], int] = utc_ms) -> None:
        self.name = name
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._wait: deque[str] = deque()
        self._active: set[str] = set()
        self._delayed: dict[str, int] = {}
        self._completed: deque[str] = deque()
        self._failed: deque[str] = deque()
        self._cond = threading.Condition()

    @staticmethod
    def _snapshot(job: Job) -> Job:
        return replace(
            job, data=copy.deepcopy(job.data), return_value=copy.deepcopy(job.return_value)
        )

    def add(self, name: str, data: dict[str, Any], opts: JobOptions) -> AddResult:
        job = _new_job(self.name, name, copy.deepcopy(data), opts)
        with self._cond:
            if job.id in self._jobs:
                return AddResult(job_id=job.id, created=False)
            job.created_at_ms = self._clock()
            self._jobs[job.id] = job
            self._wait.append(job.id)
            self._cond.notify()
        return AddResult(job_id=job.id, created=True)

    def fetch(self, timeout_sec: float) -> Job | None:
        deadline = time.monotonic() + max(0.0, float(timeout_sec))
        with self._cond:
            while not self._wait:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)
            job_id = self._wait.popleft()
            job = self._jobs.get(job_id)
            if job is None:
                return None
            self._active.add(job_id)
            job.status = JobStatus.active
            job.processed_at_ms = self._clock()
            return self._snapshot(job)

    def complete(self, job: Job, return_value: dict[str, Any] | None) -> None:
        with self._cond:
            stored = self._jobs.get(job.id)
            self._active.discard(job.id)
            if stored is None:
                return
            stored.status = JobStatus.completed
            stored.return_value = copy.deepcopy(return_value)
            stored.finished_at_ms = self._clock()
            self._completed.appendleft(job.id)
            self._trim(self._completed, stored.keep_completed)

    def fail(self, job: Job, reason: str) -> FailOutcome:
        with self._cond:
            stored = self._jobs.get(job.id, job)
            self._active.discard(job.id)
            stored.attempts_made += 1
            stored.failed_reason = reason
            job.attempts_made = stored.attempts_made
            job.failed_reason = reason

            if has_attempts_left(stored.attempts_made, stored.max_attempts):
                delay = backoff_delay_ms(
                    stored.attempts_made, stored.backoff_ms, stored.backoff_max_ms
                )
                stored.status = JobStatus.delayed
                self._delayed[job.id] = self._clock() + delay
                return FailOutcome(final=False, attempts_made=stored.attempts_made, delay_ms=delay)

            stored.status = JobStatus.failed
            stored.finished_at_ms = self._clock()
            self._failed.appendleft(job.id)
            self._trim(self._failed, stored.keep_failed)
            return FailOutcome(final=True, attempts_made=stored.attempts_made)

    def promote_due(self) -> int:
        with self._cond:
            now = self._clock()
            due = [job_id for job_id, at in self._delayed.items() if at <= now]
            for job_id in due:
                self._delayed.pop(job_id, None)
                stored = self._jobs.get(job_id)
                if stored is None:
                    continue
                stored.status = JobStatus.waiting
                self._wait.append(job_id)
            if due:
                self._cond.notify_all()
            return len(due)

    def recover_stalled(self) -> list[Job]:
        # active живёт в памяти того же процесса: пережить воркера задача не может
        return []

    def get_job(self, job_id: str) -> Job | None:
        with self._cond:
            job = self._jobs.get(job_id)
            return self._snapshot(job) if job is not None else None

    def counts(self) -> dict[str, int]:
        with self._cond:
            return {
                JobStatus.waiting.value: len(self._wait),
                JobStatus.active.value: len(self._active),
                JobStatus.delayed.value: len(self._delayed),
                JobStatus.completed.value: len(self._completed),
                JobStatus.failed.value: len(self._failed),
            }

    def _trim(self, ids: deque[str], keep: int) -> None:
        while len(ids) > max(0, keep):
            self._jobs.pop(ids.pop(), None)


# =============================================================================
# ФАБРИКА
# =============================================================================
_queues: dict[str, JobQueue] = {}
_queues_lock = threading.Lock()


def get_queue(name: str) -> JobQueue:
    """
    Одна очередь на имя в процессе; бэкенд выбирается по QUEUE_MODE.
    """
    with _queues_lock:
        q = _queues.get(name)
        if q is None:
            if (get_settings().queue_mode or "").strip().lower() == "inline":
                q = InlineJobQueue(name)
            else:
                q = RedisJobQueue(name)
            _queues[name] = q
        return q


def reset_queues() -> None:
    with _queues_lock:
        _queues.clear()
