"""
Пул воркеров очереди.

Алгоритм одного потока:
- recover_stalled(): задачи с истёкшей арендой в active (упавший воркер,
  обрыв Redis посреди попытки) засчитываются как неудачная попытка
- promote_due(): созревшие ретраи из delayed обратно в wait
- fetch() с блокировкой на WORKER_BLOCK_TIMEOUT_SEC (без busy-poll)
- processor(job) -> return value
- успех: complete() + событие job.completed
- исключение: fail() -> либо ретрай с backoff, либо окончательный провал
  и событие job.failed (ровно один раз на задачу)

Ошибки одной задачи не влияют на другие; попытка не прерывается извне,
stop() дожидается завершения текущих попыток.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from persona_relay.common.errors import AppError
from persona_relay.common.events import EVT_JOB_COMPLETED, EVT_JOB_FAILED, EventBus
from persona_relay.common.logging import get_queue_logger
from persona_relay.common.metrics import QUEUE_TASKS_TOTAL, track_stage_latency

from .jobs import Job, JobQueue

log = get_queue_logger()

Processor = Callable[[Job], dict[str, Any] | None]

_REASON_MAX_LEN = 500


def failure_reason(e: BaseException) -> str:
    if isinstance(e, AppError):
        reason = f"{e.code}: {e.message}"
        errors = (e.details or {}).get("errors")
        if errors:
            reason = f"{reason} {errors}"
    else:
        reason = f"{type(e).__name__}: {e}"
    return reason[:_REASON_MAX_LEN]


class Worker:
    def __init__(
        self,
        queue: JobQueue,
        processor: Processor,
        *,
        bus: EventBus,
        concurrency: int = 1,
        block_timeout_sec: float = 1.0,
        service_name: str = "worker",
    ) -> None:
        self.queue = queue
        self._processor = processor
        self._bus = bus
        self._concurrency = max(1, int(concurrency))
        self._block_timeout_sec = max(0.1, float(block_timeout_sec))
        self._service = service_name
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    # -------------------------------------------------------------------------
    # Одна итерация (используется потоками и тестами)
    # -------------------------------------------------------------------------
    def process_next(self, timeout_sec: float | None = None) -> Job | None:
        for stalled in self.queue.recover_stalled():
            self._publish_final_failure(stalled, stalled.failed_reason or "", stalled.attempts_made)
        self.queue.promote_due()
        job = self.queue.fetch(self._block_timeout_sec if timeout_sec is None else timeout_sec)
        if job is None:
            return None
        self._run_job(job)
        return job

    def _run_job(self, job: Job) -> None:
        try:
            with track_stage_latency(self._service, self.queue.name):
                result = self._processor(job)
        except Exception as e:
            self._handle_failure(job, e)
            return

        self.queue.complete(job, result)
        QUEUE_TASKS_TOTAL.labels(
            service=self._service, queue=self.queue.name, result="success"
        ).inc()
        log.info(
            "job_completed",
            extra={"payload": {"queue": self.queue.name, "job_id": job.id, "result": result}},
        )
        self._bus.emit(
            EVT_JOB_COMPLETED,
            {"queue": self.queue.name, "jobId": job.id, "returnValue": result},
        )

    def _handle_failure(self, job: Job, e: Exception) -> None:
        reason = failure_reason(e)
        outcome = self.queue.fail(job, reason)

        if not outcome.final:
            QUEUE_TASKS_TOTAL.labels(
                service=self._service, queue=self.queue.name, result="retry"
            ).inc()
            log.warning(
                "job_retry_scheduled",
                extra={
                    "payload": {
                        "queue": self.queue.name,
                        "job_id": job.id,
                        "attempts_made": outcome.attempts_made,
                        "max_attempts": job.max_attempts,
                        "delay_ms": outcome.delay_ms,
                        "err": reason[:200],
                    }
                },
            )
            return

        self._publish_final_failure(job, reason, outcome.attempts_made)

    def _publish_final_failure(self, job: Job, reason: str, attempts_made: int) -> None:
        QUEUE_TASKS_TOTAL.labels(
            service=self._service, queue=self.queue.name, result="failed"
        ).inc()
        log.error(
            "job_failed",
            extra={
                "payload": {
                    "queue": self.queue.name,
                    "job_id": job.id,
                    "attempts_made": attempts_made,
                    "err": reason[:200],
                }
            },
        )
        self._bus.emit(
            EVT_JOB_FAILED,
            {
                "queue": self.queue.name,
                "jobId": job.id,
                "failedReason": reason,
                "attemptsMade": attempts_made,
            },
        )

    # -------------------------------------------------------------------------
    # Потоки
    # -------------------------------------------------------------------------
    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.process_next()
            except Exception as e:
                # инфраструктурный сбой вне задачи (fetch/complete/fail)
                log.error(
                    "worker_loop_error",
                    extra={"payload": {"queue": self.queue.name, "err": str(e)[:200]}},
                )
                self._stop.wait(2)

    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        for idx in range(self._concurrency):
            t = threading.Thread(
                target=self._loop, name=f"{self.queue.name}-worker-{idx}", daemon=True
            )
            t.start()
            self._threads.append(t)
        log.info(
            "worker_started",
            extra={"payload": {"queue": self.queue.name, "concurrency": self._concurrency}},
        )

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout)
        self._threads.clear()
        log.info("worker_stopped", extra={"payload": {"queue": self.queue.name}})

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)
