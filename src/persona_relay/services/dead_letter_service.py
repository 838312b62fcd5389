"""
Запись окончательно упавших intake-задач в DLQ.

Назначение:
- подписчик события job.failed (публикуется воркером ровно один раз,
  когда попытки исчерпаны)
- в запись попадает ИСХОДНЫЙ payload задачи (не промежуточное состояние),
  причина, число попыток и время фиксации

Best-effort: если задачу уже вычистила retention-политика, потеря логируется
и запись пропускается; ошибка записи логируется и не ретраится.
"""

from __future__ import annotations

from typing import Any

from persona_relay.common.events import EVT_JOB_FAILED, EventBus
from persona_relay.common.logging import get_project_logger
from persona_relay.common.metrics import DEAD_LETTERS_TOTAL
from persona_relay.common.time import utc_now_iso
from persona_relay.contracts.queue_events import DeadLetterRecord
from persona_relay.queue.dead_letter import DeadLetterStore
from persona_relay.queue.jobs import JobQueue

log = get_project_logger()


class DeadLetterRecorder:
    def __init__(self, queue: JobQueue, store: DeadLetterStore) -> None:
        self.queue = queue
        self.store = store

    def attach(self, bus: EventBus):
        """
        Подписаться на job.failed. Возвращает функцию отписки.
        """
        return bus.on(EVT_JOB_FAILED, self.on_job_failed)

    def on_job_failed(self, event: dict[str, Any]) -> None:
        if event.get("queue") != self.queue.name:
            return
        self.record(
            job_id=str(event.get("jobId") or ""),
            failed_reason=str(event.get("failedReason") or ""),
        )

    def record(self, *, job_id: str, failed_reason: str) -> DeadLetterRecord | None:
        try:
            job = self.queue.get_job(job_id) if job_id else None
        except Exception as e:
            DEAD_LETTERS_TOTAL.labels(result="error").inc()
            log.error(
                "dead_letter_lookup_failed",
                extra={
                    "payload": {"queue": self.queue.name, "job_id": job_id, "err": str(e)[:200]}
                },
            )
            return None

        if job is None:
            DEAD_LETTERS_TOTAL.labels(result="vanished").inc()
            log.warning(
                "dead_letter_job_vanished",
                extra={"payload": {"queue": self.queue.name, "job_id": job_id}},
            )
            return None

        entry = DeadLetterRecord(
            original_payload=job.data,
            failure_reason=failed_reason or job.failed_reason or "",
            attempts_made=job.attempts_made,
            recorded_at=utc_now_iso(),
            job_id=job.id,
            queue=self.queue.name,
        )
        try:
            self.store.record(entry)
        except Exception as e:
            DEAD_LETTERS_TOTAL.labels(result="error").inc()
            log.error(
                "dead_letter_write_failed",
                extra={
                    "payload": {"queue": self.queue.name, "job_id": job_id, "err": str(e)[:200]}
                },
            )
            return None

        DEAD_LETTERS_TOTAL.labels(result="recorded").inc()
        log.error(
            "job_dead_lettered",
            extra={
                "payload": {
                    "queue": self.queue.name,
                    "job_id": job.id,
                    "attempts_made": job.attempts_made,
                    "reason": entry.failure_reason[:200],
                }
            },
        )
        return entry
