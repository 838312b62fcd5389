"""
Стадия enhance: intake-задача -> (гейты) -> задача в dispatch.

Порядок строго последовательный:
1) валидация payload (IntakeJob)
2) cooldown автора
3) разбор триггера + нормализация текста
4) сборка и валидация OutputJob, burst-дедуп
5) постановка в dispatch (job_id = messageId)

Пропуск (cooldown / нет триггера / дубль) это успешный результат задачи,
он не ретраится и не попадает в DLQ. Ошибка валидации это настоящая ошибка:
уходит в retry-политику воркера.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pydantic

from persona_relay.common.errors import ValidationError
from persona_relay.common.events import EVT_MESSAGE_PROXIED, EventBus
from persona_relay.common.logging import get_project_logger
from persona_relay.common.metrics import ENHANCE_SKIPS_TOTAL
from persona_relay.contracts.queue_events import EnhanceResult, IntakeJob, OutputJob, Persona
from persona_relay.domain.enums import EnhanceState, SkipReason
from persona_relay.domain.state_machine import EnhanceFlow
from persona_relay.processing.triggers import parse_trigger
from persona_relay.queue.claims import ClaimStore, get_claim_store
from persona_relay.queue.dispatcher import emit_dispatch
from persona_relay.queue.jobs import AddResult, Job

from .gates import claim_author_cooldown, claim_burst_window

log = get_project_logger()

Emitter = Callable[[OutputJob], AddResult]


def validate_intake(payload: Any) -> IntakeJob:
    try:
        return IntakeJob.model_validate(payload)
    except pydantic.ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in e.errors()
        ]
        raise ValidationError("invalid intake payload", details={"errors": errors}) from e


class EnhanceStage:
    def __init__(
        self,
        *,
        store: ClaimStore | None = None,
        emitter: Emitter | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._emitter = emitter or emit_dispatch
        self._bus = bus

    @property
    def store(self) -> ClaimStore:
        if self._store is None:
            self._store = get_claim_store()
        return self._store

    def __call__(self, job: Job) -> dict[str, Any]:
        """
        Processor для Worker: принимает задачу очереди, возвращает return value.
        """
        return self.process(job.data, job_id=job.id).to_payload()

    def process(self, payload: Any, *, job_id: str | None = None) -> EnhanceResult:
        flow = EnhanceFlow()

        try:
            incoming = validate_intake(payload)
        except ValidationError:
            flow.reject()
            log.warning(
                "enhance_job_rejected",
                extra={"payload": {"job_id": job_id, "state": flow.state.value}},
            )
            raise
        flow.advance(EnhanceState.validated)

        # cooldown
        granted = claim_author_cooldown(incoming, self.store)
        flow.advance(EnhanceState.cooldown_checked)
        if not granted:
            return self._skip(flow, SkipReason.author_cooldown, incoming, job_id)

        # parse & normalize
        trigger = parse_trigger(incoming.raw)
        flow.advance(EnhanceState.parsed)
        if trigger is None:
            return self._skip(flow, SkipReason.no_trigger, incoming, job_id)
        log.debug(
            "enhance_text_normalized",
            extra={
                "payload": {
                    "job_id": job_id,
                    "persona": trigger.persona,
                    "applied": list(trigger.applied),
                }
            },
        )

        out = OutputJob(
            guild_id=incoming.guild_id,
            channel_id=incoming.channel_id,
            message_id=incoming.message_id,
            persona=Persona(name=trigger.persona),
            text=trigger.text,
        )

        # burst dedupe
        granted = claim_burst_window(out, self.store)
        flow.advance(EnhanceState.deduped)
        if not granted:
            return self._skip(flow, SkipReason.burst_duplicate, incoming, job_id)

        res = self._emitter(out)
        flow.advance(EnhanceState.emitted)

        if self._bus is not None:
            self._bus.emit(
                EVT_MESSAGE_PROXIED,
                {
                    "guildId": out.guild_id,
                    "channelId": out.channel_id,
                    "authorId": incoming.author_id,
                    "persona": out.persona.name,
                    "text": out.text,
                },
            )

        return EnhanceResult(
            status="emitted",
            persona=out.persona.name,
            length=len(out.text),
            dispatch_job_id=res.job_id,
        )

    def _skip(
        self,
        flow: EnhanceFlow,
        reason: SkipReason,
        incoming: IntakeJob,
        job_id: str | None,
    ) -> EnhanceResult:
        flow.skip(reason)
        ENHANCE_SKIPS_TOTAL.labels(reason=reason.value).inc()
        log.info(
            "enhance_job_skipped",
            extra={
                "payload": {
                    "job_id": job_id,
                    "reason": reason.value,
                    "channel_id": incoming.channel_id,
                    "message_id": incoming.message_id,
                }
            },
        )
        return EnhanceResult(status="skipped", skipped=reason)
