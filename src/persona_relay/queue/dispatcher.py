"""
Диспетчер очередей.

Назначение:
- единые имена очередей
- enqueue_enhance(): вход пайплайна (используется продюсером и скриптами)
- emit_dispatch(): выход пайплайна, job_id = messageId (повторная постановка схлопывается)
"""

from __future__ import annotations

from typing import Any

from persona_relay.common.logging import get_project_logger
from persona_relay.common.metrics import DISPATCH_EMITTED_TOTAL
from persona_relay.contracts.queue_events import OutputJob

from .dead_letter import dlq_name
from .jobs import AddResult, get_queue
from .retry import default_job_options

log = get_project_logger()

# =============================================================================
# ИМЕНА ОЧЕРЕДЕЙ
# =============================================================================
Q_ENHANCE = "enhance"
Q_DISPATCH = "dispatch"

# DLQ
Q_ENHANCE_DLQ = dlq_name(Q_ENHANCE)

JOB_NAME_ENHANCE = "enhance"
JOB_NAME_DISPATCH = "dispatch"


def enqueue_enhance_payload(payload: dict[str, Any], *, job_id: str | None = None) -> AddResult:
    """
    Поставить сырой payload в enhance как есть.
    Валидация это работа стадии enhance, а не продюсера.
    """
    res = get_queue(Q_ENHANCE).add(
        JOB_NAME_ENHANCE, dict(payload), default_job_options(job_id=job_id)
    )
    log.info(
        "enqueue_enhance",
        extra={
            "payload": {
                "job_id": res.job_id,
                "created": res.created,
                "message_id": payload.get("messageId"),
            }
        },
    )
    return res


def enqueue_enhance(
    *,
    channel_id: str,
    message_id: str,
    author_id: str,
    raw: str,
    guild_id: str | None = None,
    job_id: str | None = None,
) -> AddResult:
    """
    Поставить intake-задачу (кандидат в триггер) на обработку.
    """
    payload = {
        "guildId": guild_id,
        "channelId": channel_id,
        "messageId": message_id,
        "authorId": author_id,
        "raw": raw,
    }
    return enqueue_enhance_payload(payload, job_id=job_id)


def emit_dispatch(output: OutputJob) -> AddResult:
    """
    Отправить готовый payload в dispatch. Идентичность задачи = messageId.
    """
    res = get_queue(Q_DISPATCH).add(
        JOB_NAME_DISPATCH,
        output.to_payload(),
        default_job_options(job_id=output.message_id),
    )
    if res.created:
        DISPATCH_EMITTED_TOTAL.labels(result="added").inc()
        log.info(
            "dispatch_emitted",
            extra={
                "payload": {
                    "job_id": res.job_id,
                    "channel_id": output.channel_id,
                    "persona": output.persona.name,
                    "len": len(output.text),
                }
            },
        )
    else:
        DISPATCH_EMITTED_TOTAL.labels(result="collapsed").inc()
        log.info("dispatch_duplicate_collapsed", extra={"payload": {"job_id": res.job_id}})
    return res
