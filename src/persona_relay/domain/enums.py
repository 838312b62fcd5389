"""
Доменные перечисления (enum).

Используются во всей системе:
- состояния обработки intake-задачи в стадии enhance
- причины пропуска (успешное завершение без отправки)
- статусы задач в очереди
"""

from __future__ import annotations

import enum


class EnhanceState(str, enum.Enum):
    """
    Состояние одной intake-задачи внутри стадии enhance.
    """

    received = "received"
    validated = "validated"
    cooldown_checked = "cooldown_checked"
    parsed = "parsed"
    deduped = "deduped"
    emitted = "emitted"

    # терминальные ранние выходы
    rejected = "rejected"
    skipped = "skipped"


class SkipReason(str, enum.Enum):
    """
    Причина пропуска. Пропуск это успех задачи: без ретраев и без DLQ.
    """

    author_cooldown = "author-cooldown"
    no_trigger = "no-trigger"
    burst_duplicate = "burst-duplicate"


class JobStatus(str, enum.Enum):
    """
    Статус задачи в очереди.
    """

    waiting = "waiting"
    active = "active"
    delayed = "delayed"
    completed = "completed"
    failed = "failed"
