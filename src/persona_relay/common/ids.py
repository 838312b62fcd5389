"""
Генерация идентификаторов.

Назначение:
- job_id для задач очередей
- event_id для логов/трассировки
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime


def new_event_id(prefix: str = "evt") -> str:
    """
    Идентификатор события (лог/очереди/трассировка).
    Формат: <prefix>_<UTCYYYYMMDDHHMMSS>_<rand>
    """
    ts = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
    rnd = secrets.token_hex(6)
    return f"{prefix}_{ts}_{rnd}"


def new_job_id(queue: str) -> str:
    """Идентификатор задачи, назначаемый очередью (если вызывающий не задал свой)."""
    return new_event_id(queue.replace(":", "_"))
