"""
Retry-политика для задач очередей.

Назначение:
- ограниченное число попыток (JOB_ATTEMPTS, по умолчанию 3)
- экспоненциальный backoff: base, base*2, base*4 ... с потолком
- опции задач по умолчанию (попытки, backoff, сколько хранить completed/failed)

Важно:
- политика не различает типы ошибок: ValidationError ретраится так же,
  как сбой Redis (осознанная неэффективность, см. DESIGN.md)
"""

from __future__ import annotations

from dataclasses import dataclass

from persona_relay.common.config import get_settings


@dataclass(frozen=True)
class JobOptions:
    job_id: str | None = None
    attempts: int = 3
    backoff_ms: int = 1000
    backoff_max_ms: int | None = None
    keep_completed: int = 500
    keep_failed: int = 500


def default_job_options(*, job_id: str | None = None) -> JobOptions:
    s = get_settings()
    return JobOptions(
        job_id=job_id,
        attempts=max(1, int(s.job_attempts)),
        backoff_ms=max(0, int(s.retry_backoff_ms)),
        backoff_max_ms=int(s.retry_backoff_max_ms) if s.retry_backoff_max_ms else None,
        keep_completed=max(0, int(s.job_keep_completed)),
        keep_failed=max(0, int(s.job_keep_failed)),
    )


def backoff_delay_ms(attempts_made: int, base_ms: int, max_ms: int | None = None) -> int:
    """
    Задержка перед следующей попыткой после attempts_made неудачных попыток.
    attempts_made=1 -> base, 2 -> base*2, 3 -> base*4 ...
    """
    if base_ms <= 0 or attempts_made <= 0:
        return 0
    delay = base_ms * (2 ** (attempts_made - 1))
    if max_ms is not None and max_ms > 0:
        delay = min(delay, max_ms)
    return int(delay)


def has_attempts_left(attempts_made: int, max_attempts: int) -> bool:
    return attempts_made < max(1, max_attempts)
