"""
Машина состояний стадии enhance (на одну intake-задачу).

Назначение:
- строгий порядок шагов: validate -> cooldown -> parse -> dedupe -> emit
- явные ранние выходы (rejected / skipped)
- недопустимый переход это ошибка программиста, а не рантайма
"""

from __future__ import annotations

from dataclasses import dataclass, field

from persona_relay.common.errors import InvalidTransitionError

from .enums import EnhanceState, SkipReason

# =============================================================================
# ДОПУСТИМЫЕ ПЕРЕХОДЫ
# =============================================================================
_HAPPY_PATH: tuple[EnhanceState, ...] = (
    EnhanceState.received,
    EnhanceState.validated,
    EnhanceState.cooldown_checked,
    EnhanceState.parsed,
    EnhanceState.deduped,
    EnhanceState.emitted,
)

_EARLY_EXITS: dict[EnhanceState, EnhanceState] = {
    EnhanceState.received: EnhanceState.rejected,
    EnhanceState.cooldown_checked: EnhanceState.skipped,
    EnhanceState.parsed: EnhanceState.skipped,
    EnhanceState.deduped: EnhanceState.skipped,
}

TERMINAL_STATES = frozenset({EnhanceState.emitted, EnhanceState.rejected, EnhanceState.skipped})


def next_state_after(current: EnhanceState) -> EnhanceState | None:
    """
    Следующий шаг по основному пути (None для терминальных).
    """
    if current not in _HAPPY_PATH:
        return None
    idx = _HAPPY_PATH.index(current)
    return _HAPPY_PATH[idx + 1] if idx + 1 < len(_HAPPY_PATH) else None


def can_transition(current: EnhanceState, target: EnhanceState) -> bool:
    if current in TERMINAL_STATES:
        return False
    return next_state_after(current) == target or _EARLY_EXITS.get(current) == target


# =============================================================================
# ТРЕКЕР ОДНОЙ ЗАДАЧИ
# =============================================================================
@dataclass
class EnhanceFlow:
    """
    Состояние обработки одной задачи. Живёт только внутри одного вызова воркера.
    """

    state: EnhanceState = EnhanceState.received
    skip_reason: SkipReason | None = None
    history: list[EnhanceState] = field(default_factory=lambda: [EnhanceState.received])

    def advance(self, target: EnhanceState) -> None:
        if not can_transition(self.state, target):
            raise InvalidTransitionError(
                details={"from": self.state.value, "to": target.value},
            )
        self.state = target
        self.history.append(target)

    def skip(self, reason: SkipReason) -> None:
        self.advance(EnhanceState.skipped)
        self.skip_reason = reason

    def reject(self) -> None:
        self.advance(EnhanceState.rejected)

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES
