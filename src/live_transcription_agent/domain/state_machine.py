"""
Машина состояний контроллера realtime-сессии.

Назначение:
- Централизованное описание допустимых переходов
- Предсказуемое поведение при гонках (pause во время рестарта, disconnect во время старта)

STARTING -> ACTIVE <-> PAUSED -> CLOSING -> CLOSED
"""

from __future__ import annotations

from dataclasses import dataclass

from .enums import ControllerState

# =============================================================================
# ДОПУСТИМЫЕ ПЕРЕХОДЫ
# =============================================================================
_ALLOWED: dict[ControllerState, frozenset[ControllerState]] = {
    ControllerState.starting: frozenset({ControllerState.active, ControllerState.closing}),
    ControllerState.active: frozenset({ControllerState.paused, ControllerState.closing}),
    ControllerState.paused: frozenset({ControllerState.active, ControllerState.closing}),
    ControllerState.closing: frozenset({ControllerState.closed}),
    ControllerState.closed: frozenset(),
}


# =============================================================================
# РЕЗУЛЬТАТ ПЕРЕХОДА
# =============================================================================
@dataclass
class TransitionResult:
    ok: bool
    state: ControllerState
    reason: str | None = None


def can_transition(current: ControllerState, target: ControllerState) -> bool:
    return target in _ALLOWED.get(current, frozenset())


def is_terminal(state: ControllerState) -> bool:
    return state in (ControllerState.closing, ControllerState.closed)


def transition(current: ControllerState, target: ControllerState) -> TransitionResult:
    """
    Правила:
    - недопустимый переход не меняет состояние (ok=False)
    - closed — конечное состояние
    """
    if not can_transition(current, target):
        return TransitionResult(
            ok=False,
            state=current,
            reason=f"{current.value}->{target.value} not allowed",
        )
    return TransitionResult(ok=True, state=target)
