"""
Mission state machine.

  none ──► creating ──► have ──► done
    ▲          │          │        │
    └──────────┴──────────┴────────┘   (reset)

``none`` may also jump straight to ``have`` when a generated mission is
stored already active.
"""

from __future__ import annotations

from models import MissionState


TRANSITIONS: dict[MissionState, frozenset[MissionState]] = {
    MissionState.NO_MISSION: frozenset({MissionState.IN_PROGRESS, MissionState.ACTIVE}),
    MissionState.IN_PROGRESS: frozenset({MissionState.ACTIVE, MissionState.NO_MISSION}),
    MissionState.ACTIVE: frozenset({MissionState.COMPLETED, MissionState.NO_MISSION}),
    MissionState.COMPLETED: frozenset({MissionState.NO_MISSION}),
}


class InvalidTransition(Exception):
    def __init__(self, current: MissionState, target: MissionState):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move mission from '{current.value}' to '{target.value}'")


def can_transition(current: MissionState, target: MissionState) -> bool:
    return current == target or target in TRANSITIONS[current]


def transition(current: MissionState, target: MissionState) -> MissionState:
    """Return ``target`` if the move is allowed, else raise InvalidTransition."""
    if not can_transition(current, target):
        raise InvalidTransition(current, target)
    return target


def is_trackable(state: MissionState) -> bool:
    """Location tracking runs while a mission is being created or is active."""
    return state in (MissionState.IN_PROGRESS, MissionState.ACTIVE)


def can_complete(state: MissionState) -> bool:
    """Only an active mission can be completed; repeats are rejected."""
    return state == MissionState.ACTIVE
