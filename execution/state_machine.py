# PATH: execution/state_machine.py
"""
Position and bundle lifecycle state machines.

POSITION CONTRACT:
==================
  PENDING   → submitted (directly or inside a bundle), awaiting outcome
  EXECUTED  → entry confirmed; monitored for exit every tick
  FAILED    → entry failed (terminal)
  CLOSED    → unwind confirmed (terminal)

  PENDING  → EXECUTED | FAILED
  EXECUTED → CLOSED

BUNDLE CONTRACT:
================
  PENDING   → accumulating transactions, not yet submitted
  SUBMITTED → on the wire, confirmation being polled
  CONFIRMED → landed without error (terminal)
  FAILED    → submission retries exhausted or on-chain error (terminal)
  TIMED_OUT → not confirmed within the polling window (terminal)

  PENDING   → SUBMITTED | FAILED
  SUBMITTED → CONFIRMED | FAILED | TIMED_OUT

A bundle is submitted at most once: there is no edge back to PENDING.
Every enum member has an entry in its table; a missing entry is a bug
caught by the transition-table tests.
==================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from core.constants import BundleStatus, PositionStatus
from core.exceptions import InvalidTransitionError
from core.models import Bundle, Position
from core.time import now_iso


POSITION_TRANSITIONS: Dict[PositionStatus, FrozenSet[PositionStatus]] = {
    PositionStatus.PENDING: frozenset({PositionStatus.EXECUTED, PositionStatus.FAILED}),
    PositionStatus.EXECUTED: frozenset({PositionStatus.CLOSED}),
    PositionStatus.FAILED: frozenset(),  # Terminal state
    PositionStatus.CLOSED: frozenset(),  # Terminal state
}

BUNDLE_TRANSITIONS: Dict[BundleStatus, FrozenSet[BundleStatus]] = {
    BundleStatus.PENDING: frozenset({BundleStatus.SUBMITTED, BundleStatus.FAILED}),
    BundleStatus.SUBMITTED: frozenset(
        {BundleStatus.CONFIRMED, BundleStatus.FAILED, BundleStatus.TIMED_OUT}
    ),
    BundleStatus.CONFIRMED: frozenset(),  # Terminal state
    BundleStatus.FAILED: frozenset(),  # Terminal state
    BundleStatus.TIMED_OUT: frozenset(),  # Terminal state
}


@dataclass
class StateTransition:
    """Record of a state transition."""
    subject_id: str
    from_state: Enum
    to_state: Enum
    timestamp: str = field(default_factory=now_iso)
    reason: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "timestamp": self.timestamp,
            "reason": self.reason,
            "metadata": self.metadata,
        }


def can_transition(table: Mapping[Enum, FrozenSet[Enum]], current: Enum, target: Enum) -> bool:
    """Check if current -> target is an edge in table."""
    return target in table[current]


def is_terminal(table: Mapping[Enum, FrozenSet[Enum]], state: Enum) -> bool:
    return not table[state]


def _check(table: Mapping[Enum, FrozenSet[Enum]], subject_id: str, current: Enum, target: Enum) -> None:
    if not can_transition(table, current, target):
        raise InvalidTransitionError(
            f"Cannot transition from {current.value} to {target.value}",
            details={
                "subject_id": subject_id,
                "from_state": current.value,
                "to_state": target.value,
                "valid": sorted(s.value for s in table[current]),
            },
        )


def advance_position(
    position: Position,
    target: PositionStatus,
    reason: str = "",
    metadata: Optional[Dict[str, Any]] = None,
) -> StateTransition:
    """
    Move a position to target.

    Raises:
        InvalidTransitionError: If the edge is not in POSITION_TRANSITIONS
    """
    _check(POSITION_TRANSITIONS, position.id, position.status, target)
    transition = StateTransition(
        subject_id=position.id,
        from_state=position.status,
        to_state=target,
        reason=reason,
        metadata=metadata or {},
    )
    position.status = target
    return transition


def advance_bundle(
    bundle: Bundle,
    target: BundleStatus,
    reason: str = "",
    metadata: Optional[Dict[str, Any]] = None,
) -> StateTransition:
    """
    Move a bundle to target.

    Raises:
        InvalidTransitionError: If the edge is not in BUNDLE_TRANSITIONS
    """
    _check(BUNDLE_TRANSITIONS, bundle.id, bundle.status, target)
    transition = StateTransition(
        subject_id=bundle.id,
        from_state=bundle.status,
        to_state=target,
        reason=reason,
        metadata=metadata or {},
    )
    bundle.status = target
    return transition
