"""
Replication lifecycle state machine.

The transition table is fixed; staying in the same state is always allowed
so that repeated reconciles of a converged resource are no-ops. Accepted
transitions are kept in a bounded in-memory history for diagnostics.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import structlog

from replication_core.exceptions import InvalidTransitionError

logger = structlog.get_logger(__name__)

DEFAULT_HISTORY_SIZE = 100


class ReplicationState(str, Enum):
    EMPTY = ""
    REPLICA = "replica"
    SOURCE = "source"
    PROMOTING = "promoting"
    DEMOTING = "demoting"
    SYNCING = "syncing"
    FAILED = "failed"


@dataclass(frozen=True)
class TransitionRule:
    from_state: ReplicationState
    to_state: ReplicationState
    description: str
    requires_op: str


@dataclass(frozen=True)
class HistoryEntry:
    from_state: ReplicationState
    to_state: ReplicationState
    reason: str
    request_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


_S = ReplicationState

TRANSITION_RULES: tuple[TransitionRule, ...] = (
    TransitionRule(_S.EMPTY, _S.REPLICA, "Initial creation as replica", "create"),
    TransitionRule(_S.EMPTY, _S.SOURCE, "Initial creation as source", "create"),
    TransitionRule(_S.REPLICA, _S.PROMOTING, "Start promotion (failover)", "promote"),
    TransitionRule(_S.REPLICA, _S.SYNCING, "Start resync", "resync"),
    TransitionRule(_S.REPLICA, _S.REPLICA, "Idempotent - remain replica", "update"),
    TransitionRule(_S.PROMOTING, _S.SOURCE, "Complete promotion", "update"),
    TransitionRule(_S.PROMOTING, _S.FAILED, "Promotion failed", "update"),
    TransitionRule(_S.SOURCE, _S.DEMOTING, "Start demotion (failback)", "demote"),
    TransitionRule(_S.SOURCE, _S.SOURCE, "Idempotent - remain source", "update"),
    TransitionRule(_S.DEMOTING, _S.REPLICA, "Complete demotion", "update"),
    TransitionRule(_S.DEMOTING, _S.FAILED, "Demotion failed", "update"),
    TransitionRule(_S.SYNCING, _S.REPLICA, "Sync complete", "update"),
    TransitionRule(_S.SYNCING, _S.FAILED, "Sync failed", "update"),
    TransitionRule(_S.SYNCING, _S.SYNCING, "Idempotent - continue syncing", "update"),
    TransitionRule(_S.FAILED, _S.SYNCING, "Retry from failure", "resync"),
    TransitionRule(_S.FAILED, _S.REPLICA, "Recover to replica", "update"),
)


def _label(state: ReplicationState | str) -> str:
    return state.value if isinstance(state, ReplicationState) else str(state)


def _coerce(state: ReplicationState | str) -> ReplicationState:
    return state if isinstance(state, ReplicationState) else ReplicationState(state)


class StateMachine:
    def __init__(
        self,
        rules: tuple[TransitionRule, ...] = TRANSITION_RULES,
        max_history: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        if max_history <= 0:
            raise ValueError("max_history must be > 0")
        self._rules = rules
        self._targets: dict[ReplicationState, list[ReplicationState]] = {}
        for rule in rules:
            self._targets.setdefault(rule.from_state, []).append(rule.to_state)
        self._history: deque[HistoryEntry] = deque(maxlen=max_history)
        self._lock = threading.Lock()

    def is_valid_transition(
        self, from_state: ReplicationState | str, to_state: ReplicationState | str
    ) -> bool:
        try:
            src, dst = _coerce(from_state), _coerce(to_state)
        except ValueError:
            return False
        if src is dst:
            return True
        return dst in self._targets.get(src, ())

    def validate_transition(
        self, from_state: ReplicationState | str, to_state: ReplicationState | str
    ) -> None:
        if not self.is_valid_transition(from_state, to_state):
            raise InvalidTransitionError(_label(from_state), _label(to_state))

    def get_valid_transitions(self, from_state: ReplicationState | str) -> list[ReplicationState]:
        try:
            src = _coerce(from_state)
        except ValueError:
            return []
        return list(self._targets.get(src, ()))

    def get_transition_rule(
        self, from_state: ReplicationState | str, to_state: ReplicationState | str
    ) -> TransitionRule | None:
        try:
            src, dst = _coerce(from_state), _coerce(to_state)
        except ValueError:
            return None
        for rule in self._rules:
            if rule.from_state is src and rule.to_state is dst:
                return rule
        return None

    # =========================================================================
    # History
    # =========================================================================

    def record_transition(
        self,
        from_state: ReplicationState | str,
        to_state: ReplicationState | str,
        reason: str = "",
        request_id: str = "",
    ) -> HistoryEntry:
        entry = HistoryEntry(_coerce(from_state), _coerce(to_state), reason, request_id)
        with self._lock:
            self._history.append(entry)
        logger.debug(
            "state_transition_recorded",
            from_state=entry.from_state.value,
            to_state=entry.to_state.value,
            reason=reason,
            request_id=request_id,
        )
        return entry

    def get_history(self) -> list[HistoryEntry]:
        with self._lock:
            return list(self._history)

    def get_history_for_state(self, state: ReplicationState | str) -> list[HistoryEntry]:
        try:
            target = _coerce(state)
        except ValueError:
            return []
        with self._lock:
            return [e for e in self._history if target in (e.from_state, e.to_state)]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()


__all__ = [
    "DEFAULT_HISTORY_SIZE",
    "HistoryEntry",
    "ReplicationState",
    "StateMachine",
    "TRANSITION_RULES",
    "TransitionRule",
]
