"""
Workflow instance DTOs (``hr_kernel.domain.instance``).

Responsibility
--------------
Frozen snapshots of a workflow instance, its append-only transition
history and the outcomes of the side effects each transition produced.
ORM models convert to these via ``to_dto()``; nothing outside the store
ever holds a mutable instance.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``history`` is ordered by ``sequence`` (1-based, gap-free).
* ``version == len(history)``.
* ``state`` equals the last record's ``to_state`` (or the initial state).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from hr_kernel.domain.workflow import ActorRole, SideEffectCategory, WorkflowDomain


class SideEffectStatus(str, Enum):
    """Lifecycle of one persisted side effect."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    PENDING_RETRY = "pending_retry"
    ABANDONED = "abandoned"


TERMINAL_SIDE_EFFECT_STATUSES: frozenset[SideEffectStatus] = frozenset({
    SideEffectStatus.SUCCEEDED,
    SideEffectStatus.ABANDONED,
})


@dataclass(frozen=True)
class SideEffectOutcome:
    """Outcome of a side effect attached to a transition record.

    ``result_ref`` holds the downstream identifier (generated document id,
    repayment schedule id, notification id) once the effect succeeded.
    """

    effect_id: UUID
    kind: str
    category: SideEffectCategory
    status: SideEffectStatus
    idempotency_key: str
    attempts: int = 0
    result_ref: str | None = None
    last_error: str | None = None
    next_attempt_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == SideEffectStatus.SUCCEEDED


@dataclass(frozen=True)
class TransitionRecord:
    """One accepted transition. Immutable once committed."""

    sequence: int
    from_state: str
    to_state: str
    action: str
    actor_id: UUID
    actor_role: ActorRole
    timestamp: datetime
    reason: str | None = None
    payload_hash: str | None = None
    resulting_side_effects: tuple[SideEffectOutcome, ...] = ()

    def side_effect(self, kind: str) -> SideEffectOutcome | None:
        for outcome in self.resulting_side_effects:
            if outcome.kind == kind:
                return outcome
        return None


@dataclass(frozen=True)
class WorkflowInstance:
    """Immutable snapshot of a workflow instance with its full history."""

    id: UUID
    domain: WorkflowDomain
    subject_id: UUID
    requested_by: UUID
    state: str
    version: int
    created_at: datetime
    updated_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    payload_revision: int = 0
    parent_id: UUID | None = None
    history: tuple[TransitionRecord, ...] = ()

    @property
    def last_transition(self) -> TransitionRecord | None:
        return self.history[-1] if self.history else None

    def derived_state(self, initial_state: str) -> str:
        """State implied by the history alone."""
        last = self.last_transition
        return last.to_state if last is not None else initial_state
