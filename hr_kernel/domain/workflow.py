"""
Canonical workflow types (``hr_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for workflow state machines.  Every business domain
(document requests, salary advances, contracts) declares its states,
role-gated transitions, guards and side effects with these types, so the
status machine is defined once.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``WorkflowDefinition.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* At most one transition per (from_state, action) pair.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping
from uuid import UUID

if TYPE_CHECKING:
    from hr_kernel.domain.instance import WorkflowInstance


class WorkflowDomain(str, Enum):
    """The business domains handled by the engine."""

    DOCUMENT_REQUEST = "document_request"
    SALARY_ADVANCE = "salary_advance"
    CONTRACT_LIFECYCLE = "contract_lifecycle"


class ActorRole(str, Enum):
    """Roles returned by identity resolution, plus the internal system actor."""

    EMPLOYEE = "employee"
    MANAGER = "manager"
    HR_MANAGER = "hr_manager"
    TENANT_ADMIN = "tenant_admin"
    SUPER_ADMIN = "super_admin"
    SYSTEM = "system"


# Fixed identity used for system-triggered transitions (e.g. mark_repaid)
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")


@dataclass(frozen=True)
class Actor:
    """An authenticated actor as resolved by the identity collaborator."""

    actor_id: UUID
    role: ActorRole

    @classmethod
    def system(cls) -> Actor:
        return cls(actor_id=SYSTEM_ACTOR_ID, role=ActorRole.SYSTEM)


class TransitionCheck(str, Enum):
    """The precondition a refused transition failed, in evaluation order."""

    TERMINAL_STATE = "terminal_state"
    ACTION_NOT_DEFINED = "action_not_defined"
    ROLE_NOT_PERMITTED = "role_not_permitted"
    REASON_REQUIRED = "reason_required"
    GUARD_FAILED = "guard_failed"


class SideEffectCategory(str, Enum):
    """Which downstream collaborator executes a side effect."""

    ARTIFACT = "artifact"
    LEDGER = "ledger"
    NOTIFICATION = "notification"


@dataclass(frozen=True)
class SideEffectSpec:
    """A side effect declared on a transition.

    ``kind`` is unique within a transition and becomes part of the
    idempotency key.  ``template`` selects the artifact template (or the
    notification event kind); ``recipient`` is ``"requester"`` or
    ``"subject"``.
    """

    kind: str
    category: SideEffectCategory
    template: str | None = None
    recipient: str = "requester"


@dataclass(frozen=True)
class RoleGate:
    """Declarative role gate for one transition.

    Contract: an actor passes if its role is in ``roles``, or
    ``allow_requester`` is set and it submitted the instance, or
    ``allow_subject`` is set and it is the instance subject (e.g. an
    employee countersigning their own contract).
    """

    roles: frozenset[ActorRole] = frozenset()
    allow_requester: bool = False
    allow_subject: bool = False

    def permits(self, instance: WorkflowInstance, actor: Actor) -> bool:
        if actor.role in self.roles:
            return True
        if self.allow_requester and actor.actor_id == instance.requested_by:
            return True
        if self.allow_subject and actor.actor_id == instance.subject_id:
            return True
        return False

    def describe(self) -> str:
        parts = sorted(r.value for r in self.roles)
        if self.allow_requester:
            parts.append("requester")
        if self.allow_subject:
            parts.append("subject")
        return "|".join(parts) or "nobody"


GuardPredicate = Callable[["WorkflowInstance", Actor, Mapping[str, Any]], bool]


@dataclass(frozen=True)
class Guard:
    """A domain precondition that must hold before a transition fires.

    The predicate receives ``(instance, actor, facts)``; ``facts`` are
    store-derived values computed by the coordinator beforehand, so the
    predicate stays pure.
    """

    name: str
    description: str
    predicate: GuardPredicate = field(compare=False, repr=False)


@dataclass(frozen=True)
class Transition:
    """A legal (from_state, action) -> to_state move."""

    from_state: str
    to_state: str
    action: str
    gate: RoleGate
    guard: Guard | None = None
    requires_reason: bool = False
    side_effects: tuple[SideEffectSpec, ...] = ()


PayloadValidator = Callable[[Mapping[str, Any]], dict[str, Any]]


def _accept_any_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    return dict(payload)


@dataclass(frozen=True)
class WorkflowDefinition:
    """A state machine definition for one business domain.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    ``state_type`` is the domain's closed state enum.  ``editable_states``
    lists the states in which the payload may be edited outside the
    transition machinery (gated by ``edit_gate``); ``validate_payload``
    normalizes a raw payload or raises ``PayloadValidationError``.
    ``submit_roles`` may open an instance for any subject;
    ``allow_self_submit`` also lets any actor open one for themselves.
    """

    domain: WorkflowDomain
    description: str
    state_type: type[Enum]
    initial_state: str
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...]
    editable_states: tuple[str, ...] = ()
    edit_gate: RoleGate = RoleGate()
    submit_roles: frozenset[ActorRole] = frozenset()
    allow_self_submit: bool = False
    validate_payload: PayloadValidator = field(
        default=_accept_any_payload, compare=False, repr=False,
    )

    def __post_init__(self) -> None:
        states = self.states
        if self.initial_state not in states:
            raise ValueError(
                f"{self.domain.value}: initial state '{self.initial_state}' "
                "is not a declared state"
            )
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            for s in (t.from_state, t.to_state):
                if s not in states:
                    raise ValueError(
                        f"{self.domain.value}: transition '{t.action}' "
                        f"references unknown state '{s}'"
                    )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"{self.domain.value}: terminal state '{t.from_state}' "
                    f"has outgoing transition '{t.action}'"
                )
            key = (t.from_state, t.action)
            if key in seen:
                raise ValueError(
                    f"{self.domain.value}: duplicate transition {key}"
                )
            seen.add(key)
        for s in self.terminal_states + self.editable_states:
            if s not in states:
                raise ValueError(f"{self.domain.value}: unknown state '{s}'")

    @property
    def states(self) -> tuple[str, ...]:
        return tuple(member.value for member in self.state_type)

    @property
    def actions(self) -> frozenset[str]:
        return frozenset(t.action for t in self.transitions)

    def parse_state(self, value: str) -> Enum:
        """Return the closed enum member for a stored state string."""
        return self.state_type(value)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states

    def find_transition(self, state: str, action: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == state and t.action == action:
                return t
        return None

    def actions_from(self, state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)

    def permits_submission(self, actor: Actor, subject_id: UUID) -> bool:
        if actor.role in self.submit_roles:
            return True
        return self.allow_self_submit and actor.actor_id == subject_id
