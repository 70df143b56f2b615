"""
Status machine core (``hr_kernel.domain.state_machine``).

Responsibility
--------------
Decides whether an action may move an instance to a new state.  Checks
run in a fixed order -- terminal state, action defined, role gate,
reason, guard -- and the first failure is reported with its
``TransitionCheck`` tag.  On success the candidate state and the side
effects declared on the transition are returned.  Nothing is persisted.

Architecture position
---------------------
**Kernel domain layer** -- pure function.  ZERO I/O, no clock, no
randomness: identical inputs always produce identical results.

Failure modes
-------------
* Never raises for a refused transition; callers inspect
  ``TransitionResult`` or call ``raise_for_failure()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from hr_kernel.domain.instance import WorkflowInstance
from hr_kernel.domain.workflow import (
    Actor,
    SideEffectSpec,
    Transition,
    TransitionCheck,
    WorkflowDefinition,
)
from hr_kernel.exceptions import IllegalTransitionError, ReasonRequiredError


@dataclass(frozen=True)
class TransitionResult:
    """Result of evaluating a transition attempt."""

    accepted: bool
    domain: str
    action: str
    from_state: str
    new_state: str | None = None
    transition: Transition | None = None
    side_effects: tuple[SideEffectSpec, ...] = ()
    failed_check: TransitionCheck | None = None
    reason: str = ""

    def raise_for_failure(self) -> None:
        """Raise the typed error matching ``failed_check``; no-op when accepted."""
        if self.accepted:
            return
        if self.failed_check == TransitionCheck.REASON_REQUIRED:
            raise ReasonRequiredError(self.domain, self.action)
        raise IllegalTransitionError(
            check=self.failed_check.value if self.failed_check else "unknown",
            domain=self.domain,
            action=self.action,
            current_state=self.from_state,
            detail=self.reason,
        )


def _refuse(
    definition: WorkflowDefinition,
    instance: WorkflowInstance,
    action: str,
    check: TransitionCheck,
    reason: str,
    transition: Transition | None = None,
) -> TransitionResult:
    return TransitionResult(
        accepted=False,
        domain=definition.domain.value,
        action=action,
        from_state=instance.state,
        transition=transition,
        failed_check=check,
        reason=reason,
    )


def attempt_transition(
    definition: WorkflowDefinition,
    instance: WorkflowInstance,
    action: str,
    actor: Actor,
    reason: str | None = None,
    facts: Mapping[str, Any] | None = None,
) -> TransitionResult:
    """Validate ``action`` by ``actor`` against ``instance``.

    Preconditions: ``instance.domain == definition.domain``.
    Postconditions: ``instance`` is untouched; the result is accepted
    only if every check passed.
    """
    if instance.domain != definition.domain:
        raise ValueError(
            f"Instance {instance.id} belongs to {instance.domain.value}, "
            f"not {definition.domain.value}"
        )

    state = instance.state

    # (a) terminal states accept nothing, regardless of role
    if definition.is_terminal(state):
        return _refuse(
            definition, instance, action, TransitionCheck.TERMINAL_STATE,
            f"'{state}' is terminal",
        )

    # (b) action must be defined for the current state
    transition = definition.find_transition(state, action)
    if transition is None:
        allowed = ", ".join(definition.actions_from(state)) or "none"
        return _refuse(
            definition, instance, action, TransitionCheck.ACTION_NOT_DEFINED,
            f"no '{action}' from '{state}' (allowed: {allowed})",
        )

    # (c) role gate
    if not transition.gate.permits(instance, actor):
        return _refuse(
            definition, instance, action, TransitionCheck.ROLE_NOT_PERMITTED,
            f"role '{actor.role.value}' not in {transition.gate.describe()}",
            transition,
        )

    if transition.requires_reason and not (reason and reason.strip()):
        return _refuse(
            definition, instance, action, TransitionCheck.REASON_REQUIRED,
            "a reason is required",
            transition,
        )

    # (d) domain guard
    guard = transition.guard
    if guard is not None:
        try:
            passed = bool(guard.predicate(instance, actor, facts or {}))
        except Exception as exc:  # noqa: BLE001
            return _refuse(
                definition, instance, action, TransitionCheck.GUARD_FAILED,
                f"guard {guard.name} raised {type(exc).__name__}: {exc}",
                transition,
            )
        if not passed:
            return _refuse(
                definition, instance, action, TransitionCheck.GUARD_FAILED,
                f"guard not satisfied: {guard.name}",
                transition,
            )

    return TransitionResult(
        accepted=True,
        domain=definition.domain.value,
        action=action,
        from_state=state,
        new_state=transition.to_state,
        transition=transition,
        side_effects=transition.side_effects,
    )
