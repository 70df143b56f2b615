"""
Flush-time guards for the records that must not change once written.

===============================================================================
PROTECTED RECORDS
===============================================================================

Record              | Guard                                 | Raised on violation
--------------------|---------------------------------------|-----------------------------
TransitionRecord    | no UPDATE, no DELETE                  | ImmutabilityViolationError
WorkflowInstance    | no DELETE (cancellation is a state)   | ImmutabilityViolationError
                    | no payload change in a locked state   | PayloadLockedError
SideEffect (outbox) | identity columns fixed;               | ImmutabilityViolationError
                    | a succeeded row is final              |

The history of an instance is the audit trail of who moved it and why,
and a signed contract must keep the terms that were signed.  Services
never write these changes, and the listeners below make the ORM refuse
them as well: ``before_update`` / ``before_delete`` run inside
``session.flush()``, raise before any SQL is emitted, and the caller's
``session_scope`` rolls the transaction back.

Which states lock a payload is domain knowledge, so domain modules declare
it through ``register_payload_lock``.

The versioned UPDATE in ``InstanceStore.commit`` is a Core statement and
bypasses these listeners.  It writes state, version and updated_at only.

===============================================================================
LIFECYCLE
===============================================================================

``build_engine`` registers the listeners; registering twice is a no-op.
Tests that need to write a forbidden change on purpose can wrap it in
``unregister_immutability_listeners()`` / ``register_immutability_listeners()``.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from hr_kernel.exceptions import ImmutabilityViolationError, PayloadLockedError
from hr_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# domain value -> states in which the payload may no longer change
_locked_payload_states: dict[str, frozenset[str]] = {}

_SIDE_EFFECT_IDENTITY_FIELDS = (
    "instance_id",
    "transition_id",
    "sequence",
    "kind",
    "category",
    "idempotency_key",
)


def register_payload_lock(domain: str, states) -> None:
    """Declare that ``domain`` payloads are frozen in ``states``."""
    _locked_payload_states[domain] = frozenset(states)


def locked_payload_states(domain: str) -> frozenset[str]:
    return _locked_payload_states.get(domain, frozenset())


def _log_blocked(entity_type: str, entity_id, operation: str, **extra) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )


def _check_transition_record_immutability(mapper, connection, target):
    """Transition records are append-only: no UPDATE."""
    _log_blocked("TransitionRecord", target.id, "UPDATE")
    raise ImmutabilityViolationError(
        entity_type="TransitionRecord",
        entity_id=str(target.id),
        reason="Transition records are immutable -- cannot modify",
    )


def _check_transition_record_delete(mapper, connection, target):
    """Transition records are append-only: no DELETE."""
    _log_blocked("TransitionRecord", target.id, "DELETE")
    raise ImmutabilityViolationError(
        entity_type="TransitionRecord",
        entity_id=str(target.id),
        reason="Transition records are immutable -- cannot delete",
    )


def _check_instance_payload_lock(mapper, connection, target):
    """
    Prevent payload edits once an instance reached a payload-locked state.

    Uses the state the row had BEFORE this flush, so the transition that
    enters the locked state (draft -> signed) is itself allowed.
    """
    locked = locked_payload_states(target.domain)
    if not locked:
        return

    payload_history = get_history(target, "payload")
    if not payload_history.has_changes():
        return

    state_history = get_history(target, "state")
    previous_state = state_history.deleted[0] if state_history.deleted else target.state

    if previous_state in locked:
        _log_blocked(
            "WorkflowInstance", target.id, "UPDATE",
            field="payload", state=previous_state,
        )
        raise PayloadLockedError(str(target.id), previous_state)


def _check_instance_delete(mapper, connection, target):
    """Workflow instances are never deleted; cancellation is a state."""
    _log_blocked("WorkflowInstance", target.id, "DELETE")
    raise ImmutabilityViolationError(
        entity_type="WorkflowInstance",
        entity_id=str(target.id),
        reason="Workflow instances are never deleted -- cancel instead",
    )


def _check_side_effect_immutability(mapper, connection, target):
    """
    Outbox rows may only change their execution bookkeeping.

    Identity columns never change, and a succeeded row is final.
    """
    insp = inspect(target)
    for field in _SIDE_EFFECT_IDENTITY_FIELDS:
        if insp.attrs[field].history.has_changes():
            _log_blocked("SideEffect", target.id, "UPDATE", field=field)
            raise ImmutabilityViolationError(
                entity_type="SideEffect",
                entity_id=str(target.id),
                reason=f"Cannot modify identity field '{field}' on outbox row",
            )

    status_history = get_history(target, "status")
    if status_history.deleted and status_history.deleted[0] == "succeeded":
        _log_blocked("SideEffect", target.id, "UPDATE", field="status")
        raise ImmutabilityViolationError(
            entity_type="SideEffect",
            entity_id=str(target.id),
            reason="Succeeded side effects are final -- cannot modify",
        )


_LISTENERS = (
    ("TransitionRecordModel", "before_update", _check_transition_record_immutability),
    ("TransitionRecordModel", "before_delete", _check_transition_record_delete),
    ("WorkflowInstanceModel", "before_update", _check_instance_payload_lock),
    ("WorkflowInstanceModel", "before_delete", _check_instance_delete),
    ("SideEffectModel", "before_update", _check_side_effect_immutability),
)


def _models() -> dict:
    from hr_kernel.models.instance import TransitionRecordModel, WorkflowInstanceModel
    from hr_kernel.models.side_effect import SideEffectModel

    return {
        "TransitionRecordModel": TransitionRecordModel,
        "WorkflowInstanceModel": WorkflowInstanceModel,
        "SideEffectModel": SideEffectModel,
    }


def register_immutability_listeners() -> None:
    """Attach every guard that is not attached yet."""
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """Detach the guards.  Tests that write forbidden changes on purpose only."""
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = models[model_name]
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
