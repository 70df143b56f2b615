"""
Typed exceptions raised by the HR workflow kernel.

A refused transition tells the caller which precondition failed: the
exception type is the category, ``code`` is a stable machine-readable
identifier for API responses and logs, and the attributes carry the
details (domain, action, current state, failed check).  Callers branch on
type, never on message text:

    try:
        coordinator.transition(instance_id, "approve", actor)
    except AlreadyResolvedError as e:
        return e.instance                          # someone else decided first
    except IllegalTransitionError as e:
        return error_response(e.code, check=e.check)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from WorkflowKernelError:

    WorkflowKernelError (base)
    |
    +-- ValidationError
    |   +-- PayloadValidationError
    |   +-- ReasonRequiredError
    |
    +-- IllegalTransitionError
    |
    +-- InstanceNotFoundError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- LeaseUnavailableError
    |
    +-- AlreadyResolvedError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |       +-- PayloadLockedError
    |
    +-- SideEffectFailure
    |   +-- SideEffectTimeoutError
    |   +-- HandlerNotRegisteredError
    |
    +-- RepaymentError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Malformed request (caller must fix)
                | PAYLOAD_VALIDATION_ERROR    | Domain payload fails its schema
                | REASON_REQUIRED             | Rejecting transition without reason
----------------|-----------------------------|-----------------------------------------
Transition      | ILLEGAL_TRANSITION          | Terminal / undefined / role / guard
----------------|-----------------------------|-----------------------------------------
Lookup          | INSTANCE_NOT_FOUND          | Instance ID doesn't exist
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Stored version != expected version
                | LEASE_UNAVAILABLE           | Per-instance lease not acquired in time
                | ALREADY_RESOLVED            | Instance moved on under a concurrent actor
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Mutating an append-only record
                | PAYLOAD_LOCKED              | Editing a signed contract
----------------|-----------------------------|-----------------------------------------
Side effects    | SIDE_EFFECT_FAILURE         | Handler failed (recorded, retried)
                | SIDE_EFFECT_TIMEOUT         | Handler exceeded its time budget
                | HANDLER_NOT_REGISTERED      | No handler for an effect category
----------------|-----------------------------|-----------------------------------------
Repayment       | REPAYMENT_ERROR             | Invalid advance repayment posting

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ALREADY RESOLVED IS NOT A FAILURE OF THE SYSTEM:

    except AlreadyResolvedError as e:
        # Another actor got there first -- reconcile the UI
        return e.instance

2. CONCURRENCY ERRORS ARE RETRYABLE BY THE USER:

    except ConcurrencyError:
        return "state changed, please refresh"

3. SIDE EFFECT FAILURES NEVER REACH THE TRANSITION CALLER.  They are
   recorded on the outbox row and retried by the dispatcher.
"""

from __future__ import annotations

from typing import Any


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Validation-related exceptions


class ValidationError(WorkflowKernelError):
    """Malformed request or missing required field; no state change."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class PayloadValidationError(ValidationError):
    """Domain payload does not satisfy its schema."""

    code: str = "PAYLOAD_VALIDATION_ERROR"

    def __init__(self, domain: str, field_errors: list[dict[str, Any]]):
        self.domain = domain
        self.field_errors = field_errors
        fields = ", ".join(e.get("field", "?") for e in field_errors)
        super().__init__(
            f"Invalid {domain} payload: {len(field_errors)} error(s) ({fields})",
            field=field_errors[0].get("field") if field_errors else None,
        )


class ReasonRequiredError(ValidationError):
    """A rejecting transition was attempted without a reason."""

    code: str = "REASON_REQUIRED"

    def __init__(self, domain: str, action: str):
        self.domain = domain
        self.action = action
        super().__init__(
            f"Action '{action}' on {domain} requires a reason",
            field="reason",
        )


# Transition-related exceptions


class IllegalTransitionError(WorkflowKernelError):
    """
    Transition refused by the status machine.

    ``check`` names the failed precondition (terminal_state,
    action_not_defined, role_not_permitted, guard_failed) so the caller
    can produce a precise message.
    """

    code: str = "ILLEGAL_TRANSITION"

    def __init__(
        self,
        check: str,
        domain: str,
        action: str,
        current_state: str,
        detail: str = "",
    ):
        self.check = check
        self.domain = domain
        self.action = action
        self.current_state = current_state
        self.detail = detail
        super().__init__(
            f"Illegal transition '{action}' on {domain} in state "
            f"'{current_state}' ({check})" + (f": {detail}" if detail else "")
        )


class InstanceNotFoundError(WorkflowKernelError):
    """Workflow instance with given ID was not found."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id}")


# Concurrency-related exceptions


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Stored version does not match the version the writer read."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"expected version {expected_version}, entity was modified "
            "by another transaction"
        )


class LeaseUnavailableError(ConcurrencyError):
    """The per-instance lease could not be acquired within the timeout."""

    code: str = "LEASE_UNAVAILABLE"

    def __init__(self, instance_id: str, timeout_seconds: float):
        self.instance_id = instance_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Lease on instance {instance_id} not acquired within "
            f"{timeout_seconds}s"
        )


class AlreadyResolvedError(WorkflowKernelError):
    """
    The instance left the state the caller believed it was in.

    Carries the actual current state (and the full instance) so the
    caller can reconcile instead of retrying blindly.
    """

    code: str = "ALREADY_RESOLVED"

    def __init__(
        self,
        instance_id: str,
        current_state: str,
        current_version: int,
        instance: Any = None,
    ):
        self.instance_id = instance_id
        self.current_state = current_state
        self.current_version = current_version
        self.instance = instance
        super().__init__(
            f"Instance {instance_id} already transitioned "
            f"(now '{current_state}' at version {current_version})"
        )


# Immutability-related exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class PayloadLockedError(ImmutabilityViolationError):
    """The instance payload cannot be edited in its current state."""

    code: str = "PAYLOAD_LOCKED"

    def __init__(self, instance_id: str, state: str):
        self.state = state
        super().__init__(
            entity_type="WorkflowInstance",
            entity_id=instance_id,
            reason=f"payload is locked in state '{state}'",
        )


# Side-effect exceptions


class SideEffectFailure(WorkflowKernelError):
    """
    A side effect failed after its transition committed.

    Non-fatal: recorded on the outbox row and retried with backoff.
    Never raised to the caller of ``transition``.
    """

    code: str = "SIDE_EFFECT_FAILURE"

    def __init__(self, effect_kind: str, idempotency_key: str, reason: str):
        self.effect_kind = effect_kind
        self.idempotency_key = idempotency_key
        self.reason = reason
        super().__init__(
            f"Side effect {effect_kind} ({idempotency_key}) failed: {reason}"
        )


class SideEffectTimeoutError(SideEffectFailure):
    """Side-effect handler did not finish within its time budget."""

    code: str = "SIDE_EFFECT_TIMEOUT"

    def __init__(self, effect_kind: str, idempotency_key: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            effect_kind,
            idempotency_key,
            f"timed out after {timeout_seconds}s",
        )


class HandlerNotRegisteredError(SideEffectFailure):
    """No handler is registered for a side-effect category."""

    code: str = "HANDLER_NOT_REGISTERED"

    def __init__(self, effect_kind: str, idempotency_key: str, category: str):
        self.category = category
        super().__init__(
            effect_kind,
            idempotency_key,
            f"no handler registered for category '{category}'",
        )


# Repayment ledger exceptions


class RepaymentError(WorkflowKernelError):
    """Invalid salary-advance repayment posting."""

    code: str = "REPAYMENT_ERROR"

    def __init__(self, instance_id: str, reason: str):
        self.instance_id = instance_id
        self.reason = reason
        super().__init__(f"Repayment rejected for advance {instance_id}: {reason}")
