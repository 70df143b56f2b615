"""
hr_services.approval_coordinator -- the engine's public entry point.

Responsibility:
    Opens requests, moves them through their workflow, edits draft
    payloads and posts advance repayments.  Thin coordinator: the status
    machine decides, the store persists, the lease manager serializes and
    the dispatcher runs side effects.

Architecture position:
    Services layer.  May import from hr_kernel/, hr_modules/, hr_config/.

Invariants enforced:
    - Every mutation of an instance happens under its lease.
    - Submissions and transitions whose checks read the subject's other
      instances (salary-advance caps and monthly limits) also hold the
      subject's lease, taken before the instance lease.
    - Every check runs before any write; a refused transition leaves
      state, version and history untouched.
    - Of two racing transitions on the same instance exactly one commits;
      the other gets AlreadyResolvedError carrying the winner's instance.
    - Side effects are handed to the dispatcher after the lease is
      released, so a slow handler never blocks the instance.

Failure modes:
    - IllegalTransitionError / ReasonRequiredError: refused by the
      status machine (or by the submission/edit gate).
    - PayloadValidationError: payload fails its domain schema.
    - AlreadyResolvedError: the instance moved on under another actor.
    - LeaseUnavailableError / OptimisticLockError: contention.
    - PayloadLockedError: edit outside an editable state.
    - RepaymentError: invalid repayment posting.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterator, Mapping
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from hr_config.schema import EngineConfig
from hr_kernel.db.engine import session_scope
from hr_kernel.domain.clock import Clock, SystemClock
from hr_kernel.domain.instance import TransitionRecord, WorkflowInstance
from hr_kernel.domain.state_machine import attempt_transition
from hr_kernel.domain.workflow import Actor, TransitionCheck, WorkflowDomain
from hr_kernel.exceptions import (
    AlreadyResolvedError,
    ConcurrencyError,
    IllegalTransitionError,
    PayloadLockedError,
    PayloadValidationError,
    ReasonRequiredError,
    RepaymentError,
)
from hr_kernel.logging_config import LogContext, get_logger
from hr_kernel.selectors.instance_selector import InstanceSelector
from hr_kernel.services.instance_store import InstanceStore
from hr_kernel.utils.hashing import hash_payload
from hr_modules.registry import DomainModule, build_modules
from hr_modules.salary_advance.facts import remaining_advance_balance
from hr_modules.salary_advance.models import SalaryAdvanceState
from hr_modules.salary_advance.service import RepaymentLedgerService
from hr_services.collaborators import (
    DatabaseRepaymentLedger,
    InMemoryArtifactGenerator,
    InMemoryNotificationService,
    RoleResolver,
    StaticRoleProvider,
)
from hr_services.lease_manager import LeaseManager, build_lease_manager, subject_lease_key
from hr_services.side_effect_dispatcher import (
    SideEffectDispatcher,
    build_default_dispatcher,
)

logger = get_logger("services.approval_coordinator")

# Trace message and outcome codes for structured logging and traceability
TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_ALREADY_RESOLVED = "already_resolved"
OUTCOME_CONCURRENCY_CONFLICT = "concurrency_conflict"

MARK_REPAID_ACTION = "mark_repaid"


def _emit_workflow_trace(
    domain: str,
    action: str,
    instance_id: UUID,
    from_state: str,
    outcome: str,
    reason: str,
    duration_ms: float,
    ts: datetime,
    to_state: str | None = None,
    version: int | None = None,
) -> None:
    """Emit a structured workflow transition record for traceability."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "ts": ts.isoformat(),
        "workflow": domain,
        "action": action,
        "instance_id": str(instance_id),
        "from_state": from_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if to_state is not None:
        record["to_state"] = to_state
    if version is not None:
        record["version"] = version
    record.update(LogContext.get_all())
    logger.info("workflow_transition", extra=record)


class ApprovalCoordinator:
    """
    Coordinates submissions, transitions, edits and repayments.

    Contract:
        Accepts a session factory and owns its transactions (one
        ``session_scope`` per step).  Actors may be passed as resolved
        ``Actor`` values or as bare ids, which are resolved through the
        RoleResolver.  Returns frozen ``WorkflowInstance`` snapshots.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        lease_manager: LeaseManager | None = None,
        dispatcher: SideEffectDispatcher | None = None,
        role_resolver: RoleResolver | None = None,
        modules: Mapping[WorkflowDomain, DomainModule] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig()
        self._modules = dict(modules or build_modules(self._config.advance_policy))
        self._leases = lease_manager or build_lease_manager(
            self._config.lease, session_factory, self._clock,
        )
        self._dispatcher = dispatcher or build_default_dispatcher(
            session_factory,
            InMemoryArtifactGenerator(),
            InMemoryNotificationService(),
            DatabaseRepaymentLedger(session_factory, self._clock),
            retry_policy=self._config.retry_policy,
            clock=self._clock,
        )
        self._roles = role_resolver or StaticRoleProvider()

    @property
    def dispatcher(self) -> SideEffectDispatcher:
        return self._dispatcher

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_actor(self, actor: Actor | UUID) -> Actor:
        if isinstance(actor, Actor):
            return actor
        return self._roles.resolve(actor)

    def _module(self, domain: WorkflowDomain | str) -> DomainModule:
        return self._modules[WorkflowDomain(domain)]

    @contextmanager
    def _subject_lease(self, module: DomainModule, action: str, subject_id: UUID) -> Iterator[None]:
        """Hold the subject's lease when ``action`` reads its other instances."""
        if not module.serializes_subject(action):
            yield
            return
        with self._leases.lease(subject_lease_key(module.domain.value, subject_id)):
            yield

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_instance(self, instance_id: UUID) -> WorkflowInstance:
        """
        Raises:
            InstanceNotFoundError: If no instance has this id.
        """
        with session_scope(self._session_factory) as session:
            return InstanceStore(session, self._clock).load(instance_id)

    def list_instances(
        self,
        domain: WorkflowDomain | str,
        status: str | None = None,
        subject_id: UUID | None = None,
    ) -> list[WorkflowInstance]:
        with session_scope(self._session_factory) as session:
            return InstanceSelector(session).list_instances(
                WorkflowDomain(domain), status=status, subject_id=subject_id,
            )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_request(
        self,
        domain: WorkflowDomain | str,
        subject_id: UUID,
        payload: Mapping[str, Any],
        actor: Actor | UUID,
    ) -> WorkflowInstance:
        """
        Open a new instance in its domain's initial state.

        Raises:
            IllegalTransitionError: ``check == "role_not_permitted"`` when
                the actor may not open a request for this subject;
                ``check == "guard_failed"`` when the domain's submission
                limits refuse it.
            PayloadValidationError: Payload fails the domain schema, sets a
                field reserved for review, or an amendment references an
                invalid contract.
        """
        actor = self._resolve_actor(actor)
        module = self._module(domain)
        definition = module.definition

        with LogContext.bind(actor_id=str(actor.actor_id), domain=definition.domain.value):
            if not definition.permits_submission(actor, subject_id):
                logger.warning(
                    "workflow_submission_refused",
                    extra={"subject_id": str(subject_id), "role": actor.role.value},
                )
                raise IllegalTransitionError(
                    check=TransitionCheck.ROLE_NOT_PERMITTED.value,
                    domain=definition.domain.value,
                    action="submit",
                    current_state="new",
                    detail=f"role '{actor.role.value}' may not submit for another employee",
                )

            review_only = sorted(f for f in payload if f in module.field_gates)
            if review_only:
                raise PayloadValidationError(
                    definition.domain.value,
                    [
                        {"field": f, "code": "review_only", "message": f"{f} is set during review"}
                        for f in review_only
                    ],
                )
            normalized = definition.validate_payload(payload)

            with self._subject_lease(module, "submit", subject_id):
                with session_scope(self._session_factory) as session:
                    violations = module.submission_violations(
                        session, subject_id, normalized, self._clock.now(),
                    )
                    if violations:
                        logger.warning(
                            "workflow_submission_refused",
                            extra={"subject_id": str(subject_id), "violations": violations},
                        )
                        raise IllegalTransitionError(
                            check=TransitionCheck.GUARD_FAILED.value,
                            domain=definition.domain.value,
                            action="submit",
                            current_state="new",
                            detail="; ".join(violations),
                        )

                    parent_id = None
                    if module.resolve_parent is not None:
                        parent_id = module.resolve_parent(session, subject_id, normalized)
                    return InstanceStore(session, self._clock).create(
                        definition.domain,
                        subject_id=subject_id,
                        requested_by=actor.actor_id,
                        payload=normalized,
                        initial_state=definition.initial_state,
                        parent_id=parent_id,
                    )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        instance_id: UUID,
        action: str,
        actor: Actor | UUID,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> WorkflowInstance:
        """
        Apply ``action`` to an instance on behalf of ``actor``.

        ``expected_version`` (optional) is the version the caller last
        saw; if the instance moved past it the call is already resolved.

        Returns:
            The instance as committed, with side-effect outcomes as far as
            they are known when the call returns.

        Raises:
            InstanceNotFoundError, IllegalTransitionError,
            ReasonRequiredError, AlreadyResolvedError, ConcurrencyError.
        """
        actor = self._resolve_actor(actor)
        t0 = time.monotonic()

        with LogContext.bind(instance_id=str(instance_id), actor_id=str(actor.actor_id)):
            observed = self.get_instance(instance_id)
            module = self._module(observed.domain)
            domain = observed.domain.value

            with LogContext.bind(domain=domain):
                try:
                    with self._subject_lease(module, action, observed.subject_id), \
                            self._leases.lease(instance_id):
                        committed = self._transition_with_retry(
                            module, observed, action, actor, reason, expected_version,
                        )
                except (IllegalTransitionError, ReasonRequiredError) as exc:
                    check = getattr(exc, "check", TransitionCheck.REASON_REQUIRED.value)
                    self._trace(domain, action, instance_id, observed.state, check, str(exc), t0)
                    raise
                except AlreadyResolvedError as exc:
                    self._trace(
                        domain, action, instance_id, observed.state,
                        OUTCOME_ALREADY_RESOLVED, str(exc), t0,
                        to_state=exc.current_state, version=exc.current_version,
                    )
                    raise
                except ConcurrencyError as exc:
                    self._trace(
                        domain, action, instance_id, observed.state,
                        OUTCOME_CONCURRENCY_CONFLICT, str(exc), t0,
                    )
                    raise

                record = committed.history[-1]
                self._trace(
                    domain, action, instance_id, record.from_state,
                    OUTCOME_SUCCESS, "transition committed", t0,
                    to_state=record.to_state, version=committed.version,
                )

                self._dispatcher.dispatch(
                    outcome.effect_id for outcome in record.resulting_side_effects
                )
        return self.get_instance(instance_id)

    def _trace(
        self,
        domain: str,
        action: str,
        instance_id: UUID,
        from_state: str,
        outcome: str,
        reason: str,
        t0: float,
        to_state: str | None = None,
        version: int | None = None,
    ) -> None:
        _emit_workflow_trace(
            domain=domain,
            action=action,
            instance_id=instance_id,
            from_state=from_state,
            outcome=outcome,
            reason=reason,
            duration_ms=(time.monotonic() - t0) * 1000,
            ts=self._clock.now(),
            to_state=to_state,
            version=version,
        )

    def _transition_with_retry(
        self,
        module: DomainModule,
        observed: WorkflowInstance,
        action: str,
        actor: Actor,
        reason: str | None,
        expected_version: int | None,
    ) -> WorkflowInstance:
        """Validate and commit under the lease; one retry on a lost commit."""
        try:
            return self._transition_once(module, observed, action, actor, reason, expected_version)
        except ConcurrencyError as exc:
            logger.warning(
                "workflow_commit_retry",
                extra={"action": action, "error_code": exc.code},
            )
        return self._transition_once(module, observed, action, actor, reason, expected_version)

    def _transition_once(
        self,
        module: DomainModule,
        observed: WorkflowInstance,
        action: str,
        actor: Actor,
        reason: str | None,
        expected_version: int | None,
    ) -> WorkflowInstance:
        with session_scope(self._session_factory) as session:
            store = InstanceStore(session, self._clock)
            current = store.load(observed.id)

            moved = current.state != observed.state
            stale = expected_version is not None and current.version != expected_version
            if moved or stale:
                raise AlreadyResolvedError(
                    str(current.id), current.state, current.version, instance=current,
                )

            facts = module.facts(session, current, action)
            result = attempt_transition(
                module.definition, current, action, actor, reason=reason, facts=facts,
            )
            result.raise_for_failure()

            record = TransitionRecord(
                sequence=current.version + 1,
                from_state=current.state,
                to_state=result.new_state,
                action=action,
                actor_id=actor.actor_id,
                actor_role=actor.role,
                timestamp=self._clock.now(),
                reason=reason.strip() if reason else None,
                payload_hash=hash_payload(current.payload),
            )
            return store.commit(
                current.id,
                expected_version=current.version,
                new_state=result.new_state,
                record=record,
                side_effects=result.side_effects,
            )

    # ------------------------------------------------------------------
    # Payload edits
    # ------------------------------------------------------------------

    def update_payload(
        self,
        instance_id: UUID,
        changes: Mapping[str, Any],
        actor: Actor | UUID,
        expected_revision: int | None = None,
    ) -> WorkflowInstance:
        """
        Merge ``changes`` into an editable payload.

        A ``None`` value removes the key.  The merged payload is validated
        against the domain schema before it is stored.  Fields with their
        own gate (a salary advance's ``approved_amount``) are checked
        against that gate; every other field against the definition's.

        Raises:
            PayloadLockedError: The instance is not in an editable state.
            IllegalTransitionError: The actor fails an edit gate.
            PayloadValidationError: A frozen field is changed, or the
                merged payload is invalid.
            OptimisticLockError: ``expected_revision`` is stale.
        """
        actor = self._resolve_actor(actor)

        with LogContext.bind(instance_id=str(instance_id), actor_id=str(actor.actor_id)):
            with self._leases.lease(instance_id):
                with session_scope(self._session_factory) as session:
                    store = InstanceStore(session, self._clock)
                    current = store.load(instance_id)
                    module = self._module(current.domain)
                    definition = module.definition

                    if current.state not in definition.editable_states:
                        raise PayloadLockedError(str(instance_id), current.state)

                    ungated = [f for f in changes if f not in module.field_gates]
                    checks = [(definition.edit_gate, None)] if ungated or not changes else []
                    checks += [
                        (module.field_gates[f], f) for f in sorted(changes) if f in module.field_gates
                    ]
                    for gate, field_name in checks:
                        if not gate.permits(current, actor):
                            scope = f" for {field_name}" if field_name else ""
                            raise IllegalTransitionError(
                                check=TransitionCheck.ROLE_NOT_PERMITTED.value,
                                domain=definition.domain.value,
                                action="update_payload",
                                current_state=current.state,
                                detail=f"role '{actor.role.value}' not in {gate.describe()}{scope}",
                            )

                    frozen = sorted(f for f in changes if f in module.frozen_fields)
                    if frozen:
                        raise PayloadValidationError(
                            definition.domain.value,
                            [
                                {"field": f, "code": "frozen", "message": f"{f} cannot change after submission"}
                                for f in frozen
                            ],
                        )

                    merged = dict(current.payload)
                    for key, value in changes.items():
                        if value is None:
                            merged.pop(key, None)
                        else:
                            merged[key] = value

                    return store.update_payload(
                        instance_id,
                        definition.validate_payload(merged),
                        definition.editable_states,
                        expected_revision=expected_revision,
                    )

    # ------------------------------------------------------------------
    # Repayments
    # ------------------------------------------------------------------

    def record_repayment(
        self,
        instance_id: UUID,
        installment_number: int,
        amount: Decimal | int | str,
    ) -> WorkflowInstance:
        """
        Post a payroll deduction against an active salary advance.

        When the remaining balance reaches zero the advance is moved to
        ``repaid`` by the system actor.  If that move loses a lease or
        commit race the posting still stands, the advance stays ``active``
        and ``settle_repaid_advances`` completes it later.

        Raises:
            RepaymentError: Not an active advance, or an invalid posting.
        """
        if isinstance(amount, float):
            raise RepaymentError(str(instance_id), "amount must not be a float")
        amount = Decimal(str(amount))

        with LogContext.bind(instance_id=str(instance_id)):
            with self._leases.lease(instance_id):
                with session_scope(self._session_factory) as session:
                    current = InstanceStore(session, self._clock).load(instance_id)
                    if current.domain != WorkflowDomain.SALARY_ADVANCE:
                        raise RepaymentError(str(instance_id), "not a salary advance")
                    if current.state != SalaryAdvanceState.ACTIVE.value:
                        raise RepaymentError(
                            str(instance_id), f"advance is '{current.state}', not active",
                        )
                    ledger = RepaymentLedgerService(session, self._clock)
                    ledger.record_payment(instance_id, installment_number, amount)
                    remaining = remaining_advance_balance(ledger, current)

            if remaining > 0:
                return self.get_instance(instance_id)

            logger.info("salary_advance_settled", extra={"installment_number": installment_number})
            try:
                return self._mark_repaid(instance_id)
            except ConcurrencyError as exc:
                logger.warning(
                    "salary_advance_settlement_deferred",
                    extra={"error_code": exc.code},
                )
                return self.get_instance(instance_id)

    def settle_repaid_advances(self) -> list[WorkflowInstance]:
        """
        Move every active advance with nothing left to pay to ``repaid``.

        Picks up advances whose final posting committed but whose
        ``mark_repaid`` did not.  Returns the advances moved by this call.
        Safe to run repeatedly, e.g. next to ``run_due_retries``.

        Raises:
            ConcurrencyError: An advance's lease or commit was contended;
                the remaining advances are left for the next run.
        """
        with session_scope(self._session_factory) as session:
            ledger = RepaymentLedgerService(session, self._clock)
            settled = [
                advance.id
                for advance in InstanceSelector(session).list_instances(
                    WorkflowDomain.SALARY_ADVANCE, status=SalaryAdvanceState.ACTIVE.value,
                )
                if remaining_advance_balance(ledger, advance) == 0
            ]

        repaid = []
        for instance_id in settled:
            with LogContext.bind(instance_id=str(instance_id)):
                instance = self._mark_repaid(instance_id)
            if instance.state == SalaryAdvanceState.REPAID.value:
                repaid.append(instance)
        logger.info(
            "settled_advances_swept",
            extra={"found": len(settled), "repaid": len(repaid)},
        )
        return repaid

    def _mark_repaid(self, instance_id: UUID) -> WorkflowInstance:
        try:
            return self.transition(instance_id, MARK_REPAID_ACTION, Actor.system())
        except AlreadyResolvedError as exc:
            return exc.instance


__all__ = [
    "ApprovalCoordinator",
    "OUTCOME_ALREADY_RESOLVED",
    "OUTCOME_CONCURRENCY_CONFLICT",
    "OUTCOME_SUCCESS",
]
