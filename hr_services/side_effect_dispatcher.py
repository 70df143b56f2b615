"""
hr_services.side_effect_dispatcher -- executes the side-effect outbox.

Responsibility:
    Runs the side effects a committed transition declared (document
    generation, repayment scheduling, notifications) through handlers
    registered per ``SideEffectCategory``.  Records each outcome on its
    outbox row and retries failures with exponential backoff until the
    attempt limit, after which the row is ``abandoned``.

Architecture position:
    Services layer.  Runs outside the instance lease; never touches an
    instance's state or history, only ``workflow_side_effects`` rows.

Invariants enforced:
    - A row is claimed with a conditional UPDATE before its handler runs,
      so two workers never execute the same row at once.
    - A ``succeeded`` row is never executed again.
    - Handlers always receive the row's idempotency key.

Failure modes:
    - Handler exception, missing handler, or timeout: the row goes to
      ``pending_retry`` (or ``abandoned``).  Nothing is raised to the
      caller of ``transition``.

Timeouts:
    ``future.result(timeout)`` stops waiting for a handler; it cannot stop
    the handler thread.  A timed-out handler may still finish later, which
    is why downstream calls must deduplicate on the idempotency key.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from hr_config.schema import RetryPolicyConfig
from hr_kernel.db.engine import session_scope
from hr_kernel.domain.clock import Clock, SystemClock
from hr_kernel.domain.instance import (
    SideEffectOutcome,
    SideEffectStatus,
    TransitionRecord,
    WorkflowInstance,
)
from hr_kernel.domain.workflow import SideEffectCategory
from hr_kernel.exceptions import (
    HandlerNotRegisteredError,
    SideEffectFailure,
    SideEffectTimeoutError,
)
from hr_kernel.logging_config import LogContext, get_logger
from hr_kernel.models.side_effect import SideEffectModel
from hr_kernel.services.instance_store import InstanceStore
from hr_modules.salary_advance.models import SalaryAdvancePayload
from hr_services.collaborators import (
    ArtifactGenerator,
    NotificationService,
    RepaymentLedger,
)

logger = get_logger("services.side_effect_dispatcher")

_CLAIMABLE = (SideEffectStatus.PENDING.value, SideEffectStatus.PENDING_RETRY.value)


@dataclass(frozen=True)
class SideEffectContext:
    """Everything a handler needs to execute one side effect."""

    instance: WorkflowInstance
    effect: SideEffectOutcome
    record: TransitionRecord
    template: str | None
    recipient: str
    recipient_id: UUID
    idempotency_key: str


SideEffectHandler = Callable[[SideEffectContext], "str | None"]


class SideEffectDispatcher:
    """
    Outbox executor with bounded handler time and exponential backoff.

    ``inline=True`` executes dispatched effects on the calling thread
    (tests, scripts); otherwise they are queued on a background pool and
    ``drain()`` waits for them.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        handlers: Mapping[SideEffectCategory, SideEffectHandler],
        retry_policy: RetryPolicyConfig | None = None,
        clock: Clock | None = None,
        inline: bool = False,
    ):
        self._session_factory = session_factory
        self._handlers = dict(handlers)
        self._policy = retry_policy or RetryPolicyConfig()
        self._clock = clock or SystemClock()
        self._inline = inline
        self._handler_pool = ThreadPoolExecutor(
            max_workers=self._policy.worker_count,
            thread_name_prefix="side-effect-handler",
        )
        self._dispatch_pool = (
            None
            if inline
            else ThreadPoolExecutor(
                max_workers=self._policy.worker_count,
                thread_name_prefix="side-effect-dispatch",
            )
        )
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def max_attempts_for(self, category: SideEffectCategory | str) -> int:
        if SideEffectCategory(category) == SideEffectCategory.NOTIFICATION:
            return self._policy.notification_max_attempts
        return self._policy.max_attempts

    def backoff_delay(self, attempts: int) -> timedelta:
        """Delay before the next attempt after ``attempts`` failures."""
        seconds = self._policy.base_delay_seconds * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(seconds, self._policy.max_delay_seconds))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, effect_ids: Iterable[UUID]) -> None:
        """Hand freshly committed outbox rows over for execution."""
        for effect_id in effect_ids:
            if self._dispatch_pool is None:
                self.execute(effect_id)
                continue
            future = self._dispatch_pool.submit(self._execute_logged, effect_id)
            with self._pending_lock:
                self._pending.add(future)
            future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _execute_logged(self, effect_id: UUID) -> SideEffectOutcome | None:
        try:
            return self.execute(effect_id)
        except Exception:
            logger.exception(
                "side_effect_dispatch_error",
                extra={"effect_id": str(effect_id)},
            )
            raise

    def drain(self, timeout: float | None = None) -> None:
        """Wait until every queued dispatch has finished."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._pending_lock:
                pending = list(self._pending)
            if not pending:
                return
            for future in pending:
                remaining = None if deadline is None else max(deadline - time.monotonic(), 0)
                try:
                    future.result(timeout=remaining)
                except FutureTimeoutError:
                    return
                except Exception:
                    # already logged by _execute_logged
                    pass

    def shutdown(self, wait: bool = True) -> None:
        if self._dispatch_pool is not None:
            self._dispatch_pool.shutdown(wait=wait)
        self._handler_pool.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _claim(self, effect_id: UUID) -> bool:
        """Take a row for execution: bump attempts, hold it for one timeout."""
        now = self._clock.now()
        hold_until = now + timedelta(seconds=self._policy.handler_timeout_seconds)
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(SideEffectModel)
                .where(
                    SideEffectModel.id == effect_id,
                    SideEffectModel.status.in_(_CLAIMABLE),
                    or_(
                        SideEffectModel.next_attempt_at.is_(None),
                        SideEffectModel.next_attempt_at <= now,
                    ),
                )
                .values(
                    attempts=SideEffectModel.attempts + 1,
                    next_attempt_at=hold_until,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def _build_context(self, effect_id: UUID) -> SideEffectContext:
        with session_scope(self._session_factory) as session:
            model = session.get(SideEffectModel, effect_id, populate_existing=True)
            effect = model.to_dto()
            template = model.template
            recipient = model.recipient
            sequence = model.sequence
            instance = InstanceStore(session, self._clock).load(model.instance_id)

        record = instance.history[sequence - 1]
        recipient_id = instance.subject_id if recipient == "subject" else instance.requested_by
        return SideEffectContext(
            instance=instance,
            effect=effect,
            record=record,
            template=template,
            recipient=recipient,
            recipient_id=recipient_id,
            idempotency_key=effect.idempotency_key,
        )

    def _run_handler(self, context: SideEffectContext) -> str | None:
        effect = context.effect
        handler = self._handlers.get(effect.category)
        if handler is None:
            raise HandlerNotRegisteredError(
                effect.kind, effect.idempotency_key, effect.category.value,
            )
        timeout = self._policy.handler_timeout_seconds
        future = self._handler_pool.submit(handler, context)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            raise SideEffectTimeoutError(effect.kind, effect.idempotency_key, timeout) from None

    def execute(self, effect_id: UUID) -> SideEffectOutcome | None:
        """
        Execute one outbox row if it is due.

        Returns the recorded outcome, or None when the row was not
        claimable (already succeeded, abandoned, held by another worker,
        or not yet due).
        """
        if not self._claim(effect_id):
            logger.debug("side_effect_not_claimable", extra={"effect_id": str(effect_id)})
            return None

        context = self._build_context(effect_id)
        with LogContext.bind(
            instance_id=str(context.instance.id),
            domain=context.instance.domain.value,
        ):
            t0 = time.monotonic()
            try:
                result_ref = self._run_handler(context)
            except Exception as exc:  # noqa: BLE001 -- recorded on the outbox row
                failure = exc if isinstance(exc, SideEffectFailure) else SideEffectFailure(
                    context.effect.kind,
                    context.idempotency_key,
                    f"{type(exc).__name__}: {exc}",
                )
                return self._record_failure(effect_id, failure, time.monotonic() - t0)
            return self._record_success(effect_id, result_ref, time.monotonic() - t0)

    def _record_success(
        self, effect_id: UUID, result_ref: str | None, elapsed: float,
    ) -> SideEffectOutcome:
        now = self._clock.now()
        with session_scope(self._session_factory) as session:
            model = session.get(SideEffectModel, effect_id, populate_existing=True)
            model.status = SideEffectStatus.SUCCEEDED.value
            model.result_ref = result_ref
            model.last_error = None
            model.next_attempt_at = None
            model.completed_at = now
            model.updated_at = now
            session.flush()
            outcome = model.to_dto()

        logger.info(
            "side_effect_succeeded",
            extra={
                "effect_id": str(effect_id),
                "kind": outcome.kind,
                "idempotency_key": outcome.idempotency_key,
                "attempts": outcome.attempts,
                "result_ref": result_ref,
                "duration_ms": round(elapsed * 1000, 3),
            },
        )
        return outcome

    def _record_failure(
        self, effect_id: UUID, failure: SideEffectFailure, elapsed: float,
    ) -> SideEffectOutcome:
        now = self._clock.now()
        with session_scope(self._session_factory) as session:
            model = session.get(SideEffectModel, effect_id, populate_existing=True)
            model.last_error = f"{failure.code}: {failure.reason}"
            model.updated_at = now
            if model.attempts >= self.max_attempts_for(model.category):
                model.status = SideEffectStatus.ABANDONED.value
                model.next_attempt_at = None
                model.completed_at = now
            else:
                model.status = SideEffectStatus.PENDING_RETRY.value
                model.next_attempt_at = now + self.backoff_delay(model.attempts)
            session.flush()
            outcome = model.to_dto()

        extra = {
            "effect_id": str(effect_id),
            "kind": outcome.kind,
            "idempotency_key": outcome.idempotency_key,
            "attempts": outcome.attempts,
            "error_code": failure.code,
            "error": failure.reason,
            "duration_ms": round(elapsed * 1000, 3),
        }
        if outcome.status == SideEffectStatus.ABANDONED:
            logger.error("side_effect_abandoned", extra=extra)
        else:
            extra["next_attempt_at"] = outcome.next_attempt_at
            logger.warning("side_effect_failed", extra=extra)
        return outcome

    def run_due_retries(self) -> list[SideEffectOutcome]:
        """
        Execute every row whose next attempt is due.

        Covers ``pending_retry`` rows past ``next_attempt_at`` and
        ``pending`` rows that were never dispatched (or whose worker died
        holding the claim).
        """
        now = self._clock.now()
        with session_scope(self._session_factory) as session:
            due_ids = list(
                session.execute(
                    select(SideEffectModel.id)
                    .where(
                        or_(
                            and_(
                                SideEffectModel.status == SideEffectStatus.PENDING_RETRY.value,
                                SideEffectModel.next_attempt_at <= now,
                            ),
                            and_(
                                SideEffectModel.status == SideEffectStatus.PENDING.value,
                                or_(
                                    SideEffectModel.next_attempt_at.is_(None),
                                    SideEffectModel.next_attempt_at <= now,
                                ),
                            ),
                        )
                    )
                    .order_by(SideEffectModel.created_at, SideEffectModel.sequence)
                ).scalars()
            )

        if due_ids:
            logger.info("side_effect_retry_sweep", extra={"due_count": len(due_ids)})
        outcomes = []
        for effect_id in due_ids:
            outcome = self.execute(effect_id)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes


# ---------------------------------------------------------------------------
# Default handlers
# ---------------------------------------------------------------------------


def artifact_handler(generator: ArtifactGenerator) -> SideEffectHandler:
    """Generate the document named by the effect's template."""

    def handle(context: SideEffectContext) -> str | None:
        payload = dict(context.instance.payload)
        payload["instance_id"] = str(context.instance.id)
        payload["subject_id"] = str(context.instance.subject_id)
        if context.record.payload_hash is not None:
            payload["payload_hash"] = context.record.payload_hash
        return generator.generate(
            context.template or context.effect.kind,
            payload,
            context.idempotency_key,
        )

    return handle


def notification_handler(service: NotificationService) -> SideEffectHandler:
    """Notify the requester or subject of the transition."""

    def handle(context: SideEffectContext) -> str | None:
        instance = context.instance
        record = context.record
        payload = {
            "instance_id": str(instance.id),
            "domain": instance.domain.value,
            "action": record.action,
            "from_state": record.from_state,
            "to_state": record.to_state,
        }
        if record.reason:
            payload["reason"] = record.reason
        return service.notify(
            context.recipient_id,
            f"{instance.domain.value}.{record.action}",
            payload,
            idempotency_key=context.idempotency_key,
        )

    return handle


def ledger_handler(ledger: RepaymentLedger) -> SideEffectHandler:
    """Schedule repayments of an approved salary advance, for the amount approved."""

    def handle(context: SideEffectContext) -> str | None:
        advance = SalaryAdvancePayload.from_dict(context.instance.payload)
        return ledger.schedule(
            context.instance.id,
            advance.effective_amount,
            advance.repayment_months,
            context.record.timestamp.date(),
            context.idempotency_key,
        )

    return handle


def build_default_dispatcher(
    session_factory: sessionmaker[Session],
    artifact_generator: ArtifactGenerator,
    notification_service: NotificationService,
    repayment_ledger: RepaymentLedger,
    retry_policy: RetryPolicyConfig | None = None,
    clock: Clock | None = None,
    inline: bool = False,
) -> SideEffectDispatcher:
    """Dispatcher wired to one handler per side-effect category."""
    return SideEffectDispatcher(
        session_factory,
        {
            SideEffectCategory.ARTIFACT: artifact_handler(artifact_generator),
            SideEffectCategory.NOTIFICATION: notification_handler(notification_service),
            SideEffectCategory.LEDGER: ledger_handler(repayment_ledger),
        },
        retry_policy=retry_policy,
        clock=clock,
        inline=inline,
    )
