"""
InstanceStore -- durable workflow instances with version-checked commits.

Responsibility:
    Creates, loads and commits workflow instances.  ``commit`` is the only
    code path that writes ``state``/``version``/history: one conditional
    UPDATE moves state and version together, and the transition record and
    the pending side-effect (outbox) rows are inserted in the same
    transaction.  ``update_payload`` is the only path that edits a payload.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only: the caller owns the
    transaction (``session_scope``).

Invariants enforced:
    - ``version == len(history)``: the record's sequence must be
      ``expected_version + 1``.
    - Stale ``expected_version`` -> OptimisticLockError, nothing written.
    - Payload edits only in the definition's editable states; locked
      payloads (signed contracts) -> PayloadLockedError.

Failure modes:
    - InstanceNotFoundError: unknown instance id.
    - OptimisticLockError: stored version (or payload revision) moved.
    - PayloadLockedError: payload edit outside an editable state.
    - IntegrityError: duplicate side-effect idempotency key (redelivery).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from hr_kernel.domain.clock import Clock, SystemClock
from hr_kernel.domain.instance import SideEffectStatus, TransitionRecord, WorkflowInstance
from hr_kernel.domain.workflow import SideEffectSpec, WorkflowDomain
from hr_kernel.exceptions import (
    InstanceNotFoundError,
    OptimisticLockError,
    PayloadLockedError,
)
from hr_kernel.logging_config import get_logger
from hr_kernel.models.instance import TransitionRecordModel, WorkflowInstanceModel
from hr_kernel.models.side_effect import SideEffectModel
from hr_kernel.services.base import BaseService
from hr_kernel.utils.idempotency import generate_side_effect_key

logger = get_logger("services.instance_store")


class InstanceStore(BaseService[WorkflowInstanceModel]):
    """
    Durable store for workflow instances.

    Contract:
        Accepts a Session and an injectable Clock.  Returns frozen
        ``WorkflowInstance`` snapshots, never ORM objects.

    Guarantees:
        - ``commit`` writes state, version, history and outbox rows
          atomically (within the caller's transaction) or not at all.
        - ``load`` always reflects the database, never a stale identity
          map entry.

    Non-goals:
        - Does NOT validate transitions; the status machine does.
        - Does NOT execute side effects; the dispatcher does.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load_model(self, instance_id: UUID) -> WorkflowInstanceModel:
        stmt = (
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == instance_id)
            .execution_options(populate_existing=True)
        )
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise InstanceNotFoundError(str(instance_id))
        return model

    def _side_effect_models(self, instance_id: UUID) -> list[SideEffectModel]:
        stmt = (
            select(SideEffectModel)
            .where(SideEffectModel.instance_id == instance_id)
            .order_by(SideEffectModel.sequence, SideEffectModel.kind)
            .execution_options(populate_existing=True)
        )
        return list(self.session.execute(stmt).scalars())

    def load(self, instance_id: UUID) -> WorkflowInstance:
        """
        Load an instance with its full history and side-effect outcomes.

        Raises:
            InstanceNotFoundError: If no instance has this id.
        """
        model = self._load_model(instance_id)
        # Transitions may have been appended since the model was first loaded.
        self.session.refresh(model, attribute_names=["transitions"])
        return model.to_dto(self._side_effect_models(instance_id))

    def exists(self, instance_id: UUID) -> bool:
        stmt = select(WorkflowInstanceModel.id).where(WorkflowInstanceModel.id == instance_id)
        return self.session.execute(stmt).first() is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        domain: WorkflowDomain,
        subject_id: UUID,
        requested_by: UUID,
        payload: Mapping[str, Any],
        initial_state: str,
        parent_id: UUID | None = None,
    ) -> WorkflowInstance:
        """
        Insert a new instance in ``initial_state`` at version 0.

        Postconditions: empty history; ``created_at == updated_at == now``.
        """
        now = self._clock.now()
        model = WorkflowInstanceModel(
            id=uuid4(),
            domain=domain.value,
            subject_id=subject_id,
            requested_by=requested_by,
            state=initial_state,
            version=0,
            payload=dict(payload),
            payload_revision=0,
            parent_id=parent_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "workflow_instance_created",
            extra={
                "instance_id": str(model.id),
                "domain": domain.value,
                "subject_id": str(subject_id),
                "state": initial_state,
            },
        )
        return self.load(model.id)

    def commit(
        self,
        instance_id: UUID,
        expected_version: int,
        new_state: str,
        record: TransitionRecord,
        side_effects: Sequence[SideEffectSpec] = (),
    ) -> WorkflowInstance:
        """
        Persist an accepted transition.

        Preconditions:
            - ``record.sequence == expected_version + 1``.
            - ``record.to_state == new_state``.

        Postconditions:
            - Stored version is ``expected_version + 1`` and state is
              ``new_state``.
            - One transition row and one ``pending`` outbox row per side
              effect are flushed.

        Raises:
            ValueError: If the record does not match the commit.
            InstanceNotFoundError: If the instance does not exist.
            OptimisticLockError: If the stored version is not
                ``expected_version``.
        """
        if record.sequence != expected_version + 1:
            raise ValueError(
                f"Record sequence {record.sequence} does not follow version {expected_version}"
            )
        if record.to_state != new_state:
            raise ValueError(
                f"Record to_state '{record.to_state}' does not match new state '{new_state}'"
            )

        stmt = (
            update(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.id == instance_id,
                WorkflowInstanceModel.version == expected_version,
            )
            .values(
                state=new_state,
                version=WorkflowInstanceModel.version + 1,
                updated_at=record.timestamp,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if result.rowcount != 1:
            if not self.exists(instance_id):
                raise InstanceNotFoundError(str(instance_id))
            logger.warning(
                "workflow_commit_version_conflict",
                extra={
                    "instance_id": str(instance_id),
                    "expected_version": expected_version,
                    "action": record.action,
                },
            )
            raise OptimisticLockError("WorkflowInstance", str(instance_id), expected_version)

        transition = TransitionRecordModel.from_dto(instance_id, record)
        transition.id = uuid4()
        self.session.add(transition)
        # outbox rows reference the transition row
        self.session.flush()

        effect_ids: list[UUID] = []
        for spec in side_effects:
            effect = SideEffectModel(
                id=uuid4(),
                instance_id=instance_id,
                transition_id=transition.id,
                sequence=record.sequence,
                kind=spec.kind,
                category=spec.category.value,
                template=spec.template,
                recipient=spec.recipient,
                idempotency_key=generate_side_effect_key(
                    instance_id, record.sequence, record.timestamp, spec.kind,
                ),
                status=SideEffectStatus.PENDING.value,
                attempts=0,
                created_at=record.timestamp,
                updated_at=record.timestamp,
            )
            self.session.add(effect)
            effect_ids.append(effect.id)

        self.session.flush()

        logger.info(
            "workflow_instance_committed",
            extra={
                "instance_id": str(instance_id),
                "action": record.action,
                "from_state": record.from_state,
                "to_state": new_state,
                "version": expected_version + 1,
                "side_effect_count": len(effect_ids),
            },
        )
        return self.load(instance_id)

    def update_payload(
        self,
        instance_id: UUID,
        payload: Mapping[str, Any],
        editable_states: Iterable[str],
        expected_revision: int | None = None,
    ) -> WorkflowInstance:
        """
        Replace the payload of an instance that is still editable.

        The UPDATE is conditional on both the state being editable and the
        payload revision being unchanged, so an edit can never land on an
        instance that was signed (or edited) concurrently.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
            PayloadLockedError: If the instance is not in an editable state.
            OptimisticLockError: If the payload revision moved.
        """
        editable = tuple(editable_states)
        model = self._load_model(instance_id)

        if model.state not in editable:
            raise PayloadLockedError(str(instance_id), model.state)

        revision = model.payload_revision if expected_revision is None else expected_revision

        stmt = (
            update(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.id == instance_id,
                WorkflowInstanceModel.state.in_(editable),
                WorkflowInstanceModel.payload_revision == revision,
            )
            .values(
                payload=dict(payload),
                payload_revision=WorkflowInstanceModel.payload_revision + 1,
                updated_at=self._clock.now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if result.rowcount != 1:
            current = self._load_model(instance_id)
            if current.state not in editable:
                raise PayloadLockedError(str(instance_id), current.state)
            raise OptimisticLockError("WorkflowInstancePayload", str(instance_id), revision)

        self.session.flush()
        logger.info(
            "workflow_payload_updated",
            extra={
                "instance_id": str(instance_id),
                "payload_revision": revision + 1,
            },
        )
        return self.load(instance_id)
