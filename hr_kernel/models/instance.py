"""
Module: hr_kernel.models.instance
Responsibility: ORM persistence for workflow instances and their
    append-only transition history.

Architecture position: Kernel > Models.  May import from db/base.py only
    (domain DTOs are imported lazily inside to_dto()).

Invariants enforced:
    - state and version live on the same row so a single conditional UPDATE
      moves both (see InstanceStore.commit).
    - UNIQUE(instance_id, sequence) on transitions: two writers can never
      both append record N.
    - Transition rows are append-only (db/immutability.py).
    - Instances are never deleted (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate (instance_id, sequence).
    - ImmutabilityViolationError on transition UPDATE/DELETE, instance
      DELETE, or ORM payload edits on a signed contract.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from hr_kernel.domain.instance import TransitionRecord, WorkflowInstance
    from hr_kernel.models.side_effect import SideEffectModel


class WorkflowInstanceModel(Base):
    """Persistent workflow instance.

    Contract:
        ``state``/``version`` are written only by InstanceStore.commit.
        ``payload``/``payload_revision`` are written only by
        InstanceStore.update_payload while the state is editable.
    """

    __tablename__ = "workflow_instances"

    __table_args__ = (
        Index("ix_workflow_instances_domain_state", "domain", "state"),
        Index("ix_workflow_instances_subject", "subject_id", "domain"),
        Index("ix_workflow_instances_parent", "parent_id"),
    )

    domain: Mapped[str] = mapped_column(String(50), nullable=False)
    subject_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requested_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    state: Mapped[str] = mapped_column(String(50), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=0)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    payload_revision: Mapped[int] = mapped_column(nullable=False, default=0)
    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    transitions: Mapped[list["TransitionRecordModel"]] = relationship(
        "TransitionRecordModel",
        back_populates="instance",
        order_by="TransitionRecordModel.sequence",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.id} {self.domain} "
            f"state={self.state} v{self.version}>"
        )

    def to_dto(
        self,
        side_effects: list["SideEffectModel"] | None = None,
    ) -> WorkflowInstance:
        """Convert ORM model to frozen domain DTO.

        ``side_effects`` are the outbox rows of this instance; they are
        attached to the transition that produced them.
        """
        from hr_kernel.domain.instance import WorkflowInstance as InstanceDTO
        from hr_kernel.domain.workflow import WorkflowDomain

        by_transition: dict[UUID, list] = {}
        for effect in side_effects or ():
            by_transition.setdefault(effect.transition_id, []).append(effect.to_dto())

        return InstanceDTO(
            id=self.id,
            domain=WorkflowDomain(self.domain),
            subject_id=self.subject_id,
            requested_by=self.requested_by,
            state=self.state,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
            payload=dict(self.payload or {}),
            payload_revision=self.payload_revision,
            parent_id=self.parent_id,
            history=tuple(
                t.to_dto(tuple(by_transition.get(t.id, ())))
                for t in self.transitions
            ),
        )


class TransitionRecordModel(Base):
    """Persistent transition record. Append-only.

    Contract:
        Records are immutable once created -- no UPDATE, no DELETE.

    Guarantees:
        - UNIQUE(instance_id, sequence); sequence equals the instance
          version the transition produced.
    """

    __tablename__ = "workflow_transitions"

    __table_args__ = (
        UniqueConstraint(
            "instance_id", "sequence",
            name="uq_workflow_transitions_sequence",
        ),
        Index("ix_workflow_transitions_actor", "actor_id"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    from_state: Mapped[str] = mapped_column(String(50), nullable=False)
    to_state: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(50), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    instance: Mapped["WorkflowInstanceModel"] = relationship(
        "WorkflowInstanceModel",
        back_populates="transitions",
    )

    def __repr__(self) -> str:
        return (
            f"<TransitionRecord {self.instance_id}#{self.sequence} "
            f"{self.from_state}->{self.to_state} ({self.action})>"
        )

    def to_dto(self, side_effects: tuple = ()) -> TransitionRecord:
        """Convert ORM model to frozen domain DTO."""
        from hr_kernel.domain.instance import TransitionRecord as RecordDTO
        from hr_kernel.domain.workflow import ActorRole

        return RecordDTO(
            sequence=self.sequence,
            from_state=self.from_state,
            to_state=self.to_state,
            action=self.action,
            actor_id=self.actor_id,
            actor_role=ActorRole(self.actor_role),
            timestamp=self.occurred_at,
            reason=self.reason,
            payload_hash=self.payload_hash,
            resulting_side_effects=tuple(sorted(side_effects, key=lambda o: o.kind)),
        )

    @classmethod
    def from_dto(cls, instance_id: UUID, dto: TransitionRecord) -> TransitionRecordModel:
        """Create ORM model from domain DTO."""
        return cls(
            instance_id=instance_id,
            sequence=dto.sequence,
            from_state=dto.from_state,
            to_state=dto.to_state,
            action=dto.action,
            actor_id=dto.actor_id,
            actor_role=dto.actor_role.value,
            occurred_at=dto.timestamp,
            reason=dto.reason,
            payload_hash=dto.payload_hash,
        )
