"""
Module: hr_kernel.models.side_effect
Responsibility: ORM persistence for the side-effect outbox.  One row per
    side effect declared on an accepted transition, inserted in the same
    transaction as the transition record.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE(idempotency_key): a redelivered transition can never enqueue
      the same effect twice.
    - Identity columns (instance, transition, kind, key) are write-once;
      only execution bookkeeping changes (db/immutability.py).
    - A succeeded row is never executed again.

Failure modes:
    - IntegrityError on duplicate idempotency_key.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hr_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from hr_kernel.domain.instance import SideEffectOutcome


class SideEffectModel(Base):
    """Persistent outbox row for one side effect."""

    __tablename__ = "workflow_side_effects"

    __table_args__ = (
        Index("ix_workflow_side_effects_due", "status", "next_attempt_at"),
        Index("ix_workflow_side_effects_instance", "instance_id"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    transition_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_transitions.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    template: Mapped[str | None] = mapped_column(String(100), nullable=True)
    recipient: Mapped[str] = mapped_column(String(50), nullable=False, default="requester")
    idempotency_key: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True,
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(nullable=False, default=0)
    result_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<SideEffect {self.kind} {self.idempotency_key} "
            f"status={self.status} attempts={self.attempts}>"
        )

    def to_dto(self) -> SideEffectOutcome:
        """Convert ORM model to frozen domain DTO."""
        from hr_kernel.domain.instance import SideEffectOutcome, SideEffectStatus
        from hr_kernel.domain.workflow import SideEffectCategory

        return SideEffectOutcome(
            effect_id=self.id,
            kind=self.kind,
            category=SideEffectCategory(self.category),
            status=SideEffectStatus(self.status),
            idempotency_key=self.idempotency_key,
            attempts=self.attempts,
            result_ref=self.result_ref,
            last_error=self.last_error,
            next_attempt_at=self.next_attempt_at,
        )
