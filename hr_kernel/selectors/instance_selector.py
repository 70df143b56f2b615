"""
Module: hr_kernel.selectors.instance_selector
Responsibility: Read-only projections over workflow instances (listing by
    domain/state/subject, sibling lookups used to compute guard facts,
    per-subject counts for submission limits).
Architecture position: Kernel > Selectors.  Read-only; returns frozen
    WorkflowInstance DTOs.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from hr_kernel.domain.instance import WorkflowInstance
from hr_kernel.domain.workflow import WorkflowDomain
from hr_kernel.models.instance import WorkflowInstanceModel
from hr_kernel.models.side_effect import SideEffectModel
from hr_kernel.selectors.base import BaseSelector


class InstanceSelector(BaseSelector[WorkflowInstanceModel]):
    """Query workflow instances without mutating them."""

    def list_instances(
        self,
        domain: WorkflowDomain,
        status: str | Iterable[str] | None = None,
        subject_id: UUID | None = None,
        exclude_id: UUID | None = None,
    ) -> list[WorkflowInstance]:
        """
        List instances of ``domain``, oldest first.

        Args:
            domain: Business domain to list.
            status: One state, several states, or None for all.
            subject_id: Restrict to one employee/entity.
            exclude_id: Leave one instance out (used for sibling lookups).
        """
        stmt = (
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.domain == domain.value)
            .order_by(WorkflowInstanceModel.created_at, WorkflowInstanceModel.id)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            states = [status] if isinstance(status, str) else list(status)
            stmt = stmt.where(WorkflowInstanceModel.state.in_(states))
        if subject_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.subject_id == subject_id)
        if exclude_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.id != exclude_id)

        models = list(self.session.execute(stmt).scalars())
        if not models:
            return []

        effects_stmt = select(SideEffectModel).where(
            SideEffectModel.instance_id.in_([m.id for m in models])
        )
        effects: dict[UUID, list[SideEffectModel]] = {}
        for effect in self.session.execute(effects_stmt).scalars():
            effects.setdefault(effect.instance_id, []).append(effect)

        return [m.to_dto(effects.get(m.id, [])) for m in models]


    def count_instances(
        self,
        domain: WorkflowDomain,
        subject_id: UUID,
        created_since: datetime | None = None,
    ) -> int:
        """Count a subject's instances of ``domain`` in any state."""
        stmt = (
            select(func.count())
            .select_from(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.domain == domain.value)
            .where(WorkflowInstanceModel.subject_id == subject_id)
        )
        if created_since is not None:
            stmt = stmt.where(WorkflowInstanceModel.created_at >= created_since)
        return self.session.execute(stmt).scalar_one()
