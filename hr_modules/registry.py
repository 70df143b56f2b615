"""
Workflow registry (``hr_modules.registry``).

Responsibility
--------------
Maps each ``WorkflowDomain`` to its ``DomainModule``: the workflow
definition plus the store-facing hooks the coordinator calls around it
(guard facts, amendment parent resolution, submission limits, fields
frozen after submission or gated to particular roles, actions serialized
per subject).  Also declares each domain's payload-locked states to the
kernel's immutability listeners.

Architecture position
---------------------
**Modules layer**.  Imports from ``hr_kernel`` and ``hr_config``; imported
by ``hr_services``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from hr_config.schema import AdvancePolicyConfig
from hr_kernel.db.immutability import register_payload_lock
from hr_kernel.domain.instance import WorkflowInstance
from hr_kernel.domain.workflow import RoleGate, WorkflowDefinition, WorkflowDomain
from hr_kernel.logging_config import get_logger
from hr_modules.contract_lifecycle import (
    AMENDS_FIELD,
    CONTRACT_LIFECYCLE_WORKFLOW,
    resolve_amendment_parent,
)
from hr_modules.document_request import DOCUMENT_REQUEST_WORKFLOW
from hr_modules.salary_advance import (
    APPROVED_AMOUNT_FIELD,
    HIRE_DATE_FIELD,
    HR_ROLES,
    build_salary_advance_workflow,
    collect_salary_advance_facts,
    make_submission_check,
)

logger = get_logger("modules.registry")

FactProvider = Callable[[Session, WorkflowInstance, str], Mapping[str, Any]]
ParentResolver = Callable[[Session, UUID, Mapping[str, Any]], "UUID | None"]
SubmissionCheck = Callable[[Session, UUID, Mapping[str, Any], datetime], list[str]]


@dataclass(frozen=True)
class DomainModule:
    """A workflow definition and its store-facing hooks."""

    definition: WorkflowDefinition
    collect_facts: FactProvider | None = None
    resolve_parent: ParentResolver | None = None
    frozen_fields: tuple[str, ...] = ()
    # Fields only these gates may edit; other fields follow the definition's edit gate.
    field_gates: Mapping[str, RoleGate] = field(default_factory=dict)
    check_submission: SubmissionCheck | None = None
    # Actions ("submit" included) whose checks read the subject's other instances.
    subject_scoped_actions: frozenset[str] = frozenset()

    @property
    def domain(self) -> WorkflowDomain:
        return self.definition.domain

    def facts(self, session: Session, instance: WorkflowInstance, action: str) -> dict[str, Any]:
        if self.collect_facts is None:
            return {}
        return dict(self.collect_facts(session, instance, action))

    def submission_violations(
        self,
        session: Session,
        subject_id: UUID,
        payload: Mapping[str, Any],
        now: datetime,
    ) -> list[str]:
        if self.check_submission is None:
            return []
        return list(self.check_submission(session, subject_id, payload, now))

    def serializes_subject(self, action: str) -> bool:
        return action in self.subject_scoped_actions


def build_modules(
    advance_policy: AdvancePolicyConfig | None = None,
) -> dict[WorkflowDomain, DomainModule]:
    """Build every domain module for the given policy."""
    advance_policy = advance_policy or AdvancePolicyConfig()
    modules = {
        WorkflowDomain.DOCUMENT_REQUEST: DomainModule(definition=DOCUMENT_REQUEST_WORKFLOW),
        WorkflowDomain.SALARY_ADVANCE: DomainModule(
            definition=build_salary_advance_workflow(advance_policy),
            collect_facts=collect_salary_advance_facts,
            frozen_fields=(HIRE_DATE_FIELD,),
            field_gates={APPROVED_AMOUNT_FIELD: RoleGate(roles=HR_ROLES)},
            check_submission=make_submission_check(advance_policy),
            subject_scoped_actions=frozenset({"submit", "approve"}),
        ),
        WorkflowDomain.CONTRACT_LIFECYCLE: DomainModule(
            definition=CONTRACT_LIFECYCLE_WORKFLOW,
            resolve_parent=resolve_amendment_parent,
            frozen_fields=(AMENDS_FIELD,),
        ),
    }
    for module in modules.values():
        definition = module.definition
        register_payload_lock(
            definition.domain.value,
            set(definition.states) - set(definition.editable_states),
        )
    return modules


_DEFAULT_MODULES = build_modules()

WORKFLOW_DEFINITIONS: dict[WorkflowDomain, WorkflowDefinition] = {
    domain: module.definition for domain, module in _DEFAULT_MODULES.items()
}


def get_module(domain: WorkflowDomain | str) -> DomainModule:
    return _DEFAULT_MODULES[WorkflowDomain(domain)]


def get_definition(domain: WorkflowDomain | str) -> WorkflowDefinition:
    """Definition for ``domain`` under the default advance policy."""
    return WORKFLOW_DEFINITIONS[WorkflowDomain(domain)]


logger.debug(
    "workflow_definitions_registered",
    extra={"domains": [d.value for d in WORKFLOW_DEFINITIONS]},
)
