"""Document Request Workflow.

pending -> ready      (approve: HR; generates the document, notifies requester)
pending -> rejected   (reject: HR; reason required, notifies requester)
pending -> cancelled  (cancel: the requester)
"""

from hr_kernel.domain.workflow import (
    ActorRole,
    RoleGate,
    SideEffectCategory,
    SideEffectSpec,
    Transition,
    WorkflowDefinition,
    WorkflowDomain,
)
from hr_kernel.logging_config import get_logger
from hr_modules.document_request.models import (
    DocumentRequestState,
    validate_document_request_payload,
)

logger = get_logger("modules.document_request.workflows")

HR_ROLES = frozenset({ActorRole.HR_MANAGER, ActorRole.TENANT_ADMIN})

_PENDING = DocumentRequestState.PENDING.value

NOTIFY_REQUESTER = SideEffectSpec(
    kind="notify_requester",
    category=SideEffectCategory.NOTIFICATION,
    recipient="requester",
)

DOCUMENT_REQUEST_WORKFLOW = WorkflowDefinition(
    domain=WorkflowDomain.DOCUMENT_REQUEST,
    description="Employee document request (certificates, statements, copies)",
    state_type=DocumentRequestState,
    initial_state=_PENDING,
    transitions=(
        Transition(
            _PENDING, DocumentRequestState.READY.value, action="approve",
            gate=RoleGate(roles=HR_ROLES),
            side_effects=(
                SideEffectSpec(
                    kind="generate_document",
                    category=SideEffectCategory.ARTIFACT,
                    template="document_request",
                ),
                NOTIFY_REQUESTER,
            ),
        ),
        Transition(
            _PENDING, DocumentRequestState.REJECTED.value, action="reject",
            gate=RoleGate(roles=HR_ROLES),
            requires_reason=True,
            side_effects=(NOTIFY_REQUESTER,),
        ),
        Transition(
            _PENDING, DocumentRequestState.CANCELLED.value, action="cancel",
            gate=RoleGate(allow_requester=True),
        ),
    ),
    terminal_states=(
        DocumentRequestState.READY.value,
        DocumentRequestState.REJECTED.value,
        DocumentRequestState.CANCELLED.value,
    ),
    submit_roles=HR_ROLES,
    allow_self_submit=True,
    validate_payload=validate_document_request_payload,
)

logger.debug(
    "document_request_workflow_defined",
    extra={"transition_count": len(DOCUMENT_REQUEST_WORKFLOW.transitions)},
)
