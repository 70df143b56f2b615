"""Contract Lifecycle Workflow.

draft -> signed  (sign: HR, or the employee countersigning their own
                  contract; every signature field present)

``signed`` is terminal and freezes the payload.  Changes to a signed
contract are made through an amendment: a new draft whose
``amends_instance_id`` (stored as ``parent_id``) references it.
"""

from hr_kernel.domain.workflow import (
    ActorRole,
    Guard,
    RoleGate,
    SideEffectCategory,
    SideEffectSpec,
    Transition,
    WorkflowDefinition,
    WorkflowDomain,
)
from hr_kernel.logging_config import get_logger
from hr_modules.contract_lifecycle.models import (
    ContractState,
    missing_signature_fields,
    validate_contract_payload,
)

logger = get_logger("modules.contract_lifecycle.workflows")

HR_ROLES = frozenset({ActorRole.HR_MANAGER, ActorRole.TENANT_ADMIN})

_DRAFT = ContractState.DRAFT.value
_SIGNED = ContractState.SIGNED.value


def _required_fields_present(instance, actor, facts) -> bool:
    missing = missing_signature_fields(instance.payload)
    if missing:
        logger.info(
            "contract_signature_fields_missing",
            extra={"instance_id": str(instance.id), "missing": missing},
        )
    return not missing


REQUIRED_FIELDS_PRESENT = Guard(
    name="required_fields_present",
    description="contract number, dates and type-specific fields are filled in",
    predicate=_required_fields_present,
)

CONTRACT_LIFECYCLE_WORKFLOW = WorkflowDefinition(
    domain=WorkflowDomain.CONTRACT_LIFECYCLE,
    description="Employment contract from draft to signature",
    state_type=ContractState,
    initial_state=_DRAFT,
    transitions=(
        Transition(
            _DRAFT, _SIGNED, action="sign",
            gate=RoleGate(roles=HR_ROLES, allow_subject=True),
            guard=REQUIRED_FIELDS_PRESENT,
            side_effects=(
                SideEffectSpec(
                    kind="generate_contract_document",
                    category=SideEffectCategory.ARTIFACT,
                    template="employment_contract",
                ),
                SideEffectSpec(
                    kind="notify_subject",
                    category=SideEffectCategory.NOTIFICATION,
                    recipient="subject",
                ),
            ),
        ),
    ),
    terminal_states=(_SIGNED,),
    editable_states=(_DRAFT,),
    edit_gate=RoleGate(roles=HR_ROLES),
    submit_roles=HR_ROLES,
    allow_self_submit=False,
    validate_payload=validate_contract_payload,
)
