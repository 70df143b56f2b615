"""Salary Advance Workflow.

pending -> active     (approve: HR; within policy; schedules repayments)

HR may lower the amount before approving by setting ``approved_amount`` on
the pending request; the guard and the schedule then use that amount.
pending -> rejected   (reject: HR; reason required)
pending -> cancelled  (cancel: the requester)
active  -> repaid     (mark_repaid: system; balance fully settled)

The definition is built from an ``AdvancePolicyConfig`` because both the
payload validator and the approval guard depend on policy limits.
"""

from decimal import Decimal

from hr_config.schema import AdvancePolicyConfig
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
from hr_modules.salary_advance.facts import (
    OUTSTANDING_BALANCE,
    OUTSTANDING_COUNT,
    REMAINING_BALANCE,
)
from hr_modules.salary_advance.helpers import check_advance_policy
from hr_modules.salary_advance.models import (
    SalaryAdvancePayload,
    SalaryAdvanceState,
    make_payload_validator,
)

logger = get_logger("modules.salary_advance.workflows")

HR_ROLES = frozenset({ActorRole.HR_MANAGER, ActorRole.TENANT_ADMIN})

_PENDING = SalaryAdvanceState.PENDING.value
_ACTIVE = SalaryAdvanceState.ACTIVE.value

NOTIFY_REQUESTER = SideEffectSpec(
    kind="notify_requester",
    category=SideEffectCategory.NOTIFICATION,
    recipient="requester",
)


def _within_policy_guard(policy: AdvancePolicyConfig) -> Guard:
    def predicate(instance, actor, facts) -> bool:
        request = SalaryAdvancePayload.from_dict(instance.payload)
        violations = check_advance_policy(
            request.effective_amount,
            request.net_monthly_salary,
            policy,
            outstanding_balance=facts.get(OUTSTANDING_BALANCE, Decimal("0")),
            outstanding_count=facts.get(OUTSTANDING_COUNT, 0),
        )
        if violations:
            logger.info(
                "advance_policy_violation",
                extra={"instance_id": str(instance.id), "violations": violations},
            )
        return not violations

    return Guard(
        name="within_advance_policy",
        description=(
            f"amount <= min({policy.max_percentage_of_net_salary}% of net salary, "
            f"{policy.max_absolute_amount or 'no absolute cap'}) minus outstanding "
            f"balance; at most {policy.max_outstanding_advances} active advance(s)"
        ),
        predicate=predicate,
    )


def _balance_settled(instance, actor, facts) -> bool:
    remaining = facts.get(REMAINING_BALANCE)
    return remaining is not None and remaining == 0


BALANCE_SETTLED = Guard(
    name="balance_settled",
    description="every installment of the advance has been paid",
    predicate=_balance_settled,
)


def build_salary_advance_workflow(policy: AdvancePolicyConfig) -> WorkflowDefinition:
    """Salary advance state machine for ``policy``."""
    return WorkflowDefinition(
        domain=WorkflowDomain.SALARY_ADVANCE,
        description="Salary advance repaid through payroll deductions",
        state_type=SalaryAdvanceState,
        initial_state=_PENDING,
        transitions=(
            Transition(
                _PENDING, _ACTIVE, action="approve",
                gate=RoleGate(roles=HR_ROLES),
                guard=_within_policy_guard(policy),
                side_effects=(
                    SideEffectSpec(
                        kind="schedule_repayments",
                        category=SideEffectCategory.LEDGER,
                        template="salary_advance_repayment",
                    ),
                    NOTIFY_REQUESTER,
                ),
            ),
            Transition(
                _PENDING, SalaryAdvanceState.REJECTED.value, action="reject",
                gate=RoleGate(roles=HR_ROLES),
                requires_reason=True,
                side_effects=(NOTIFY_REQUESTER,),
            ),
            Transition(
                _PENDING, SalaryAdvanceState.CANCELLED.value, action="cancel",
                gate=RoleGate(allow_requester=True),
            ),
            Transition(
                _ACTIVE, SalaryAdvanceState.REPAID.value, action="mark_repaid",
                gate=RoleGate(roles=frozenset({ActorRole.SYSTEM})),
                guard=BALANCE_SETTLED,
                side_effects=(NOTIFY_REQUESTER,),
            ),
        ),
        terminal_states=(
            SalaryAdvanceState.REPAID.value,
            SalaryAdvanceState.REJECTED.value,
            SalaryAdvanceState.CANCELLED.value,
        ),
        editable_states=(_PENDING,),
        edit_gate=RoleGate(allow_requester=True),
        submit_roles=HR_ROLES,
        allow_self_submit=True,
        validate_payload=make_payload_validator(policy),
    )


SALARY_ADVANCE_WORKFLOW = build_salary_advance_workflow(AdvancePolicyConfig())
