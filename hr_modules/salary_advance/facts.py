"""
Guard facts for salary advances (``hr_modules.salary_advance.facts``).

The approval guard needs to know what the subject already owes, and the
repayment guard what is left on this advance.  These are read from the
store here, before the status machine runs, so the guards stay pure.
The submission limits (requests this month, tenure) are read the same way
when a request is opened.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from hr_config.schema import AdvancePolicyConfig
from hr_kernel.domain.instance import WorkflowInstance
from hr_kernel.domain.workflow import WorkflowDomain
from hr_kernel.selectors.instance_selector import InstanceSelector
from hr_modules.salary_advance.helpers import check_submission_limits, month_start
from hr_modules.salary_advance.models import SalaryAdvancePayload, SalaryAdvanceState
from hr_modules.salary_advance.service import RepaymentLedgerService

OUTSTANDING_BALANCE = "outstanding_balance"
OUTSTANDING_COUNT = "outstanding_count"
REMAINING_BALANCE = "remaining_balance"


def remaining_advance_balance(ledger: RepaymentLedgerService, instance: WorkflowInstance) -> Decimal:
    """What the subject still owes on one advance."""
    amount = SalaryAdvancePayload.from_dict(instance.payload).effective_amount
    return ledger.remaining_balance(instance.id, amount)


def collect_salary_advance_facts(
    session: Session,
    instance: WorkflowInstance,
    action: str,
) -> dict[str, Any]:
    """Facts for ``approve`` and ``mark_repaid``; empty for other actions."""
    ledger = RepaymentLedgerService(session)

    if action == "approve":
        others = InstanceSelector(session).list_instances(
            WorkflowDomain.SALARY_ADVANCE,
            status=SalaryAdvanceState.ACTIVE.value,
            subject_id=instance.subject_id,
            exclude_id=instance.id,
        )
        balance = sum(
            (remaining_advance_balance(ledger, other) for other in others),
            Decimal("0"),
        )
        return {OUTSTANDING_BALANCE: balance, OUTSTANDING_COUNT: len(others)}

    if action == "mark_repaid":
        return {REMAINING_BALANCE: remaining_advance_balance(ledger, instance)}

    return {}


def make_submission_check(
    policy: AdvancePolicyConfig,
) -> Callable[[Session, UUID, Mapping[str, Any], datetime], list[str]]:
    """Build the check run before a new advance request is stored."""

    def check_advance_submission(
        session: Session,
        subject_id: UUID,
        payload: Mapping[str, Any],
        now: datetime,
    ) -> list[str]:
        opened = InstanceSelector(session).count_instances(
            WorkflowDomain.SALARY_ADVANCE,
            subject_id,
            created_since=month_start(now),
        )
        return check_submission_limits(
            SalaryAdvancePayload.from_dict(payload).hire_date,
            opened,
            now.date(),
            policy,
        )

    return check_advance_submission
