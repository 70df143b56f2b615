"""Salary advances: policy-capped advances repaid through payroll deductions."""

from hr_modules.salary_advance.facts import (
    collect_salary_advance_facts,
    make_submission_check,
    remaining_advance_balance,
)
from hr_modules.salary_advance.helpers import (
    build_repayment_schedule,
    check_advance_policy,
    compute_advance_cap,
)
from hr_modules.salary_advance.models import (
    APPROVED_AMOUNT_FIELD,
    HIRE_DATE_FIELD,
    RepaymentInstallment,
    SalaryAdvancePayload,
    SalaryAdvanceState,
    make_payload_validator,
)
from hr_modules.salary_advance.service import RepaymentLedgerService
from hr_modules.salary_advance.workflows import (
    HR_ROLES,
    SALARY_ADVANCE_WORKFLOW,
    build_salary_advance_workflow,
)

__all__ = [
    "APPROVED_AMOUNT_FIELD",
    "HIRE_DATE_FIELD",
    "HR_ROLES",
    "SALARY_ADVANCE_WORKFLOW",
    "build_salary_advance_workflow",
    "collect_salary_advance_facts",
    "make_submission_check",
    "remaining_advance_balance",
    "build_repayment_schedule",
    "check_advance_policy",
    "compute_advance_cap",
    "RepaymentInstallment",
    "RepaymentLedgerService",
    "SalaryAdvancePayload",
    "SalaryAdvanceState",
    "make_payload_validator",
]
