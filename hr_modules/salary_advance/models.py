"""
Salary Advance Domain Models (``hr_modules.salary_advance.models``).

Responsibility
--------------
The closed state enum, the request payload schema and the repayment
installment value object.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All monetary fields use ``Decimal`` -- NEVER ``float``.  Amounts are
  stored in the payload as 2-decimal strings.
* ``net_monthly_salary`` is a snapshot taken at request time; later salary
  changes never alter an existing request's cap.
* ``approved_amount``, when present, never exceeds ``requested_amount``
  and replaces it for disbursement, repayment and the approval cap.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping

from hr_config.schema import AdvancePolicyConfig
from hr_kernel.domain.workflow import WorkflowDomain
from hr_modules.validation import (
    FieldErrors,
    optional_text,
    parse_amount,
    parse_date,
    reject_unknown,
)


class SalaryAdvanceState(str, Enum):
    """Salary advance lifecycle states."""
    PENDING = "pending"
    ACTIVE = "active"
    REPAID = "repaid"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


REASON_MAX_LENGTH = 500

_FIELDS = {
    "requested_amount",
    "currency",
    "repayment_months",
    "net_monthly_salary",
    "request_reason",
    "approved_amount",
    "hire_date",
}

# Set by HR while the request is pending; the requester may not touch it.
APPROVED_AMOUNT_FIELD = "approved_amount"
# Snapshot read by the tenure rule; fixed once submitted.
HIRE_DATE_FIELD = "hire_date"


@dataclass(frozen=True)
class SalaryAdvancePayload:
    """Normalized salary advance request."""
    requested_amount: Decimal
    currency: str
    repayment_months: int
    net_monthly_salary: Decimal
    request_reason: str | None = None
    approved_amount: Decimal | None = None
    hire_date: date | None = None

    @property
    def effective_amount(self) -> Decimal:
        """Amount disbursed and repaid: the approved amount when HR set one."""
        if self.approved_amount is not None:
            return self.approved_amount
        return self.requested_amount

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SalaryAdvancePayload:
        return cls(
            requested_amount=Decimal(str(data["requested_amount"])),
            currency=data["currency"],
            repayment_months=int(data["repayment_months"]),
            net_monthly_salary=Decimal(str(data["net_monthly_salary"])),
            request_reason=data.get("request_reason"),
            approved_amount=(
                Decimal(str(data["approved_amount"]))
                if data.get("approved_amount") is not None else None
            ),
            hire_date=(
                date.fromisoformat(data["hire_date"]) if data.get("hire_date") else None
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "requested_amount": str(self.requested_amount),
            "currency": self.currency,
            "repayment_months": self.repayment_months,
            "net_monthly_salary": str(self.net_monthly_salary),
        }
        if self.request_reason is not None:
            data["request_reason"] = self.request_reason
        if self.approved_amount is not None:
            data["approved_amount"] = str(self.approved_amount)
        if self.hire_date is not None:
            data["hire_date"] = self.hire_date.isoformat()
        return data


@dataclass(frozen=True)
class RepaymentInstallment:
    """One scheduled payroll deduction."""
    installment_number: int
    due_month: date
    amount: Decimal
    paid_amount: Decimal = Decimal("0")
    paid_at: datetime | None = None

    @property
    def outstanding(self) -> Decimal:
        return self.amount - self.paid_amount


def make_payload_validator(
    policy: AdvancePolicyConfig,
) -> Callable[[Mapping[str, Any]], dict[str, Any]]:
    """Build the payload validator for ``policy``.

    Checks the request shape and the static limits (minimum amount,
    allowed repayment durations).  ``hire_date`` is required whenever the
    policy sets a minimum employment period.  The salary cap depends on the
    subject's other advances and is enforced by the approval guard.
    """

    def validate_salary_advance_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
        raw = dict(payload)
        errors = FieldErrors(WorkflowDomain.SALARY_ADVANCE.value)
        reject_unknown(errors, raw, _FIELDS)

        amount = parse_amount(errors, raw, "requested_amount")
        if amount is not None and amount < policy.min_advance_amount:
            errors.add(
                "requested_amount",
                "below_minimum",
                f"requested_amount must be at least {policy.min_advance_amount}",
            )

        net_salary = parse_amount(errors, raw, "net_monthly_salary")

        months = raw.get("repayment_months")
        if months is None:
            errors.add("repayment_months", "required", "repayment_months is required")
        elif isinstance(months, bool) or not isinstance(months, int):
            errors.add("repayment_months", "invalid_type", "repayment_months must be an integer")
        elif months not in policy.allowed_repayment_months:
            errors.add(
                "repayment_months",
                "invalid_choice",
                f"repayment_months must be one of {list(policy.allowed_repayment_months)}",
            )

        currency = raw.get("currency", policy.default_currency)
        if not isinstance(currency, str) or len(currency.strip()) != 3:
            errors.add("currency", "invalid_currency", "currency must be an ISO 4217 code")
        else:
            currency = currency.strip().upper()

        reason = optional_text(errors, raw, "request_reason", REASON_MAX_LENGTH)

        approved = None
        if raw.get(APPROVED_AMOUNT_FIELD) is not None:
            approved = parse_amount(errors, raw, APPROVED_AMOUNT_FIELD)
            if approved is not None and amount is not None and approved > amount:
                errors.add(
                    APPROVED_AMOUNT_FIELD,
                    "exceeds_requested",
                    "approved_amount cannot exceed requested_amount",
                )
            elif approved is not None and approved < policy.min_advance_amount:
                errors.add(
                    APPROVED_AMOUNT_FIELD,
                    "below_minimum",
                    f"approved_amount must be at least {policy.min_advance_amount}",
                )

        hire_date = parse_date(errors, raw, HIRE_DATE_FIELD)
        if (
            hire_date is None
            and raw.get(HIRE_DATE_FIELD) is None
            and policy.min_employment_months > 0
        ):
            errors.add(HIRE_DATE_FIELD, "required", "hire_date is required")

        errors.raise_if_any()
        return SalaryAdvancePayload(
            requested_amount=amount,
            currency=currency,
            repayment_months=months,
            net_monthly_salary=net_salary,
            request_reason=reason,
            approved_amount=approved,
            hire_date=hire_date,
        ).to_dict()

    return validate_salary_advance_payload
