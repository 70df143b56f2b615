"""
Salary Advance Helpers (``hr_modules.salary_advance.helpers``).

Responsibility
--------------
Pure calculation functions: the approval cap and submission limits
for a request, plus the monthly repayment schedule.

Architecture position
---------------------
**Modules layer** -- pure helper functions.  No I/O, no session, no
clock.  Called by the workflow guards, the repayment ledger and tests.

Invariants enforced
-------------------
* All numeric inputs and outputs use ``Decimal`` -- NEVER ``float``.
* Results are quantized to 2 decimal places.
* Schedule installments always sum to exactly the advance amount.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_DOWN, Decimal

from hr_config.schema import AdvancePolicyConfig
from hr_modules.salary_advance.models import RepaymentInstallment

_CENT = Decimal("0.01")


def compute_advance_cap(
    net_monthly_salary: Decimal,
    policy: AdvancePolicyConfig,
    outstanding_balance: Decimal = Decimal("0"),
) -> Decimal:
    """
    Maximum amount that may be approved for one request.

    ``min(pct * net, max_absolute_amount)`` minus what the subject still
    owes on other active advances, floored at zero.

    Example:
        net 500000, 30% -> 150000.00
    """
    cap = (net_monthly_salary * policy.max_percentage_of_net_salary / Decimal("100"))
    if policy.max_absolute_amount is not None:
        cap = min(cap, policy.max_absolute_amount)
    cap = (cap - outstanding_balance).quantize(_CENT, rounding=ROUND_DOWN)
    return max(cap, Decimal("0.00"))


def check_advance_policy(
    amount: Decimal,
    net_monthly_salary: Decimal,
    policy: AdvancePolicyConfig,
    outstanding_balance: Decimal = Decimal("0"),
    outstanding_count: int = 0,
) -> list[str]:
    """
    Return every policy violation of a request (empty list = compliant).

    ``amount`` is the amount to be disbursed: the approved amount when HR
    lowered it, otherwise the requested one.
    """
    violations: list[str] = []
    if outstanding_count >= policy.max_outstanding_advances:
        violations.append(
            f"{outstanding_count} active advance(s); at most "
            f"{policy.max_outstanding_advances} allowed"
        )
    if amount < policy.min_advance_amount:
        violations.append(
            f"amount {amount} below minimum {policy.min_advance_amount}"
        )
    cap = compute_advance_cap(net_monthly_salary, policy, outstanding_balance)
    if amount > cap:
        violations.append(f"amount {amount} exceeds cap {cap}")
    return violations


def completed_months(start: date, end: date) -> int:
    """Whole calendar months from ``start`` to ``end``; 0 when ``end`` is earlier."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(months, 0)


def month_start(moment: datetime) -> datetime:
    """Midnight on the first day of ``moment``'s month, same timezone."""
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def check_submission_limits(
    hire_date: date | None,
    requests_this_month: int,
    today: date,
    policy: AdvancePolicyConfig,
) -> list[str]:
    """
    Return every reason a new request may not be opened (empty list = allowed).

    ``requests_this_month`` counts the subject's requests already opened
    in the calendar month of ``today``, whatever their state.
    """
    violations: list[str] = []
    if requests_this_month >= policy.max_requests_per_month:
        violations.append(
            f"{requests_this_month} request(s) this month; at most "
            f"{policy.max_requests_per_month} allowed"
        )
    if policy.min_employment_months > 0:
        tenure = completed_months(hire_date, today) if hire_date is not None else 0
        if tenure < policy.min_employment_months:
            violations.append(
                f"employed {tenure} month(s); at least "
                f"{policy.min_employment_months} required"
            )
    return violations


def add_months(day: date, months: int) -> date:
    """First day of the month ``months`` after ``day``'s month."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def build_repayment_schedule(
    amount: Decimal,
    months: int,
    disbursed_on: date,
) -> tuple[RepaymentInstallment, ...]:
    """
    Split ``amount`` into ``months`` equal monthly installments.

    The first deduction falls in the month after disbursement; the last
    installment absorbs the rounding remainder.

    Preconditions:
        - ``amount > 0`` and ``months >= 1``.
    Postconditions:
        - ``sum(i.amount) == amount`` exactly.
    """
    if months < 1:
        raise ValueError("months must be at least 1")
    if amount <= 0:
        raise ValueError("amount must be positive")

    amount = amount.quantize(_CENT)
    base = (amount / months).quantize(_CENT, rounding=ROUND_DOWN)
    installments = []
    for n in range(1, months + 1):
        value = base if n < months else amount - base * (months - 1)
        installments.append(
            RepaymentInstallment(
                installment_number=n,
                due_month=add_months(disbursed_on, n),
                amount=value,
            )
        )
    return tuple(installments)
