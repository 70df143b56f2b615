"""
RepaymentLedgerService (``hr_modules.salary_advance.service``).

Responsibility
--------------
Owns the ``advance_repayments`` ledger: creates the installment schedule
when an advance is approved (the ``schedule_repayments`` side effect),
records payroll deductions against installments and reports what is
still owed.

Architecture position
---------------------
**Modules layer** -- imperative shell.  Flush-only: the caller owns the
transaction.

Invariants enforced
-------------------
* Scheduling is idempotent: a second call for the same advance returns
  the existing schedule reference and writes nothing.
* An installment is never paid beyond its amount.
* Remaining balance = advance amount - sum of payments; never negative.

Failure modes
-------------
* ``RepaymentError`` -- unknown installment, overpayment, non-positive
  amount, or no schedule yet.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hr_kernel.domain.clock import Clock, SystemClock
from hr_kernel.exceptions import RepaymentError
from hr_kernel.logging_config import get_logger
from hr_modules.salary_advance.helpers import build_repayment_schedule
from hr_modules.salary_advance.models import RepaymentInstallment
from hr_modules.salary_advance.orm import AdvanceRepaymentModel

logger = get_logger("modules.salary_advance.service")


def schedule_reference(instance_id: UUID) -> str:
    return f"repayment-schedule:{instance_id}"


class RepaymentLedgerService:
    """
    Installment ledger for salary advances.

    Contract:
        Accepts a Session and an injectable Clock.  Never commits.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def _models(self, instance_id: UUID) -> list[AdvanceRepaymentModel]:
        stmt = (
            select(AdvanceRepaymentModel)
            .where(AdvanceRepaymentModel.instance_id == instance_id)
            .order_by(AdvanceRepaymentModel.installment_number)
        )
        return list(self._session.execute(stmt).scalars())

    def installments(self, instance_id: UUID) -> list[RepaymentInstallment]:
        return [m.to_dto() for m in self._models(instance_id)]

    def schedule(
        self,
        instance_id: UUID,
        amount: Decimal,
        months: int,
        disbursed_on: date,
        schedule_key: str,
    ) -> str:
        """
        Create the installment schedule for an approved advance.

        Postconditions:
            - ``months`` installment rows exist for ``instance_id``.
            - Returns the schedule reference (same value on every call).
        """
        reference = schedule_reference(instance_id)
        if self._models(instance_id):
            logger.info(
                "repayment_schedule_exists",
                extra={"instance_id": str(instance_id), "schedule_key": schedule_key},
            )
            return reference

        now = self._clock.now()
        plan = build_repayment_schedule(amount, months, disbursed_on)
        try:
            with self._session.begin_nested():
                for installment in plan:
                    self._session.add(
                        AdvanceRepaymentModel(
                            instance_id=instance_id,
                            schedule_key=schedule_key,
                            installment_number=installment.installment_number,
                            due_month=installment.due_month,
                            amount=installment.amount,
                            paid_amount=Decimal("0"),
                            created_at=now,
                        )
                    )
        except IntegrityError:
            # A concurrent delivery created the schedule first
            logger.info(
                "repayment_schedule_race_resolved",
                extra={"instance_id": str(instance_id), "schedule_key": schedule_key},
            )
            return reference

        logger.info(
            "repayment_schedule_created",
            extra={
                "instance_id": str(instance_id),
                "amount": str(amount),
                "installment_count": len(plan),
                "first_due_month": plan[0].due_month.isoformat(),
            },
        )
        return reference

    def record_payment(
        self,
        instance_id: UUID,
        installment_number: int,
        amount: Decimal,
    ) -> RepaymentInstallment:
        """
        Record a deduction against one installment.

        Raises:
            RepaymentError: No schedule, unknown installment, non-positive
                amount, or amount beyond what the installment still owes.
        """
        if amount <= 0:
            raise RepaymentError(str(instance_id), "amount must be positive")

        models = self._models(instance_id)
        if not models:
            raise RepaymentError(str(instance_id), "no repayment schedule")

        model = next((m for m in models if m.installment_number == installment_number), None)
        if model is None:
            raise RepaymentError(
                str(instance_id), f"installment {installment_number} does not exist",
            )

        outstanding = model.amount - model.paid_amount
        if amount > outstanding:
            raise RepaymentError(
                str(instance_id),
                f"installment {installment_number} owes {outstanding}, got {amount}",
            )

        model.paid_amount = model.paid_amount + amount
        if model.paid_amount == model.amount:
            model.paid_at = self._clock.now()
        self._session.flush()

        logger.info(
            "repayment_recorded",
            extra={
                "instance_id": str(instance_id),
                "installment_number": installment_number,
                "amount": str(amount),
                "installment_settled": model.paid_at is not None,
            },
        )
        return model.to_dto()

    def total_paid(self, instance_id: UUID) -> Decimal:
        stmt = select(func.coalesce(func.sum(AdvanceRepaymentModel.paid_amount), 0)).where(
            AdvanceRepaymentModel.instance_id == instance_id
        )
        return Decimal(str(self._session.execute(stmt).scalar_one()))

    def remaining_balance(self, instance_id: UUID, advance_amount: Decimal) -> Decimal:
        """What is still owed on an advance of ``advance_amount``."""
        remaining = advance_amount - self.total_paid(instance_id)
        return max(remaining, Decimal("0")).quantize(Decimal("0.01"))
