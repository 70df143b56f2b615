"""
Salary Advance ORM Persistence Models (``hr_modules.salary_advance.orm``).

Responsibility:
    Persists the repayment installments of approved salary advances
    (table ``advance_repayments``).

Invariants enforced:
    - UNIQUE(instance_id, installment_number): scheduling the same advance
      twice (side-effect redelivery) can never create a second schedule.
    - Monetary fields are Decimal (Numeric(18, 2)) -- NEVER float.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hr_kernel.db.base import Base, UUIDString


class AdvanceRepaymentModel(Base):
    """One scheduled payroll deduction for a salary advance."""

    __tablename__ = "advance_repayments"

    __table_args__ = (
        UniqueConstraint(
            "instance_id", "installment_number",
            name="uq_advance_repayments_installment",
        ),
        Index("ix_advance_repayments_due_month", "due_month"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    schedule_key: Mapped[str] = mapped_column(String(255), nullable=False)
    installment_number: Mapped[int] = mapped_column(nullable=False)
    due_month: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None

    def to_dto(self):
        from hr_modules.salary_advance.models import RepaymentInstallment

        return RepaymentInstallment(
            installment_number=self.installment_number,
            due_month=self.due_month,
            amount=self.amount,
            paid_amount=self.paid_amount,
            paid_at=self.paid_at,
        )

    def __repr__(self) -> str:
        return (
            f"<AdvanceRepayment {self.instance_id}#{self.installment_number} "
            f"{self.amount} paid={self.is_paid}>"
        )
