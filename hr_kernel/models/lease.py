"""
Module: hr_kernel.models.lease
Responsibility: ORM persistence for per-instance leases used when several
    processes share one database.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - instance_id is the primary key: at most one lease row per instance.
    - A lease whose expires_at is in the past may be taken over.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from hr_kernel.db.base import Base, UUIDString


class InstanceLeaseModel(Base):
    """Exclusive, time-bounded lease on one workflow instance."""

    __tablename__ = "workflow_leases"

    # The lease is keyed by the instance, not by the inherited surrogate id.
    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True)
    holder: Mapped[str] = mapped_column(String(100), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    @property
    def instance_id(self) -> UUID:
        return self.id

    def __repr__(self) -> str:
        return f"<InstanceLease {self.id} holder={self.holder} until={self.expires_at}>"
