"""
Base class for kernel write services.

A write service works inside a transaction it does not own: it adds and
flushes, and leaves commit or rollback to whoever opened the session
(the coordinator, the dispatcher, or a test's ``session_scope``).
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from hr_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Holds the caller's session.  Subclasses flush, never commit."""

    def __init__(self, session: Session):
        self.session = session
