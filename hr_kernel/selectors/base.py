"""
Base class for read-only selectors.

Selectors run queries on the caller's session and hand back frozen domain
DTOs rather than ORM rows, so callers cannot mutate persisted state
through them.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from hr_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):

    def __init__(self, session: Session):
        self.session = session
