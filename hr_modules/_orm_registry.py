"""
Module ORM Registry (``hr_modules._orm_registry``).

Ensures every module-level ORM model is imported so ``Base.metadata``
contains its table before tables are created.  ``create_all_tables()`` is
the one schema entry point for scripts and ``tests/conftest.py``.
"""

from sqlalchemy.engine import Engine


def import_all_orm_models() -> None:
    """Import kernel models and every ``hr_modules.*.orm`` module.  Idempotent."""
    import hr_kernel.models  # noqa: F401
    import hr_modules.salary_advance.orm  # noqa: F401


def create_all_tables(engine: Engine | None = None) -> None:
    """Register all ORM models, then create every table."""
    from hr_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables(engine)
