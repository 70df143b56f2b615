"""
HR Modules.

Declarative workflow definitions for the three HR business domains.
Each module contains:
- Domain models (states, payload schema)
- Workflows (state machine, role gates, guards, side effects)
- Helpers and services where the domain needs them

Modules:
- document_request: Certificates and statements produced on request
- salary_advance: Policy-capped advances with a repayment ledger
- contract_lifecycle: Employment contracts, signature and amendments

Processing logic (validation order, persistence, locking, dispatch)
lives in the kernel and services.
"""

from hr_modules import contract_lifecycle, document_request, salary_advance
from hr_modules.registry import (
    WORKFLOW_DEFINITIONS,
    DomainModule,
    build_modules,
    get_definition,
    get_module,
)

__all__ = [
    "contract_lifecycle",
    "document_request",
    "salary_advance",
    "WORKFLOW_DEFINITIONS",
    "DomainModule",
    "build_modules",
    "get_definition",
    "get_module",
]
