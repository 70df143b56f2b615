"""Employment contracts: drafted by HR, signed, then frozen; changed by amendment."""

from hr_modules.contract_lifecycle.amendments import AMENDS_FIELD, resolve_amendment_parent
from hr_modules.contract_lifecycle.models import (
    ContractPayload,
    ContractState,
    ContractType,
    missing_signature_fields,
    validate_contract_payload,
)
from hr_modules.contract_lifecycle.workflows import CONTRACT_LIFECYCLE_WORKFLOW

__all__ = [
    "AMENDS_FIELD",
    "CONTRACT_LIFECYCLE_WORKFLOW",
    "ContractPayload",
    "ContractState",
    "ContractType",
    "missing_signature_fields",
    "resolve_amendment_parent",
    "validate_contract_payload",
]
