"""
Contract Lifecycle Domain Models (``hr_modules.contract_lifecycle.models``).

Responsibility
--------------
The closed state enum, the contract types and the payload schema of an
employment contract, with the type-specific date rules.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* CDD, STAGE and INTERIM contracts carry an end date; CDI and CDDTI
  contracts never do.
* ``end_date`` is strictly after ``start_date``.
* A CDDTI contract describes the task it covers.
* ``renewal_count`` is between 0 and 2.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from hr_kernel.domain.workflow import WorkflowDomain
from hr_modules.validation import (
    FieldErrors,
    optional_text,
    parse_date,
    parse_uuid,
    reject_unknown,
)


class ContractState(str, Enum):
    """Contract lifecycle states.  ``signed`` is terminal and payload-locking."""
    DRAFT = "draft"
    SIGNED = "signed"


class ContractType(str, Enum):
    """Employment contract types."""
    CDI = "CDI"          # permanent
    CDD = "CDD"          # fixed-term
    CDDTI = "CDDTI"      # fixed-term, task-based
    STAGE = "STAGE"      # internship
    INTERIM = "INTERIM"  # temporary agency


FIXED_TERM_TYPES = frozenset({ContractType.CDD, ContractType.STAGE, ContractType.INTERIM})
OPEN_ENDED_TYPES = frozenset({ContractType.CDI, ContractType.CDDTI})

MAX_RENEWALS = 2

_FIELDS = {
    "contract_type",
    "start_date",
    "end_date",
    "contract_number",
    "cdd_reason",
    "cddti_task_description",
    "renewal_count",
    "notes",
    "amends_instance_id",
}


@dataclass(frozen=True)
class ContractPayload:
    """Normalized contract terms."""
    contract_type: ContractType
    start_date: date
    end_date: date | None = None
    contract_number: str | None = None
    cdd_reason: str | None = None
    cddti_task_description: str | None = None
    renewal_count: int = 0
    notes: str | None = None
    amends_instance_id: UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "contract_type": self.contract_type.value,
            "start_date": self.start_date.isoformat(),
            "renewal_count": self.renewal_count,
        }
        optional = {
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "contract_number": self.contract_number,
            "cdd_reason": self.cdd_reason,
            "cddti_task_description": self.cddti_task_description,
            "notes": self.notes,
            "amends_instance_id": (
                str(self.amends_instance_id) if self.amends_instance_id else None
            ),
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


def validate_contract_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate and normalize contract terms.

    Raises:
        PayloadValidationError: listing every invalid field.
    """
    raw = dict(payload)
    errors = FieldErrors(WorkflowDomain.CONTRACT_LIFECYCLE.value)
    reject_unknown(errors, raw, _FIELDS)

    contract_type = None
    if raw.get("contract_type") is None:
        errors.add("contract_type", "required", "contract_type is required")
    else:
        try:
            contract_type = ContractType(str(raw["contract_type"]).strip().upper())
        except ValueError:
            errors.add(
                "contract_type",
                "invalid_choice",
                f"contract_type must be one of {[t.value for t in ContractType]}",
            )

    start_date = parse_date(errors, raw, "start_date")
    if start_date is None and raw.get("start_date") is None:
        errors.add("start_date", "required", "start_date is required")
    end_date = parse_date(errors, raw, "end_date")

    if contract_type in FIXED_TERM_TYPES and end_date is None and raw.get("end_date") is None:
        errors.add(
            "end_date", "required",
            f"end_date is required for {contract_type.value} contracts",
        )
    if contract_type in OPEN_ENDED_TYPES and end_date is not None:
        errors.add(
            "end_date", "not_allowed",
            f"{contract_type.value} contracts have no end_date",
        )
    if start_date is not None and end_date is not None and end_date <= start_date:
        errors.add("end_date", "before_start", "end_date must be after start_date")

    contract_number = optional_text(errors, raw, "contract_number", 50)
    cdd_reason = optional_text(errors, raw, "cdd_reason", 255)
    error_count = len(errors.errors)
    task = optional_text(errors, raw, "cddti_task_description")
    if contract_type == ContractType.CDDTI and task is None and len(errors.errors) == error_count:
        errors.add(
            "cddti_task_description", "required",
            "CDDTI contracts must describe the task they cover",
        )

    renewal_count = raw.get("renewal_count", 0)
    if isinstance(renewal_count, bool) or not isinstance(renewal_count, int):
        errors.add("renewal_count", "invalid_type", "renewal_count must be an integer")
        renewal_count = 0
    elif not (0 <= renewal_count <= MAX_RENEWALS):
        errors.add("renewal_count", "out_of_range", f"renewal_count must be 0-{MAX_RENEWALS}")

    notes = optional_text(errors, raw, "notes")
    amends = parse_uuid(errors, raw, "amends_instance_id")

    errors.raise_if_any()
    return ContractPayload(
        contract_type=contract_type,
        start_date=start_date,
        end_date=end_date,
        contract_number=contract_number,
        cdd_reason=cdd_reason,
        cddti_task_description=task,
        renewal_count=renewal_count,
        notes=notes,
        amends_instance_id=amends,
    ).to_dict()


# Fields that must be filled in before a contract can be signed.
SIGNATURE_REQUIRED_FIELDS = ("contract_type", "start_date", "contract_number")


def missing_signature_fields(payload: Mapping[str, Any]) -> list[str]:
    """Fields a draft still lacks before it can be signed."""
    missing = [f for f in SIGNATURE_REQUIRED_FIELDS if not payload.get(f)]
    try:
        contract_type = ContractType(payload.get("contract_type"))
    except ValueError:
        return missing
    if contract_type in FIXED_TERM_TYPES and not payload.get("end_date"):
        missing.append("end_date")
    if contract_type == ContractType.CDDTI and not payload.get("cddti_task_description"):
        missing.append("cddti_task_description")
    return missing
