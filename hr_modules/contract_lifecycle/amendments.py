"""
Contract amendments (``hr_modules.contract_lifecycle.amendments``).

A signed contract is never edited.  An amendment is a new contract draft
whose ``amends_instance_id`` points at the signed original; the link is
stored as the new instance's ``parent_id``.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from hr_kernel.domain.workflow import WorkflowDomain
from hr_kernel.exceptions import InstanceNotFoundError, PayloadValidationError
from hr_kernel.services.instance_store import InstanceStore
from hr_modules.contract_lifecycle.models import ContractState

AMENDS_FIELD = "amends_instance_id"


def _invalid(message: str, code: str) -> PayloadValidationError:
    return PayloadValidationError(
        WorkflowDomain.CONTRACT_LIFECYCLE.value,
        [{"field": AMENDS_FIELD, "code": code, "message": message}],
    )


def resolve_amendment_parent(
    session: Session,
    subject_id: UUID,
    payload: Mapping[str, Any],
) -> UUID | None:
    """
    Return the parent contract id for an amendment, or None.

    Raises:
        PayloadValidationError: the referenced instance is missing, is not
            a contract, is not signed, or concerns another employee.
    """
    raw = payload.get(AMENDS_FIELD)
    if raw is None:
        return None
    parent_id = UUID(str(raw))

    try:
        parent = InstanceStore(session).load(parent_id)
    except InstanceNotFoundError:
        raise _invalid(f"contract {parent_id} does not exist", "not_found") from None

    if parent.domain != WorkflowDomain.CONTRACT_LIFECYCLE:
        raise _invalid(f"{parent_id} is not a contract", "wrong_domain")
    if parent.state != ContractState.SIGNED.value:
        raise _invalid(
            f"only signed contracts can be amended ({parent_id} is {parent.state})",
            "not_signed",
        )
    if parent.subject_id != subject_id:
        raise _invalid(f"contract {parent_id} belongs to another employee", "wrong_subject")
    return parent_id
