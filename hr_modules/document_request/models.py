"""
Document Request Domain Models (``hr_modules.document_request.models``).

Responsibility
--------------
The closed state enum, the catalog of requestable documents and the
payload schema of a document request.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from hr_kernel.domain.workflow import WorkflowDomain
from hr_modules.validation import FieldErrors, optional_text, parse_uuid, reject_unknown


class DocumentRequestState(str, Enum):
    """Document request lifecycle states."""
    PENDING = "pending"
    READY = "ready"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class DocumentType(str, Enum):
    """Documents an employee may request from HR."""
    WORK_CERTIFICATE = "work_certificate"
    EMPLOYMENT_CERTIFICATE = "employment_certificate"
    SALARY_CERTIFICATE = "salary_certificate"
    TAX_STATEMENT = "tax_statement"
    SOCIAL_SECURITY_CERTIFICATE = "social_security_certificate"
    BANK_DOMICILIATION = "bank_domiciliation"
    CONTRACT_COPY = "contract_copy"


# Codes still sent by older clients.
LEGACY_DOCUMENT_CODES: dict[str, DocumentType] = {
    "attestation_travail": DocumentType.WORK_CERTIFICATE,
    "attestation_emploi": DocumentType.EMPLOYMENT_CERTIFICATE,
    "attestation_salaire": DocumentType.SALARY_CERTIFICATE,
    "declaration_fiscale": DocumentType.TAX_STATEMENT,
    "attestation_cnps": DocumentType.SOCIAL_SECURITY_CERTIFICATE,
    "domiciliation_bancaire": DocumentType.BANK_DOMICILIATION,
    "copie_contrat": DocumentType.CONTRACT_COPY,
}

NOTES_MAX_LENGTH = 1000

_FIELDS = {"document_type", "notes", "requested_on_behalf_of"}


@dataclass(frozen=True)
class DocumentRequestPayload:
    """Normalized document request payload."""
    document_type: DocumentType
    notes: str | None = None
    requested_on_behalf_of: UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"document_type": self.document_type.value}
        if self.notes is not None:
            data["notes"] = self.notes
        if self.requested_on_behalf_of is not None:
            data["requested_on_behalf_of"] = str(self.requested_on_behalf_of)
        return data


def parse_document_type(value: Any) -> DocumentType | None:
    if not isinstance(value, str):
        return None
    code = value.strip().lower()
    if code in LEGACY_DOCUMENT_CODES:
        return LEGACY_DOCUMENT_CODES[code]
    try:
        return DocumentType(code)
    except ValueError:
        return None


def validate_document_request_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate and normalize a document request payload.

    Raises:
        PayloadValidationError: listing every invalid field.
    """
    raw = dict(payload)
    errors = FieldErrors(WorkflowDomain.DOCUMENT_REQUEST.value)
    reject_unknown(errors, raw, _FIELDS)

    document_type = None
    if raw.get("document_type") is None:
        errors.add("document_type", "required", "document_type is required")
    else:
        document_type = parse_document_type(raw["document_type"])
        if document_type is None:
            errors.add(
                "document_type",
                "invalid_choice",
                f"document_type must be one of {[t.value for t in DocumentType]}",
            )

    notes = optional_text(errors, raw, "notes", NOTES_MAX_LENGTH)
    on_behalf = parse_uuid(errors, raw, "requested_on_behalf_of")

    errors.raise_if_any()
    return DocumentRequestPayload(
        document_type=document_type,
        notes=notes,
        requested_on_behalf_of=on_behalf,
    ).to_dict()
