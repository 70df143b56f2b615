"""Document requests: certificates and statements produced by HR on request."""

from hr_modules.document_request.models import (
    DocumentRequestPayload,
    DocumentRequestState,
    DocumentType,
    LEGACY_DOCUMENT_CODES,
    validate_document_request_payload,
)
from hr_modules.document_request.workflows import DOCUMENT_REQUEST_WORKFLOW

__all__ = [
    "DOCUMENT_REQUEST_WORKFLOW",
    "DocumentRequestPayload",
    "DocumentRequestState",
    "DocumentType",
    "LEGACY_DOCUMENT_CODES",
    "validate_document_request_payload",
]
