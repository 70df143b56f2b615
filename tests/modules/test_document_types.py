"""
Document request payload normalization.
"""

from uuid import uuid4

import pytest

from hr_kernel.exceptions import PayloadValidationError
from hr_modules.document_request.models import (
    LEGACY_DOCUMENT_CODES,
    NOTES_MAX_LENGTH,
    DocumentType,
    parse_document_type,
    validate_document_request_payload,
)


class TestDocumentTypes:

    @pytest.mark.parametrize("code", [t.value for t in DocumentType])
    def test_current_codes(self, code):
        assert parse_document_type(code) == DocumentType(code)

    @pytest.mark.parametrize("legacy,current", sorted(LEGACY_DOCUMENT_CODES.items()))
    def test_legacy_codes_map_to_current(self, legacy, current):
        payload = validate_document_request_payload({"document_type": legacy})
        assert payload == {"document_type": current.value}

    def test_codes_are_trimmed_and_case_insensitive(self):
        assert parse_document_type("  Tax_Statement ") == DocumentType.TAX_STATEMENT

    @pytest.mark.parametrize("value", ["passport", "", 7, None])
    def test_unknown_values(self, value):
        assert parse_document_type(value) is None


class TestPayloadValidation:

    def test_notes_and_on_behalf_of(self):
        on_behalf = uuid4()
        payload = validate_document_request_payload({
            "document_type": "contract_copy",
            "notes": "  two copies  ",
            "requested_on_behalf_of": str(on_behalf),
        })

        assert payload == {
            "document_type": "contract_copy",
            "notes": "two copies",
            "requested_on_behalf_of": str(on_behalf),
        }

    def test_blank_notes_dropped(self):
        payload = validate_document_request_payload({"document_type": "tax_statement", "notes": "   "})
        assert "notes" not in payload

    def test_missing_type(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_document_request_payload({})
        assert exc_info.value.field_errors[0]["code"] == "required"

    def test_unknown_field(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_document_request_payload({"document_type": "tax_statement", "copies": 2})
        assert exc_info.value.field == "copies"
        assert exc_info.value.field_errors[0]["code"] == "unknown_field"

    def test_notes_too_long(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_document_request_payload({
                "document_type": "tax_statement",
                "notes": "x" * (NOTES_MAX_LENGTH + 1),
            })
        assert exc_info.value.field_errors == [{
            "field": "notes",
            "code": "too_long",
            "message": f"notes exceeds {NOTES_MAX_LENGTH} characters",
        }]

    def test_invalid_on_behalf_of(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_document_request_payload({
                "document_type": "tax_statement",
                "requested_on_behalf_of": "someone",
            })
        assert exc_info.value.field_errors[0]["code"] == "invalid_uuid"
