"""
Contract payload rules and signature readiness.
"""

from datetime import date

import pytest

from hr_kernel.exceptions import PayloadValidationError
from hr_modules.contract_lifecycle.models import (
    ContractType,
    missing_signature_fields,
    validate_contract_payload,
)


def _codes(exc_info):
    return {(e["field"], e["code"]) for e in exc_info.value.field_errors}


def _terms(contract_type="CDI", **extra):
    payload = {"contract_type": contract_type, "start_date": "2025-03-01"}
    payload.update(extra)
    return payload


class TestContractTypes:

    def test_permanent_contract(self):
        payload = validate_contract_payload(_terms(contract_number=" CT-7 "))

        assert payload == {
            "contract_type": "CDI",
            "start_date": "2025-03-01",
            "renewal_count": 0,
            "contract_number": "CT-7",
        }

    def test_type_is_case_insensitive(self):
        payload = validate_contract_payload(_terms("cdd", end_date="2025-09-01"))
        assert payload["contract_type"] == ContractType.CDD.value

    @pytest.mark.parametrize("contract_type", ["CDD", "STAGE", "INTERIM"])
    def test_fixed_term_needs_end_date(self, contract_type):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_contract_payload(_terms(contract_type))
        assert _codes(exc_info) == {("end_date", "required")}

    @pytest.mark.parametrize("contract_type", ["CDI", "CDDTI"])
    def test_open_ended_has_no_end_date(self, contract_type):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_contract_payload(_terms(
                contract_type,
                end_date="2026-01-01",
                cddti_task_description="Inventory",
            ))
        assert _codes(exc_info) == {("end_date", "not_allowed")}

    def test_end_must_follow_start(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_contract_payload(_terms("CDD", end_date="2025-03-01"))
        assert _codes(exc_info) == {("end_date", "before_start")}

    def test_cddti_needs_task(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_contract_payload(_terms("CDDTI"))
        assert _codes(exc_info) == {("cddti_task_description", "required")}

    def test_date_objects_accepted(self):
        payload = validate_contract_payload(_terms(
            "STAGE", start_date=date(2025, 6, 1), end_date=date(2025, 8, 31),
        ))
        assert payload["end_date"] == "2025-08-31"

    def test_unknown_type(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_contract_payload(_terms("FREELANCE"))
        assert _codes(exc_info) == {("contract_type", "invalid_choice")}


class TestFieldRules:

    @pytest.mark.parametrize("count,code", [(3, "out_of_range"), (-1, "out_of_range"), ("1", "invalid_type")])
    def test_renewal_count(self, count, code):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_contract_payload(_terms(renewal_count=count))
        assert _codes(exc_info) == {("renewal_count", code)}

    def test_unknown_fields_and_bad_dates_reported_together(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_contract_payload({
                "contract_type": "CDI",
                "start_date": "01/03/2025",
                "salary": 1,
            })
        assert _codes(exc_info) == {
            ("salary", "unknown_field"),
            ("start_date", "invalid_date"),
        }

    def test_amendment_reference_must_be_uuid(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_contract_payload(_terms(amends_instance_id="CT-1"))
        assert _codes(exc_info) == {("amends_instance_id", "invalid_uuid")}


class TestSignatureReadiness:

    def test_complete_permanent_contract(self):
        assert missing_signature_fields(_terms(contract_number="CT-1")) == []

    def test_contract_number_required(self):
        assert missing_signature_fields(_terms()) == ["contract_number"]

    def test_type_specific_fields(self):
        assert missing_signature_fields(_terms("CDD", contract_number="CT-1")) == ["end_date"]
        assert missing_signature_fields(_terms("CDDTI", contract_number="CT-1")) == [
            "cddti_task_description",
        ]

    def test_unknown_type_reports_base_fields_only(self):
        assert missing_signature_fields({"contract_type": "X"}) == [
            "start_date", "contract_number",
        ]
