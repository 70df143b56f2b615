"""
Payload validation helpers shared by the domain modules.

Each module validates a raw payload into a normalized, JSON-safe dict.
Errors are collected per field so the caller sees every problem at once.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from hr_kernel.exceptions import PayloadValidationError


class FieldErrors:
    """Collects ``{"field", "code", "message"}`` entries."""

    def __init__(self, domain: str):
        self.domain = domain
        self.errors: list[dict[str, Any]] = []

    def add(self, field: str, code: str, message: str) -> None:
        self.errors.append({"field": field, "code": code, "message": message})

    def raise_if_any(self) -> None:
        if self.errors:
            raise PayloadValidationError(self.domain, list(self.errors))


def optional_text(
    errors: FieldErrors,
    payload: dict[str, Any],
    field: str,
    max_length: int | None = None,
) -> str | None:
    value = payload.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        errors.add(field, "invalid_type", f"{field} must be a string")
        return None
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        errors.add(field, "too_long", f"{field} exceeds {max_length} characters")
        return None
    return value or None


def parse_amount(errors: FieldErrors, payload: dict[str, Any], field: str) -> Decimal | None:
    """Parse a positive monetary amount; floats are rejected."""
    raw = payload.get(field)
    if raw is None:
        errors.add(field, "required", f"{field} is required")
        return None
    if isinstance(raw, (bool, float)):
        errors.add(field, "invalid_type", f"{field} must be a decimal string or integer")
        return None
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        errors.add(field, "invalid_amount", f"{field} is not a number")
        return None
    if not value.is_finite() or value <= 0:
        errors.add(field, "not_positive", f"{field} must be greater than zero")
        return None
    return value.quantize(Decimal("0.01"))


def parse_date(errors: FieldErrors, payload: dict[str, Any], field: str) -> date | None:
    raw = payload.get(field)
    if raw is None:
        return None
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw))
    except ValueError:
        errors.add(field, "invalid_date", f"{field} must be an ISO date (YYYY-MM-DD)")
        return None


def parse_uuid(errors: FieldErrors, payload: dict[str, Any], field: str) -> UUID | None:
    raw = payload.get(field)
    if raw is None:
        return None
    try:
        return raw if isinstance(raw, UUID) else UUID(str(raw))
    except ValueError:
        errors.add(field, "invalid_uuid", f"{field} must be a UUID")
        return None


def reject_unknown(errors: FieldErrors, payload: dict[str, Any], allowed: set[str]) -> None:
    for key in sorted(set(payload) - allowed):
        errors.add(key, "unknown_field", f"unknown field '{key}'")
