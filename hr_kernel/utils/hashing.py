"""
Payload digests for the transition history.

``hash_payload`` freezes the request payload an accepted transition acted
on.  Two payloads that differ only in key order or in trailing zeros of a
Decimal amount ("150000" vs "150000.00") produce the same digest.
"""

import hashlib
import json
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID


def _encode_value(value: Any) -> str:
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, date):  # datetime included
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"cannot hash value of type {type(value).__name__}")


def canonical_payload(payload: Any) -> str:
    """Compact JSON with sorted keys, the input of ``hash_payload``."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=_encode_value)


def hash_payload(payload: dict) -> str:
    """SHA-256 hex digest (64 characters) of the canonical payload."""
    return hashlib.sha256(canonical_payload(payload).encode("utf-8")).hexdigest()
