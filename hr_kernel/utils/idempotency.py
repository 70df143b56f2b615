"""
Idempotency key generation for side effects.

The key identifies one side effect of one accepted transition, so the same
effect is never enqueued or executed twice, even under redelivery.  It is
stored on the outbox row under a unique constraint and handed to downstream
handlers so they can deduplicate on their side.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def generate_side_effect_key(
    instance_id: UUID | str,
    sequence: int,
    timestamp: datetime,
    kind: str,
) -> str:
    """
    Generate the idempotency key for a side effect.

    Format: instance_id:sequence:timestamp_us:kind

    ``timestamp_us`` is the transition timestamp in integer microseconds
    since the epoch, which keeps the key free of separators.

    Example:
        >>> generate_side_effect_key(uuid, 1, ts, "generate_document")
        "550e8400-e29b-41d4-a716-446655440000:1:1736154000000000:generate_document"
    """
    micros = (timestamp - _EPOCH) // timedelta(microseconds=1)
    return f"{instance_id}:{sequence}:{micros}:{kind}"


def parse_side_effect_key(key: str) -> tuple[str, int, int, str]:
    """
    Parse a side-effect key into (instance_id, sequence, timestamp_us, kind).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 3)
    if len(parts) != 4:
        raise ValueError(f"Invalid side effect key format: {key}")
    try:
        return parts[0], int(parts[1]), int(parts[2]), parts[3]
    except ValueError:
        raise ValueError(f"Invalid side effect key format: {key}") from None
