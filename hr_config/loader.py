"""
Configuration Loader (``hr_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``hr_config.schema`` dataclasses.  The single public entry point for
runtime config is ``hr_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from hr_config.schema import (
    AdvancePolicyConfig,
    EngineConfig,
    LeaseConfig,
    RetryPolicyConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Read ``path`` with ``yaml.safe_load``; an empty file reads as ``{}``."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _reject_unknown_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {sorted(unknown)}")


def parse_decimal(value: Any, name: str) -> Decimal:
    """Parse a Decimal from YAML (int, str or float literal)."""
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def parse_advance_policy(data: dict[str, Any]) -> AdvancePolicyConfig:
    """Parse an ``AdvancePolicyConfig`` from the ``advance_policy`` section."""
    defaults = AdvancePolicyConfig()
    _reject_unknown_keys("advance_policy", data, {
        "max_percentage_of_net_salary",
        "max_absolute_amount",
        "min_advance_amount",
        "max_outstanding_advances",
        "max_requests_per_month",
        "min_employment_months",
        "allowed_repayment_months",
        "default_currency",
    })
    absolute = data.get("max_absolute_amount")
    return AdvancePolicyConfig(
        max_percentage_of_net_salary=parse_decimal(
            data.get("max_percentage_of_net_salary", defaults.max_percentage_of_net_salary),
            "max_percentage_of_net_salary",
        ),
        max_absolute_amount=(
            parse_decimal(absolute, "max_absolute_amount") if absolute is not None else None
        ),
        min_advance_amount=parse_decimal(
            data.get("min_advance_amount", defaults.min_advance_amount),
            "min_advance_amount",
        ),
        max_outstanding_advances=int(
            data.get("max_outstanding_advances", defaults.max_outstanding_advances)
        ),
        max_requests_per_month=int(
            data.get("max_requests_per_month", defaults.max_requests_per_month)
        ),
        min_employment_months=int(
            data.get("min_employment_months", defaults.min_employment_months)
        ),
        allowed_repayment_months=tuple(
            int(m) for m in data.get("allowed_repayment_months", defaults.allowed_repayment_months)
        ),
        default_currency=str(data.get("default_currency", defaults.default_currency)),
    )


def parse_retry_policy(data: dict[str, Any]) -> RetryPolicyConfig:
    """Parse a ``RetryPolicyConfig`` from the ``retry_policy`` section."""
    defaults = RetryPolicyConfig()
    _reject_unknown_keys("retry_policy", data, set(RetryPolicyConfig.__dataclass_fields__))
    return RetryPolicyConfig(
        max_attempts=int(data.get("max_attempts", defaults.max_attempts)),
        notification_max_attempts=int(
            data.get("notification_max_attempts", defaults.notification_max_attempts)
        ),
        base_delay_seconds=float(data.get("base_delay_seconds", defaults.base_delay_seconds)),
        max_delay_seconds=float(data.get("max_delay_seconds", defaults.max_delay_seconds)),
        handler_timeout_seconds=float(
            data.get("handler_timeout_seconds", defaults.handler_timeout_seconds)
        ),
        worker_count=int(data.get("worker_count", defaults.worker_count)),
    )


def parse_lease(data: dict[str, Any]) -> LeaseConfig:
    """Parse a ``LeaseConfig`` from the ``lease`` section."""
    defaults = LeaseConfig()
    _reject_unknown_keys("lease", data, set(LeaseConfig.__dataclass_fields__))
    return LeaseConfig(
        backend=str(data.get("backend", defaults.backend)),
        acquire_timeout_seconds=float(
            data.get("acquire_timeout_seconds", defaults.acquire_timeout_seconds)
        ),
        ttl_seconds=float(data.get("ttl_seconds", defaults.ttl_seconds)),
        poll_interval_seconds=float(
            data.get("poll_interval_seconds", defaults.poll_interval_seconds)
        ),
    )


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse a complete ``EngineConfig`` from a loaded YAML document.

    Postconditions:
        - ``checksum`` is the SHA-256 of the canonical source document.
    """
    _reject_unknown_keys("root", data, {
        "config_id", "version", "advance_policy", "retry_policy", "lease",
    })
    return EngineConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        advance_policy=parse_advance_policy(data.get("advance_policy") or {}),
        retry_policy=parse_retry_policy(data.get("retry_policy") or {}),
        lease=parse_lease(data.get("lease") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the raw YAML mapping, key order ignored; logged at load time."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
