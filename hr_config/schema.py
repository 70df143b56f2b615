"""
Configuration Schema (``hr_config.schema``).

Responsibility
--------------
Frozen dataclasses describing the engine configuration: salary-advance
policy limits, side-effect retry policy and per-instance lease settings.
Every value is validated on construction so an invalid configuration
fails at load time, never mid-transition.

Architecture position
---------------------
**Config layer** -- pure data.  No dependency on kernel, modules or
services.

Invariants enforced
-------------------
* All instances are frozen.
* Monetary limits are ``Decimal``, never float.
* Out-of-range values raise ``ValueError`` from ``__post_init__``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

VALID_LEASE_BACKENDS = {"memory", "database"}


@dataclass(frozen=True)
class AdvancePolicyConfig:
    """Salary-advance limits.

    The cap on a request is ``min(pct * net_salary, max_absolute_amount)``
    minus the outstanding balance of the subject's other active advances.
    Submission is limited to ``max_requests_per_month`` requests per
    subject per calendar month, and to subjects employed for at least
    ``min_employment_months`` full months.
    """

    max_percentage_of_net_salary: Decimal = Decimal("30")
    max_absolute_amount: Decimal | None = None
    min_advance_amount: Decimal = Decimal("10000")
    max_outstanding_advances: int = 1
    max_requests_per_month: int = 2
    min_employment_months: int = 3
    allowed_repayment_months: tuple[int, ...] = (1, 2, 3)
    default_currency: str = "XOF"

    def __post_init__(self):
        if not (Decimal("0") < self.max_percentage_of_net_salary <= Decimal("100")):
            raise ValueError("max_percentage_of_net_salary must be in (0, 100]")
        if self.max_absolute_amount is not None and self.max_absolute_amount <= 0:
            raise ValueError("max_absolute_amount must be positive when set")
        if self.min_advance_amount < 0:
            raise ValueError("min_advance_amount must be non-negative")
        if (
            self.max_absolute_amount is not None
            and self.min_advance_amount > self.max_absolute_amount
        ):
            raise ValueError("min_advance_amount cannot exceed max_absolute_amount")
        if self.max_outstanding_advances < 1:
            raise ValueError("max_outstanding_advances must be at least 1")
        if self.max_requests_per_month < 1:
            raise ValueError("max_requests_per_month must be at least 1")
        if self.min_employment_months < 0:
            raise ValueError("min_employment_months must be non-negative")
        if not self.allowed_repayment_months:
            raise ValueError("allowed_repayment_months cannot be empty")
        if any(m < 1 for m in self.allowed_repayment_months):
            raise ValueError("allowed_repayment_months must all be >= 1")
        if len(self.default_currency) != 3:
            raise ValueError(
                f"default_currency must be an ISO 4217 code, got '{self.default_currency}'"
            )


@dataclass(frozen=True)
class RetryPolicyConfig:
    """Side-effect execution and retry policy.

    Delay before attempt ``n + 1`` is
    ``min(base_delay_seconds * 2 ** (n - 1), max_delay_seconds)``.
    """

    max_attempts: int = 5
    notification_max_attempts: int = 3
    base_delay_seconds: float = 30.0
    max_delay_seconds: float = 3600.0
    handler_timeout_seconds: float = 30.0
    worker_count: int = 4

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not (1 <= self.notification_max_attempts <= self.max_attempts):
            raise ValueError("notification_max_attempts must be in [1, max_attempts]")
        if self.base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be positive")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds cannot be below base_delay_seconds")
        if self.handler_timeout_seconds <= 0:
            raise ValueError("handler_timeout_seconds must be positive")
        if self.worker_count < 1:
            raise ValueError("worker_count must be at least 1")


@dataclass(frozen=True)
class LeaseConfig:
    """Per-instance lease settings."""

    backend: str = "memory"
    acquire_timeout_seconds: float = 5.0
    ttl_seconds: float = 30.0
    poll_interval_seconds: float = 0.05

    def __post_init__(self):
        if self.backend not in VALID_LEASE_BACKENDS:
            raise ValueError(
                f"backend must be one of {sorted(VALID_LEASE_BACKENDS)}, got '{self.backend}'"
            )
        if self.acquire_timeout_seconds <= 0:
            raise ValueError("acquire_timeout_seconds must be positive")
        if self.ttl_seconds <= self.acquire_timeout_seconds:
            raise ValueError("ttl_seconds must exceed acquire_timeout_seconds")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration, as returned by ``get_active_config``."""

    config_id: str = "default"
    version: int = 1
    advance_policy: AdvancePolicyConfig = field(default_factory=AdvancePolicyConfig)
    retry_policy: RetryPolicyConfig = field(default_factory=RetryPolicyConfig)
    lease: LeaseConfig = field(default_factory=LeaseConfig)
    checksum: str = ""
