"""Kernel services (flush-only; the caller owns the transaction)."""

from hr_kernel.services.instance_store import InstanceStore

__all__ = ["InstanceStore"]
