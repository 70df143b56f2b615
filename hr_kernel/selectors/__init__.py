"""Read-only selectors for workflow data."""

from hr_kernel.selectors.instance_selector import InstanceSelector

__all__ = ["InstanceSelector"]
