"""ORM models for the workflow kernel."""

from hr_kernel.models.instance import TransitionRecordModel, WorkflowInstanceModel
from hr_kernel.models.lease import InstanceLeaseModel
from hr_kernel.models.side_effect import SideEffectModel

__all__ = [
    "WorkflowInstanceModel",
    "TransitionRecordModel",
    "SideEffectModel",
    "InstanceLeaseModel",
]
