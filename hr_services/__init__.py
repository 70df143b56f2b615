"""
hr_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the kernel and the domain modules: the
    approval coordinator, per-instance leases, the side-effect dispatcher
    and the ports to downstream collaborators.  This is the layer that owns
    transactions and background workers.

Architecture position:
    Services -- orchestration over hr_modules + hr_kernel.

    Dependency direction:
        hr_services/ -> hr_modules/  (allowed)
        hr_services/ -> hr_kernel/   (allowed)
        hr_modules/  -> hr_services/ (FORBIDDEN)
        hr_kernel/   -> hr_services/ (FORBIDDEN)

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from hr_kernel.logging_config import get_logger

logger = get_logger("services")

from hr_services.approval_coordinator import ApprovalCoordinator
from hr_services.collaborators import (
    ArtifactGenerator,
    DatabaseRepaymentLedger,
    InMemoryArtifactGenerator,
    InMemoryNotificationService,
    NotificationService,
    RepaymentLedger,
    RoleResolver,
    StaticRoleProvider,
)
from hr_services.lease_manager import (
    DatabaseLeaseManager,
    InProcessLeaseManager,
    LeaseManager,
    build_lease_manager,
)
from hr_services.side_effect_dispatcher import (
    SideEffectContext,
    SideEffectDispatcher,
    build_default_dispatcher,
)

__all__ = [
    "ApprovalCoordinator",
    "ArtifactGenerator",
    "DatabaseLeaseManager",
    "DatabaseRepaymentLedger",
    "InMemoryArtifactGenerator",
    "InMemoryNotificationService",
    "InProcessLeaseManager",
    "LeaseManager",
    "NotificationService",
    "RepaymentLedger",
    "RoleResolver",
    "SideEffectContext",
    "SideEffectDispatcher",
    "StaticRoleProvider",
    "build_default_dispatcher",
    "build_lease_manager",
]
