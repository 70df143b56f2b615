"""
Pytest fixtures for the HR workflow engine test suite.

Provides:
- A per-test SQLite file database (WAL journaling, busy timeout) with every
  table created, so threads in concurrency tests share real storage
- A DeterministicClock and a set of actors, one per role
- An ApprovalCoordinator wired to in-memory collaborators and an inline
  side-effect dispatcher
- Structured log capture

Environment Variables:
- DATABASE_URL: run the suite against another database (e.g. PostgreSQL).
  If not set, each test gets its own SQLite file under tmp_path.
"""

import json
import logging
import os
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from hr_config.schema import EngineConfig, LeaseConfig, RetryPolicyConfig
from hr_kernel.db.engine import build_engine
from hr_kernel.domain.clock import DeterministicClock
from hr_kernel.domain.workflow import Actor, ActorRole
from hr_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from hr_modules._orm_registry import create_all_tables
from hr_services.approval_coordinator import ApprovalCoordinator
from hr_services.collaborators import (
    DatabaseRepaymentLedger,
    InMemoryArtifactGenerator,
    InMemoryNotificationService,
    StaticRoleProvider,
)
from hr_services.lease_manager import InProcessLeaseManager
from hr_services.side_effect_dispatcher import build_default_dispatcher


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _json_logging():
    reset_logging()
    configure_logging(level="DEBUG")
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _fresh_log_context():
    """Context bound by one test never leaks into the next."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Returns a callable listing the JSON records emitted under ``hr_kernel``
    since the fixture was set up, oldest first.
    """
    buffer = StringIO()
    capture = logging.StreamHandler(buffer)
    capture.setFormatter(StructuredFormatter())
    kernel_logger = logging.getLogger("hr_kernel")
    saved_level = kernel_logger.level
    kernel_logger.addHandler(capture)
    kernel_logger.setLevel(logging.DEBUG)

    def records() -> list[dict]:
        return [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    try:
        yield records
    finally:
        kernel_logger.removeHandler(capture)
        kernel_logger.setLevel(saved_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """Engine on a fresh database with every table created."""
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'hr_workflow.db'}"
    engine = build_engine(url)
    create_all_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """A session for direct store/ledger tests; rolled back at teardown."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Clock, config and actors
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def retry_policy() -> RetryPolicyConfig:
    return RetryPolicyConfig(
        max_attempts=5,
        notification_max_attempts=3,
        base_delay_seconds=30,
        max_delay_seconds=3600,
        handler_timeout_seconds=2,
        worker_count=4,
    )


@pytest.fixture
def engine_config(retry_policy) -> EngineConfig:
    return EngineConfig(
        config_id="test",
        retry_policy=retry_policy,
        lease=LeaseConfig(acquire_timeout_seconds=5, ttl_seconds=30),
    )


@pytest.fixture
def employee() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.EMPLOYEE)


@pytest.fixture
def other_employee() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.EMPLOYEE)


@pytest.fixture
def manager() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.MANAGER)


@pytest.fixture
def hr_manager() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.HR_MANAGER)


@pytest.fixture
def second_hr_manager() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.HR_MANAGER)


@pytest.fixture
def tenant_admin() -> Actor:
    return Actor(actor_id=uuid4(), role=ActorRole.TENANT_ADMIN)


@pytest.fixture
def role_provider(employee, other_employee, manager, hr_manager, second_hr_manager, tenant_admin):
    return StaticRoleProvider({
        a.actor_id: a.role
        for a in (employee, other_employee, manager, hr_manager, second_hr_manager, tenant_admin)
    })


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def artifact_generator() -> InMemoryArtifactGenerator:
    return InMemoryArtifactGenerator()


@pytest.fixture
def notification_service() -> InMemoryNotificationService:
    return InMemoryNotificationService()


@pytest.fixture
def dispatcher(
    session_factory,
    artifact_generator,
    notification_service,
    retry_policy,
    deterministic_clock,
):
    """Dispatcher that runs side effects on the calling thread."""
    d = build_default_dispatcher(
        session_factory,
        artifact_generator,
        notification_service,
        DatabaseRepaymentLedger(session_factory, deterministic_clock),
        retry_policy=retry_policy,
        clock=deterministic_clock,
        inline=True,
    )
    yield d
    d.shutdown()


@pytest.fixture
def lease_manager() -> InProcessLeaseManager:
    return InProcessLeaseManager(acquire_timeout_seconds=5)


@pytest.fixture
def coordinator(
    session_factory,
    deterministic_clock,
    engine_config,
    lease_manager,
    dispatcher,
    role_provider,
) -> ApprovalCoordinator:
    return ApprovalCoordinator(
        session_factory,
        clock=deterministic_clock,
        config=engine_config,
        lease_manager=lease_manager,
        dispatcher=dispatcher,
        role_resolver=role_provider,
    )


# =============================================================================
# Payload builders
# =============================================================================


@pytest.fixture
def advance_payload():
    def _build(amount="100000", net="500000", months=2, **extra):
        payload = {
            "requested_amount": amount,
            "net_monthly_salary": net,
            "repayment_months": months,
            "currency": "XOF",
            "hire_date": "2020-01-15",
        }
        payload.update(extra)
        return payload

    return _build


@pytest.fixture
def contract_payload():
    def _build(contract_type="CDI", **extra):
        payload = {
            "contract_type": contract_type,
            "start_date": "2025-02-01",
            "contract_number": "CT-2025-001",
        }
        if contract_type in ("CDD", "STAGE", "INTERIM"):
            payload["end_date"] = "2025-12-31"
        if contract_type == "CDDTI":
            payload["cddti_task_description"] = "Warehouse inventory migration"
        payload.update(extra)
        return payload

    return _build
