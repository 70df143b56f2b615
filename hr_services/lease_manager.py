"""
hr_services.lease_manager -- exclusive per-instance leases.

Responsibility:
    Serializes every mutation of one workflow instance.  The coordinator
    holds the lease while it loads, validates and commits; side effects run
    after it is released.  Different instances never contend.

Architecture position:
    Services layer.  The in-process manager needs nothing but threads; the
    database manager uses the ``workflow_leases`` table so several
    processes sharing one database also serialize.

Invariants enforced:
    - At most one holder per instance at a time (per process for
      InProcessLeaseManager, per database for DatabaseLeaseManager).
    - A subject lease (``subject_lease_key``) is always taken before the
      instance lease, never after.
    - A database lease expires after ``ttl_seconds`` so a crashed holder
      cannot block an instance forever.

Failure modes:
    - LeaseUnavailableError when the lease is not acquired within the
      timeout.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator
from uuid import UUID, uuid4, uuid5

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from hr_config.schema import LeaseConfig
from hr_kernel.db.engine import session_scope
from hr_kernel.domain.clock import Clock, SystemClock
from hr_kernel.exceptions import LeaseUnavailableError
from hr_kernel.logging_config import get_logger
from hr_kernel.models.lease import InstanceLeaseModel

logger = get_logger("services.lease_manager")

# Namespace for lease keys that stand for a subject rather than an instance.
SUBJECT_LEASE_NAMESPACE = UUID("6f1d3c52-8a47-5b0e-9c3a-2e4f7d81b690")


def subject_lease_key(domain: str, subject_id: UUID) -> UUID:
    """Lease key serializing one subject's instances within ``domain``."""
    return uuid5(SUBJECT_LEASE_NAMESPACE, f"{domain}:{subject_id}")


class LeaseManager(ABC):
    """Exclusive lease on one workflow instance."""

    def __init__(self, acquire_timeout_seconds: float = 5.0):
        self.acquire_timeout_seconds = acquire_timeout_seconds

    @abstractmethod
    def acquire(self, instance_id: UUID, timeout: float | None = None) -> str:
        """Block until the lease is held; return the holder token.

        Raises:
            LeaseUnavailableError: If not acquired within ``timeout``.
        """

    @abstractmethod
    def release(self, instance_id: UUID, token: str) -> None:
        """Release a lease held under ``token``."""

    @contextmanager
    def lease(self, instance_id: UUID, timeout: float | None = None) -> Iterator[str]:
        """Hold the lease for the duration of the ``with`` block."""
        token = self.acquire(instance_id, timeout)
        try:
            yield token
        finally:
            self.release(instance_id, token)


class _LockEntry:
    __slots__ = ("lock", "users", "holder")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0
        self.holder: str | None = None


class InProcessLeaseManager(LeaseManager):
    """Leases backed by one ``threading.Lock`` per instance.

    Lock entries are reference-counted and dropped when no thread holds or
    waits for them.
    """

    def __init__(self, acquire_timeout_seconds: float = 5.0):
        super().__init__(acquire_timeout_seconds)
        self._registry_lock = threading.Lock()
        self._entries: dict[UUID, _LockEntry] = {}

    def _enter(self, instance_id: UUID) -> _LockEntry:
        with self._registry_lock:
            entry = self._entries.get(instance_id)
            if entry is None:
                entry = self._entries[instance_id] = _LockEntry()
            entry.users += 1
            return entry

    def _leave(self, instance_id: UUID, entry: _LockEntry) -> None:
        with self._registry_lock:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(instance_id, None)

    def acquire(self, instance_id: UUID, timeout: float | None = None) -> str:
        timeout = self.acquire_timeout_seconds if timeout is None else timeout
        entry = self._enter(instance_id)
        if not entry.lock.acquire(timeout=timeout):
            self._leave(instance_id, entry)
            logger.warning(
                "lease_unavailable",
                extra={"instance_id": str(instance_id), "timeout_seconds": timeout},
            )
            raise LeaseUnavailableError(str(instance_id), timeout)
        token = uuid4().hex
        entry.holder = token
        return token

    def release(self, instance_id: UUID, token: str) -> None:
        with self._registry_lock:
            entry = self._entries.get(instance_id)
        if entry is None or entry.holder != token:
            logger.warning(
                "lease_release_not_held",
                extra={"instance_id": str(instance_id)},
            )
            return
        entry.holder = None
        entry.lock.release()
        self._leave(instance_id, entry)

    def is_held(self, instance_id: UUID) -> bool:
        with self._registry_lock:
            entry = self._entries.get(instance_id)
        return entry is not None and entry.holder is not None


class DatabaseLeaseManager(LeaseManager):
    """Leases stored as rows of ``workflow_leases``.

    Acquisition inserts the row; if it exists and has expired it is taken
    over with a conditional UPDATE.  Otherwise the caller polls until the
    timeout.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        acquire_timeout_seconds: float = 5.0,
        ttl_seconds: float = 30.0,
        poll_interval_seconds: float = 0.05,
    ):
        super().__init__(acquire_timeout_seconds)
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._ttl = timedelta(seconds=ttl_seconds)
        self._poll_interval = poll_interval_seconds

    def _try_acquire(self, instance_id: UUID, token: str) -> bool:
        now = self._clock.now()
        try:
            with session_scope(self._session_factory) as session:
                session.add(
                    InstanceLeaseModel(
                        id=instance_id,
                        holder=token,
                        acquired_at=now,
                        expires_at=now + self._ttl,
                    )
                )
            return True
        except IntegrityError:
            pass

        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(InstanceLeaseModel)
                .where(
                    InstanceLeaseModel.id == instance_id,
                    InstanceLeaseModel.expires_at < now,
                )
                .values(holder=token, acquired_at=now, expires_at=now + self._ttl)
            )
            taken_over = result.rowcount == 1
        if taken_over:
            logger.warning(
                "lease_expired_taken_over",
                extra={"instance_id": str(instance_id)},
            )
        return taken_over

    def acquire(self, instance_id: UUID, timeout: float | None = None) -> str:
        timeout = self.acquire_timeout_seconds if timeout is None else timeout
        token = uuid4().hex
        deadline = time.monotonic() + timeout
        while True:
            if self._try_acquire(instance_id, token):
                return token
            if time.monotonic() >= deadline:
                logger.warning(
                    "lease_unavailable",
                    extra={"instance_id": str(instance_id), "timeout_seconds": timeout},
                )
                raise LeaseUnavailableError(str(instance_id), timeout)
            time.sleep(self._poll_interval)

    def release(self, instance_id: UUID, token: str) -> None:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(InstanceLeaseModel).where(
                    InstanceLeaseModel.id == instance_id,
                    InstanceLeaseModel.holder == token,
                )
            )
            released = result.rowcount == 1
        if not released:
            logger.warning(
                "lease_release_not_held",
                extra={"instance_id": str(instance_id)},
            )


def build_lease_manager(
    config: LeaseConfig,
    session_factory: sessionmaker[Session] | None = None,
    clock: Clock | None = None,
) -> LeaseManager:
    """Lease manager selected by ``config.backend``."""
    if config.backend == "database":
        if session_factory is None:
            raise ValueError("the database lease backend needs a session factory")
        return DatabaseLeaseManager(
            session_factory,
            clock=clock,
            acquire_timeout_seconds=config.acquire_timeout_seconds,
            ttl_seconds=config.ttl_seconds,
            poll_interval_seconds=config.poll_interval_seconds,
        )
    return InProcessLeaseManager(config.acquire_timeout_seconds)
