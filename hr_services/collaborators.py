"""
hr_services.collaborators -- ports to the systems the engine depends on.

Responsibility:
    Declares the interfaces the engine consumes (identity/role resolution,
    document generation, notifications, the repayment ledger) and ships
    the default implementations: a static role map, in-memory artifact and
    notification recorders that deduplicate on the idempotency key, and a
    database-backed repayment ledger.

Architecture position:
    Services layer.  May import from hr_kernel/ and hr_modules/.

Invariants enforced:
    - Every downstream call carries the side-effect idempotency key, and
      the in-memory defaults return the same result for a repeated key.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Protocol, runtime_checkable
from uuid import UUID, uuid5

from sqlalchemy.orm import Session, sessionmaker

from hr_kernel.db.engine import session_scope
from hr_kernel.domain.clock import Clock, SystemClock
from hr_kernel.domain.workflow import Actor, ActorRole
from hr_kernel.logging_config import get_logger
from hr_modules.salary_advance.service import RepaymentLedgerService

logger = get_logger("services.collaborators")

# Namespace for deterministic document/notification ids derived from keys
_RESULT_NAMESPACE = UUID("6f1c2a52-8d0e-4c1b-9a57-2f9e4b7d3c10")


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@runtime_checkable
class RoleResolver(Protocol):
    """Resolves an authenticated actor id to its role."""

    def resolve(self, actor_id: UUID) -> Actor:
        ...


class StaticRoleProvider:
    """Default RoleResolver backed by a simple dict.

    Unknown actors resolve to ``employee``.  Can be replaced with a
    database- or directory-backed implementation.
    """

    def __init__(self, role_map: Mapping[UUID, ActorRole] | None = None) -> None:
        self._role_map: dict[UUID, ActorRole] = dict(role_map or {})

    def assign(self, actor_id: UUID, role: ActorRole) -> None:
        self._role_map[actor_id] = role

    def resolve(self, actor_id: UUID) -> Actor:
        return Actor(actor_id=actor_id, role=self._role_map.get(actor_id, ActorRole.EMPLOYEE))


# ---------------------------------------------------------------------------
# Document generation
# ---------------------------------------------------------------------------


@runtime_checkable
class ArtifactGenerator(Protocol):
    """Produces a document and returns its id."""

    def generate(
        self,
        template_kind: str,
        payload: Mapping[str, Any],
        idempotency_key: str,
    ) -> str:
        ...


@dataclass
class GeneratedDocument:
    document_id: str
    template_kind: str
    payload: dict[str, Any]
    idempotency_key: str


class InMemoryArtifactGenerator:
    """Records generated documents; a repeated key returns the first id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.documents: dict[str, GeneratedDocument] = {}

    def generate(
        self,
        template_kind: str,
        payload: Mapping[str, Any],
        idempotency_key: str,
    ) -> str:
        with self._lock:
            existing = self.documents.get(idempotency_key)
            if existing is not None:
                return existing.document_id
            document_id = str(uuid5(_RESULT_NAMESPACE, idempotency_key))
            self.documents[idempotency_key] = GeneratedDocument(
                document_id=document_id,
                template_kind=template_kind,
                payload=dict(payload),
                idempotency_key=idempotency_key,
            )
        logger.info(
            "document_generated",
            extra={"document_id": document_id, "template_kind": template_kind},
        )
        return document_id


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@runtime_checkable
class NotificationService(Protocol):
    """Delivers a notification; returns a delivery id (or None)."""

    def notify(
        self,
        recipient_id: UUID,
        event_kind: str,
        payload: Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> str | None:
        ...


@dataclass
class SentNotification:
    notification_id: str
    recipient_id: UUID
    event_kind: str
    payload: dict[str, Any] = field(default_factory=dict)


class InMemoryNotificationService:
    """Records notifications; a repeated key is delivered once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_key: dict[str, SentNotification] = {}
        self.sent: list[SentNotification] = []

    def notify(
        self,
        recipient_id: UUID,
        event_kind: str,
        payload: Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> str | None:
        with self._lock:
            if idempotency_key is not None and idempotency_key in self._by_key:
                return self._by_key[idempotency_key].notification_id
            notification = SentNotification(
                notification_id=str(
                    uuid5(_RESULT_NAMESPACE, idempotency_key or f"{recipient_id}:{len(self.sent)}")
                ),
                recipient_id=recipient_id,
                event_kind=event_kind,
                payload=dict(payload),
            )
            self.sent.append(notification)
            if idempotency_key is not None:
                self._by_key[idempotency_key] = notification
        return notification.notification_id


# ---------------------------------------------------------------------------
# Repayment ledger
# ---------------------------------------------------------------------------


@runtime_checkable
class RepaymentLedger(Protocol):
    """Creates the repayment schedule of an approved advance."""

    def schedule(
        self,
        instance_id: UUID,
        amount: Decimal,
        months: int,
        disbursed_on: date,
        idempotency_key: str,
    ) -> str:
        ...


class DatabaseRepaymentLedger:
    """RepaymentLedger writing ``advance_repayments`` in its own transaction."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def schedule(
        self,
        instance_id: UUID,
        amount: Decimal,
        months: int,
        disbursed_on: date,
        idempotency_key: str,
    ) -> str:
        with session_scope(self._session_factory) as session:
            return RepaymentLedgerService(session, self._clock).schedule(
                instance_id, amount, months, disbursed_on, idempotency_key,
            )
