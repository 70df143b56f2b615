"""
Tests for InstanceStore -- durable instances with version-checked commits.

Covers:
- create(): version 0, empty history, timestamps from the clock
- commit(): state/version/history/outbox written together, idempotency keys
- commit(): stale version, record/commit mismatch, unknown instance
- update_payload(): editable states only, payload revision check
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from hr_kernel.domain.instance import SideEffectStatus, TransitionRecord
from hr_kernel.domain.workflow import Actor, WorkflowDomain
from hr_kernel.exceptions import (
    InstanceNotFoundError,
    OptimisticLockError,
    PayloadLockedError,
)
from hr_kernel.models.side_effect import SideEffectModel
from hr_kernel.services.instance_store import InstanceStore
from hr_kernel.utils.idempotency import generate_side_effect_key, parse_side_effect_key
from hr_modules.registry import get_definition

DOCS = get_definition(WorkflowDomain.DOCUMENT_REQUEST)
ADVANCES = get_definition(WorkflowDomain.SALARY_ADVANCE)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_record(sequence, from_state, to_state, action, actor, timestamp, reason=None):
    return TransitionRecord(
        sequence=sequence,
        from_state=from_state,
        to_state=to_state,
        action=action,
        actor_id=actor.actor_id,
        actor_role=actor.role,
        timestamp=timestamp,
        reason=reason,
    )


@pytest.fixture
def store(session, deterministic_clock):
    return InstanceStore(session, deterministic_clock)


@pytest.fixture
def document_request(store, employee):
    return store.create(
        WorkflowDomain.DOCUMENT_REQUEST,
        subject_id=employee.actor_id,
        requested_by=employee.actor_id,
        payload={"document_type": "work_certificate"},
        initial_state=DOCS.initial_state,
    )


@pytest.fixture
def advance(store, employee, advance_payload):
    return store.create(
        WorkflowDomain.SALARY_ADVANCE,
        subject_id=employee.actor_id,
        requested_by=employee.actor_id,
        payload=advance_payload(),
        initial_state=ADVANCES.initial_state,
    )


def approve_document(store, instance, actor, clock):
    transition = DOCS.find_transition("pending", "approve")
    return store.commit(
        instance.id,
        expected_version=instance.version,
        new_state="ready",
        record=make_record(1, "pending", "ready", "approve", actor, clock.now()),
        side_effects=transition.side_effects,
    )


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


class TestCreate:

    def test_new_instance_starts_at_version_zero(self, document_request, deterministic_clock):
        assert document_request.version == 0
        assert document_request.state == "pending"
        assert document_request.history == ()
        assert document_request.created_at == deterministic_clock.now()
        assert document_request.updated_at == document_request.created_at

    def test_load_round_trips(self, store, document_request):
        loaded = store.load(document_request.id)
        assert loaded == document_request

    def test_load_unknown_instance(self, store):
        with pytest.raises(InstanceNotFoundError):
            store.load(uuid4())


# ---------------------------------------------------------------------------
# commit
# ---------------------------------------------------------------------------


class TestCommit:

    def test_commit_moves_state_and_version_together(
        self, store, document_request, hr_manager, deterministic_clock,
    ):
        deterministic_clock.advance(60)
        committed = approve_document(store, document_request, hr_manager, deterministic_clock)

        assert committed.state == "ready"
        assert committed.version == 1
        assert len(committed.history) == 1
        assert committed.updated_at == deterministic_clock.now()
        record = committed.history[0]
        assert record.actor_id == hr_manager.actor_id
        assert record.from_state == "pending"
        assert record.to_state == "ready"

    def test_commit_enqueues_pending_side_effects(
        self, store, document_request, hr_manager, deterministic_clock,
    ):
        committed = approve_document(store, document_request, hr_manager, deterministic_clock)
        record = committed.history[0]

        assert [o.kind for o in record.resulting_side_effects] == [
            "generate_document", "notify_requester",
        ]
        for outcome in record.resulting_side_effects:
            assert outcome.status == SideEffectStatus.PENDING
            assert outcome.attempts == 0
            assert outcome.idempotency_key == generate_side_effect_key(
                document_request.id, 1, record.timestamp, outcome.kind,
            )
            instance_id, sequence, _, kind = parse_side_effect_key(outcome.idempotency_key)
            assert instance_id == str(document_request.id)
            assert sequence == 1
            assert kind == outcome.kind

    def test_stale_version_writes_nothing(
        self, store, document_request, hr_manager, deterministic_clock,
    ):
        approve_document(store, document_request, hr_manager, deterministic_clock)

        with pytest.raises(OptimisticLockError) as exc_info:
            store.commit(
                document_request.id,
                expected_version=0,
                new_state="rejected",
                record=make_record(
                    1, "pending", "rejected", "reject", hr_manager,
                    deterministic_clock.now(), reason="late",
                ),
            )
        assert exc_info.value.expected_version == 0

        current = store.load(document_request.id)
        assert current.state == "ready"
        assert current.version == 1
        assert len(current.history) == 1

    def test_sequence_must_follow_version(
        self, store, document_request, hr_manager, deterministic_clock,
    ):
        with pytest.raises(ValueError, match="sequence"):
            store.commit(
                document_request.id,
                expected_version=0,
                new_state="ready",
                record=make_record(2, "pending", "ready", "approve", hr_manager, deterministic_clock.now()),
            )

    def test_record_must_match_new_state(
        self, store, document_request, hr_manager, deterministic_clock,
    ):
        with pytest.raises(ValueError, match="to_state"):
            store.commit(
                document_request.id,
                expected_version=0,
                new_state="rejected",
                record=make_record(1, "pending", "ready", "approve", hr_manager, deterministic_clock.now()),
            )

    def test_commit_unknown_instance(self, store, hr_manager, deterministic_clock):
        with pytest.raises(InstanceNotFoundError):
            store.commit(
                uuid4(),
                expected_version=0,
                new_state="ready",
                record=make_record(1, "pending", "ready", "approve", hr_manager, deterministic_clock.now()),
            )

    def test_version_equals_history_length(
        self, store, advance, hr_manager, deterministic_clock,
    ):
        active = store.commit(
            advance.id, 0, "active",
            make_record(1, "pending", "active", "approve", hr_manager, deterministic_clock.now()),
        )
        deterministic_clock.advance(timedelta(days=60).total_seconds())
        repaid = store.commit(
            advance.id, 1, "repaid",
            make_record(2, "active", "repaid", "mark_repaid", Actor.system(), deterministic_clock.now()),
        )

        assert active.version == len(active.history) == 1
        assert repaid.version == len(repaid.history) == 2
        assert [r.sequence for r in repaid.history] == [1, 2]
        assert repaid.derived_state(ADVANCES.initial_state) == repaid.state

    def test_outbox_rows_reference_their_transition(
        self, store, session, document_request, hr_manager, deterministic_clock,
    ):
        approve_document(store, document_request, hr_manager, deterministic_clock)

        rows = session.execute(
            select(SideEffectModel).where(SideEffectModel.instance_id == document_request.id)
        ).scalars().all()
        assert len(rows) == 2
        assert {r.sequence for r in rows} == {1}
        assert len({r.transition_id for r in rows}) == 1
        assert {r.template for r in rows} == {"document_request", None}


# ---------------------------------------------------------------------------
# update_payload
# ---------------------------------------------------------------------------


class TestUpdatePayload:

    def test_edit_in_editable_state(self, store, advance, advance_payload):
        updated = store.update_payload(
            advance.id,
            advance_payload(amount="120000"),
            ADVANCES.editable_states,
        )

        assert updated.payload["requested_amount"] == "120000"
        assert updated.payload_revision == 1
        assert updated.version == 0

    def test_stale_revision(self, store, advance, advance_payload):
        store.update_payload(advance.id, advance_payload(amount="120000"), ADVANCES.editable_states)

        with pytest.raises(OptimisticLockError):
            store.update_payload(
                advance.id,
                advance_payload(amount="130000"),
                ADVANCES.editable_states,
                expected_revision=0,
            )

    def test_locked_after_approval(
        self, store, advance, advance_payload, hr_manager, deterministic_clock,
    ):
        store.commit(
            advance.id, 0, "active",
            make_record(1, "pending", "active", "approve", hr_manager, deterministic_clock.now()),
        )

        with pytest.raises(PayloadLockedError) as exc_info:
            store.update_payload(advance.id, advance_payload(amount="1"), ADVANCES.editable_states)
        assert exc_info.value.state == "active"

    def test_document_requests_are_never_editable(self, store, document_request):
        with pytest.raises(PayloadLockedError):
            store.update_payload(
                document_request.id, {"document_type": "tax_statement"}, DOCS.editable_states,
            )
