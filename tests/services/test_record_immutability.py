"""
Tests for the ORM immutability listeners.

Covers:
- Transition records: no UPDATE, no DELETE
- Workflow instances: no DELETE; payload frozen once a contract is signed
- Outbox rows: identity columns fixed, succeeded rows final
"""

import pytest
from sqlalchemy import event, select

from hr_kernel.db.immutability import (
    _check_transition_record_immutability,
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from hr_kernel.domain.instance import TransitionRecord
from hr_kernel.domain.workflow import WorkflowDomain
from hr_kernel.exceptions import ImmutabilityViolationError, PayloadLockedError
from hr_kernel.models.instance import TransitionRecordModel, WorkflowInstanceModel
from hr_kernel.models.side_effect import SideEffectModel
from hr_kernel.services.instance_store import InstanceStore
from hr_modules.registry import get_definition

CONTRACTS = get_definition(WorkflowDomain.CONTRACT_LIFECYCLE)


@pytest.fixture
def store(session, deterministic_clock):
    return InstanceStore(session, deterministic_clock)


@pytest.fixture
def draft_contract(store, employee, hr_manager, contract_payload):
    return store.create(
        WorkflowDomain.CONTRACT_LIFECYCLE,
        subject_id=employee.actor_id,
        requested_by=hr_manager.actor_id,
        payload=contract_payload(),
        initial_state=CONTRACTS.initial_state,
    )


@pytest.fixture
def signed_contract(store, draft_contract, hr_manager, deterministic_clock):
    sign = CONTRACTS.find_transition("draft", "sign")
    return store.commit(
        draft_contract.id,
        expected_version=0,
        new_state="signed",
        record=TransitionRecord(
            sequence=1,
            from_state="draft",
            to_state="signed",
            action="sign",
            actor_id=hr_manager.actor_id,
            actor_role=hr_manager.role,
            timestamp=deterministic_clock.now(),
        ),
        side_effects=sign.side_effects,
    )


def _transition_model(session, instance_id):
    return session.execute(
        select(TransitionRecordModel).where(TransitionRecordModel.instance_id == instance_id)
    ).scalar_one()


def _side_effect_models(session, instance_id):
    return session.execute(
        select(SideEffectModel)
        .where(SideEffectModel.instance_id == instance_id)
        .order_by(SideEffectModel.kind)
    ).scalars().all()


class TestTransitionRecords:

    def test_update_blocked(self, session, signed_contract):
        model = _transition_model(session, signed_contract.id)
        model.reason = "rewritten"

        with pytest.raises(ImmutabilityViolationError, match="immutable"):
            session.flush()

    def test_delete_blocked(self, session, signed_contract):
        session.delete(_transition_model(session, signed_contract.id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestInstances:

    def test_delete_blocked(self, session, draft_contract):
        model = session.get(WorkflowInstanceModel, draft_contract.id)
        session.delete(model)

        with pytest.raises(ImmutabilityViolationError, match="never deleted"):
            session.flush()

    def test_draft_payload_may_change(self, session, draft_contract):
        model = session.get(WorkflowInstanceModel, draft_contract.id)
        model.payload = {**model.payload, "notes": "probation 3 months"}
        session.flush()

    def test_signed_payload_locked(self, session, signed_contract):
        model = session.get(WorkflowInstanceModel, signed_contract.id, populate_existing=True)
        assert model.state == "signed"
        model.payload = {**model.payload, "contract_number": "CT-FORGED"}

        with pytest.raises(PayloadLockedError) as exc_info:
            session.flush()
        assert exc_info.value.state == "signed"


class TestSideEffects:

    def test_identity_fields_fixed(self, session, signed_contract):
        row = _side_effect_models(session, signed_contract.id)[0]
        row.idempotency_key = "forged"

        with pytest.raises(ImmutabilityViolationError, match="idempotency_key"):
            session.flush()

    def test_bookkeeping_fields_may_change(self, session, signed_contract):
        row = _side_effect_models(session, signed_contract.id)[0]
        row.attempts = 1
        row.status = "pending_retry"
        row.last_error = "SIDE_EFFECT_FAILURE: downstream unavailable"
        session.flush()

    def test_succeeded_is_final(self, session, signed_contract):
        row = _side_effect_models(session, signed_contract.id)[0]
        row.status = "succeeded"
        row.result_ref = "doc-1"
        session.flush()

        row.status = "pending_retry"
        with pytest.raises(ImmutabilityViolationError, match="final"):
            session.flush()


class TestListenerLifecycle:

    def test_unregistered_guards_allow_writes(self, session, signed_contract):
        unregister_immutability_listeners()
        try:
            model = _transition_model(session, signed_contract.id)
            model.reason = "backfilled"
            session.flush()
        finally:
            register_immutability_listeners()

        model.reason = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_registration_is_idempotent(self):
        register_immutability_listeners()
        register_immutability_listeners()
        unregister_immutability_listeners()
        try:
            assert not event.contains(
                TransitionRecordModel, "before_update", _check_transition_record_immutability,
            )
        finally:
            register_immutability_listeners()
