"""
Tests for workflow definitions and the module registry.

Covers:
- WorkflowDefinition construction invariants
- Registry contents (three domains, closed state enums)
- Payload-lock registration for the immutability listeners
- Submission gates
"""

from uuid import uuid4

import pytest

from hr_config.schema import AdvancePolicyConfig
from hr_kernel.db.immutability import locked_payload_states
from hr_kernel.domain.workflow import (
    Actor,
    ActorRole,
    RoleGate,
    SideEffectCategory,
    Transition,
    WorkflowDefinition,
    WorkflowDomain,
)
from hr_modules.contract_lifecycle import ContractState
from hr_modules.registry import WORKFLOW_DEFINITIONS, build_modules, get_definition, get_module


def _definition(**overrides):
    kwargs = dict(
        domain=WorkflowDomain.CONTRACT_LIFECYCLE,
        description="test",
        state_type=ContractState,
        initial_state="draft",
        transitions=(
            Transition("draft", "signed", action="sign", gate=RoleGate(roles=frozenset({ActorRole.HR_MANAGER}))),
        ),
        terminal_states=("signed",),
    )
    kwargs.update(overrides)
    return WorkflowDefinition(**kwargs)


class TestDefinitionInvariants:

    def test_valid_definition(self):
        definition = _definition()
        assert definition.states == ("draft", "signed")
        assert definition.actions == frozenset({"sign"})

    def test_unknown_initial_state(self):
        with pytest.raises(ValueError, match="initial state"):
            _definition(initial_state="archived")

    def test_transition_to_unknown_state(self):
        with pytest.raises(ValueError, match="unknown state"):
            _definition(transitions=(
                Transition("draft", "archived", action="archive", gate=RoleGate()),
            ))

    def test_terminal_state_with_outgoing_transition(self):
        with pytest.raises(ValueError, match="terminal state"):
            _definition(transitions=(
                Transition("draft", "signed", action="sign", gate=RoleGate()),
                Transition("signed", "draft", action="reopen", gate=RoleGate()),
            ))

    def test_duplicate_state_action_pair(self):
        with pytest.raises(ValueError, match="duplicate"):
            _definition(transitions=(
                Transition("draft", "signed", action="sign", gate=RoleGate()),
                Transition("draft", "signed", action="sign", gate=RoleGate(allow_subject=True)),
            ))

    def test_parse_state_rejects_unknown(self):
        with pytest.raises(ValueError):
            _definition().parse_state("archived")


class TestRegistry:

    def test_all_domains_registered(self):
        assert set(WORKFLOW_DEFINITIONS) == set(WorkflowDomain)

    def test_get_definition_accepts_string(self):
        assert get_definition("salary_advance").domain == WorkflowDomain.SALARY_ADVANCE

    def test_unknown_domain(self):
        with pytest.raises(ValueError):
            get_definition("leave_request")

    @pytest.mark.parametrize("domain", list(WorkflowDomain))
    def test_every_reject_requires_reason(self, domain):
        for t in get_definition(domain).transitions:
            if t.action == "reject":
                assert t.requires_reason

    def test_side_effect_kinds_unique_per_transition(self):
        for definition in WORKFLOW_DEFINITIONS.values():
            for t in definition.transitions:
                kinds = [s.kind for s in t.side_effects]
                assert len(kinds) == len(set(kinds))

    def test_salary_advance_schedules_repayments_on_approve(self):
        approve = get_definition(WorkflowDomain.SALARY_ADVANCE).find_transition("pending", "approve")
        categories = {s.kind: s.category for s in approve.side_effects}
        assert categories["schedule_repayments"] == SideEffectCategory.LEDGER
        assert approve.guard.name == "within_advance_policy"

    def test_contract_amendment_link_is_frozen(self):
        assert get_module(WorkflowDomain.CONTRACT_LIFECYCLE).frozen_fields == ("amends_instance_id",)

    def test_advance_caps_serialized_per_employee(self):
        advances = get_module(WorkflowDomain.SALARY_ADVANCE)
        assert advances.serializes_subject("approve")
        assert advances.serializes_subject("submit")
        assert not advances.serializes_subject("cancel")
        assert not get_module(WorkflowDomain.DOCUMENT_REQUEST).serializes_subject("approve")

    def test_approved_amount_reserved_for_hr(self):
        gate = get_module(WorkflowDomain.SALARY_ADVANCE).field_gates["approved_amount"]
        assert gate.describe() == "hr_manager|tenant_admin"

    def test_build_modules_uses_policy(self):
        policy = AdvancePolicyConfig(max_percentage_of_net_salary=50)
        modules = build_modules(policy)
        guard = modules[WorkflowDomain.SALARY_ADVANCE].definition.find_transition(
            "pending", "approve",
        ).guard
        assert "50% of net salary" in guard.description


class TestPayloadLocks:

    def test_signed_contract_payload_locked(self):
        assert locked_payload_states("contract_lifecycle") == frozenset({"signed"})

    def test_advance_payload_locked_after_pending(self):
        locked = locked_payload_states("salary_advance")
        assert "pending" not in locked
        assert {"active", "repaid", "rejected", "cancelled"} <= locked

    def test_document_request_never_editable(self):
        assert locked_payload_states("document_request") == frozenset(
            get_definition(WorkflowDomain.DOCUMENT_REQUEST).states
        )


class TestSubmissionGate:

    def test_employee_submits_for_self(self):
        employee = Actor(uuid4(), ActorRole.EMPLOYEE)
        definition = get_definition(WorkflowDomain.DOCUMENT_REQUEST)
        assert definition.permits_submission(employee, employee.actor_id)
        assert not definition.permits_submission(employee, uuid4())

    def test_hr_submits_for_anyone(self):
        hr = Actor(uuid4(), ActorRole.HR_MANAGER)
        definition = get_definition(WorkflowDomain.SALARY_ADVANCE)
        assert definition.permits_submission(hr, uuid4())

    def test_contracts_drafted_by_hr_only(self):
        employee = Actor(uuid4(), ActorRole.EMPLOYEE)
        definition = get_definition(WorkflowDomain.CONTRACT_LIFECYCLE)
        assert not definition.permits_submission(employee, employee.actor_id)
        assert definition.permits_submission(Actor(uuid4(), ActorRole.TENANT_ADMIN), employee.actor_id)
