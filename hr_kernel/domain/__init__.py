"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (other than the injectable Clock interface)
- I/O

All domain objects are immutable and deterministic.
"""

from hr_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from hr_kernel.domain.instance import (
    SideEffectOutcome,
    SideEffectStatus,
    TransitionRecord,
    WorkflowInstance,
)
from hr_kernel.domain.state_machine import TransitionResult, attempt_transition
from hr_kernel.domain.workflow import (
    SYSTEM_ACTOR_ID,
    Actor,
    ActorRole,
    Guard,
    RoleGate,
    SideEffectCategory,
    SideEffectSpec,
    Transition,
    TransitionCheck,
    WorkflowDefinition,
    WorkflowDomain,
)

__all__ = [
    "SYSTEM_ACTOR_ID",
    "Actor",
    "ActorRole",
    "Clock",
    "DeterministicClock",
    "Guard",
    "RoleGate",
    "SideEffectCategory",
    "SideEffectOutcome",
    "SideEffectSpec",
    "SideEffectStatus",
    "SystemClock",
    "Transition",
    "TransitionCheck",
    "TransitionRecord",
    "TransitionResult",
    "WorkflowDefinition",
    "WorkflowDomain",
    "WorkflowInstance",
    "attempt_transition",
]
