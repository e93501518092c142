"""Pure domain layer: clock, money conversion, workflows, DTOs."""

from escrow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from escrow_kernel.domain.lifecycles import (
    CONTRACT_TRANSITIONS,
    CONTRACT_WORKFLOW,
    MILESTONE_TRANSITIONS,
    MILESTONE_WORKFLOW,
)
from escrow_kernel.domain.money import to_major_units, to_minor_units

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "CONTRACT_WORKFLOW",
    "CONTRACT_TRANSITIONS",
    "MILESTONE_WORKFLOW",
    "MILESTONE_TRANSITIONS",
    "to_minor_units",
    "to_major_units",
]
