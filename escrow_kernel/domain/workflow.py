"""
Canonical workflow types (``escrow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for status state machines.  Contract and Milestone
lifecycles are declared once with these types (see ``lifecycles.py``) and
consulted by the services before any mutation.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or ``selectors/``.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    Contract: frozen.  ``action`` names the service operation that
    performs the transition.
    """
    from_state: str
    to_state: str
    action: str


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for an entity lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                "is not a declared state"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.from_state}->{t.to_state} "
                    "references an undeclared state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    "has an outgoing transition"
                )

    def allowed_targets(self, from_state: str) -> frozenset[str]:
        """States reachable from ``from_state`` in one step."""
        return frozenset(
            t.to_state for t in self.transitions if t.from_state == from_state
        )

    def is_allowed(self, from_state: str, to_state: str) -> bool:
        return to_state in self.allowed_targets(from_state)

    def as_table(self) -> dict[str, frozenset[str]]:
        """The full transition table, one entry per declared state."""
        return {state: self.allowed_targets(state) for state in self.states}
