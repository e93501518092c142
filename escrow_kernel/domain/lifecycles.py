"""
Contract and Milestone lifecycles (``escrow_kernel.domain.lifecycles``).

Declarative state machine definitions.  State names are the uppercase
values of ``ContractStatus`` / ``MilestoneStatus`` in ``models/``; the
services look up ``allowed_targets`` here before changing a status.

Invariants:
    - These tables are the ONLY valid paths; a request outside them is
      rejected before any row is modified (unless the caller passes an
      explicit override where the operation supports one).
    - COMPLETED and TERMINATED contracts, CANCELED and COMPLETED milestones
      are terminal.
"""

from escrow_kernel.domain.workflow import Transition, Workflow

CONTRACT_WORKFLOW = Workflow(
    name="contract",
    description="Freelance contract lifecycle",
    initial_state="PENDING",
    states=(
        "PENDING",
        "ACTIVE",
        "REVIEW_PENDING",
        "COMPLETED",
        "DISPUTED",
        "TERMINATED",
    ),
    transitions=(
        Transition("PENDING", "ACTIVE", action="start"),
        Transition("PENDING", "TERMINATED", action="terminate"),
        Transition("ACTIVE", "REVIEW_PENDING", action="submit_work"),
        Transition("ACTIVE", "TERMINATED", action="terminate"),
        Transition("REVIEW_PENDING", "COMPLETED", action="complete"),
        Transition("REVIEW_PENDING", "DISPUTED", action="dispute"),
        Transition("REVIEW_PENDING", "TERMINATED", action="terminate"),
        Transition("DISPUTED", "TERMINATED", action="terminate"),
    ),
    terminal_states=("COMPLETED", "TERMINATED"),
)

MILESTONE_WORKFLOW = Workflow(
    name="milestone",
    description="Milestone lifecycle nested under a contract",
    initial_state="PENDING",
    states=(
        "PENDING",
        "IN_PROGRESS",
        "SUBMITTED",
        "APPROVED",
        "PAID",
        "DISPUTED",
        "CANCELED",
        "COMPLETED",
        "REJECTED",
    ),
    transitions=(
        Transition("PENDING", "IN_PROGRESS", action="start_milestone"),
        Transition("PENDING", "CANCELED", action="cancel_milestone"),
        Transition("IN_PROGRESS", "SUBMITTED", action="submit_milestone"),
        Transition("IN_PROGRESS", "CANCELED", action="cancel_milestone"),
        Transition("SUBMITTED", "APPROVED", action="approve_by_freelancer"),
        Transition("SUBMITTED", "REJECTED", action="reject_milestone"),
        Transition("SUBMITTED", "DISPUTED", action="dispute_milestone"),
        Transition("APPROVED", "PAID", action="mark_paid"),
        Transition("APPROVED", "DISPUTED", action="dispute_milestone"),
        Transition("PAID", "COMPLETED", action="approve_by_client"),
        Transition("DISPUTED", "APPROVED", action="approve_by_freelancer"),
        Transition("DISPUTED", "REJECTED", action="reject_milestone"),
        Transition("REJECTED", "IN_PROGRESS", action="start_milestone"),
        Transition("REJECTED", "CANCELED", action="cancel_milestone"),
    ),
    terminal_states=("CANCELED", "COMPLETED"),
)

CONTRACT_TRANSITIONS = CONTRACT_WORKFLOW.as_table()
MILESTONE_TRANSITIONS = MILESTONE_WORKFLOW.as_table()

# Contract states in which milestones may be created or changed.
MILESTONE_ACTIONABLE_CONTRACT_STATES = frozenset({"ACTIVE", "PENDING"})
