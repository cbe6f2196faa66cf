"""Workflow state machines, declared as data.

Each workflow is a set of states and the transitions between them. A
transition names the action that fires it; the engine checks that action
against the entity's rule set, so every permission decision flows through
the same matrix the rest of the system uses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from signoff.auth.matrix import Action, EntityType
from signoff.auth.roles import Party


class Status(StrEnum):
    """Stored status strings, as they appear on entity records."""

    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    VALIDATED = "Validated"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    AWAITING_REVIEW = "Awaiting Review"
    REVIEW_COMPLETE = "Review Complete"
    REWORK = "Rework"
    DELIVERED = "Delivered"
    NOT_SIGNED = "Not Signed"
    AWAITING_SUPPLIER = "Awaiting Supplier"
    AWAITING_CUSTOMER = "Awaiting Customer"
    SIGNED = "Signed"
    IMPLEMENTED = "Implemented"
    PARTIALLY_PAID = "Partially Paid"
    PAID = "Paid"
    OVERDUE = "Overdue"


class WorkflowType(StrEnum):
    TIMESHEET = "timesheet"
    EXPENSE = "expense"
    DELIVERABLE = "deliverable"
    DELIVERABLE_SIGN_OFF = "deliverable_sign_off"
    MILESTONE_BASELINE = "milestone_baseline"
    CERTIFICATE = "certificate"
    VARIATION = "variation"
    PARTNER_INVOICE = "partner_invoice"


class ReasonCode(StrEnum):
    UNKNOWN_ROLE = "unknown_role"
    UNKNOWN_ENTITY_OR_ACTION = "unknown_entity_or_action"
    INVALID_TRANSITION = "invalid_transition"
    FORBIDDEN = "forbidden"
    FEATURE_DISABLED = "feature_disabled"


@dataclass(frozen=True)
class Transition:
    """A legal move from one state to another.

    ``guard`` names the permission the rule set checks, when it differs
    from the action itself. ``signs`` marks a transition that fills a
    signature slot. ``side_effect`` is a hint for the caller to act on
    once the new state is persisted.
    """

    from_state: Status
    to_state: Status
    action: Action
    guard: Action | None = None
    automatic: bool = False
    signs: Party | None = None
    side_effect: str | None = None

    @property
    def permission(self) -> Action:
        return self.guard or self.action


@dataclass(frozen=True)
class Workflow:
    name: WorkflowType
    entity: EntityType
    description: str
    initial_state: Status
    states: frozenset[Status]
    transitions: tuple[Transition, ...]
    terminal_states: frozenset[Status]
    # Status is a function of the two signature slots, not the stored field
    derived_status: bool = False
    # Entering one of these states clears both signature slots
    resets_signatures_on: frozenset[Status] = field(default_factory=frozenset)

    def transitions_from(self, state: str | None) -> tuple[Transition, ...]:
        return tuple(t for t in self.transitions if t.from_state == state)

    def find(self, state: str | None, action: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == state and t.action == action:
                return t
        return None

    def is_terminal(self, state: str | None) -> bool:
        return state in self.terminal_states


def _validate_then_approve(name: WorkflowType, entity: EntityType) -> Workflow:
    return Workflow(
        name=name,
        entity=entity,
        description="Submitted by the owner, validated, then approved",
        initial_state=Status.DRAFT,
        states=frozenset(
            {Status.DRAFT, Status.SUBMITTED, Status.VALIDATED, Status.APPROVED, Status.REJECTED}
        ),
        transitions=(
            Transition(Status.DRAFT, Status.SUBMITTED, Action.SUBMIT),
            Transition(Status.SUBMITTED, Status.VALIDATED, Action.VALIDATE),
            Transition(Status.SUBMITTED, Status.REJECTED, Action.REJECT),
            Transition(Status.VALIDATED, Status.APPROVED, Action.APPROVE),
            Transition(Status.VALIDATED, Status.REJECTED, Action.REJECT),
            Transition(Status.REJECTED, Status.SUBMITTED, Action.SUBMIT),
            Transition(Status.REJECTED, Status.DRAFT, Action.REVISE, automatic=True),
        ),
        terminal_states=frozenset({Status.APPROVED}),
    )


def _dual_signature(
    name: WorkflowType, entity: EntityType, side_effect: str, description: str
) -> Workflow:
    sup, cus = Action.SIGN_AS_SUPPLIER, Action.SIGN_AS_CUSTOMER
    by_supplier, by_customer = Party.SUPPLIER, Party.CUSTOMER
    return Workflow(
        name=name,
        entity=entity,
        description=description,
        initial_state=Status.NOT_SIGNED,
        states=frozenset(
            {Status.NOT_SIGNED, Status.AWAITING_SUPPLIER, Status.AWAITING_CUSTOMER, Status.SIGNED}
        ),
        transitions=(
            Transition(Status.NOT_SIGNED, Status.AWAITING_CUSTOMER, sup, signs=by_supplier),
            Transition(Status.NOT_SIGNED, Status.AWAITING_SUPPLIER, cus, signs=by_customer),
            Transition(Status.AWAITING_CUSTOMER, Status.AWAITING_CUSTOMER, sup, signs=by_supplier),
            Transition(
                Status.AWAITING_CUSTOMER,
                Status.SIGNED,
                cus,
                signs=by_customer,
                side_effect=side_effect,
            ),
            Transition(Status.AWAITING_SUPPLIER, Status.AWAITING_SUPPLIER, cus, signs=by_customer),
            Transition(
                Status.AWAITING_SUPPLIER,
                Status.SIGNED,
                sup,
                signs=by_supplier,
                side_effect=side_effect,
            ),
        ),
        terminal_states=frozenset({Status.SIGNED}),
        derived_status=True,
    )


DELIVERABLE = Workflow(
    name=WorkflowType.DELIVERABLE,
    entity=EntityType.DELIVERABLE,
    description="Worked on, reviewed by the customer, then delivered",
    initial_state=Status.NOT_STARTED,
    states=frozenset(
        {
            Status.NOT_STARTED,
            Status.IN_PROGRESS,
            Status.AWAITING_REVIEW,
            Status.REVIEW_COMPLETE,
            Status.REWORK,
            Status.DELIVERED,
        }
    ),
    transitions=(
        Transition(Status.NOT_STARTED, Status.IN_PROGRESS, Action.START),
        Transition(Status.IN_PROGRESS, Status.AWAITING_REVIEW, Action.SUBMIT),
        Transition(Status.AWAITING_REVIEW, Status.REVIEW_COMPLETE, Action.COMPLETE_REVIEW),
        Transition(Status.AWAITING_REVIEW, Status.REWORK, Action.REQUEST_REWORK),
        Transition(Status.REWORK, Status.IN_PROGRESS, Action.RESUME),
        Transition(Status.REVIEW_COMPLETE, Status.DELIVERED, Action.MARK_DELIVERED),
    ),
    terminal_states=frozenset({Status.DELIVERED}),
)

VARIATION = Workflow(
    name=WorkflowType.VARIATION,
    entity=EntityType.VARIATION,
    description="Change request submitted, signed by both parties, then implemented",
    initial_state=Status.DRAFT,
    states=frozenset(
        {
            Status.DRAFT,
            Status.SUBMITTED,
            Status.AWAITING_SUPPLIER,
            Status.AWAITING_CUSTOMER,
            Status.APPROVED,
            Status.REJECTED,
            Status.IMPLEMENTED,
        }
    ),
    transitions=(
        Transition(Status.DRAFT, Status.SUBMITTED, Action.SUBMIT),
        Transition(Status.SUBMITTED, Status.DRAFT, Action.WITHDRAW),
        Transition(
            Status.SUBMITTED,
            Status.AWAITING_CUSTOMER,
            Action.SIGN_AS_SUPPLIER,
            signs=Party.SUPPLIER,
        ),
        Transition(
            Status.SUBMITTED,
            Status.AWAITING_SUPPLIER,
            Action.SIGN_AS_CUSTOMER,
            signs=Party.CUSTOMER,
        ),
        Transition(
            Status.AWAITING_CUSTOMER,
            Status.AWAITING_CUSTOMER,
            Action.SIGN_AS_SUPPLIER,
            signs=Party.SUPPLIER,
        ),
        Transition(
            Status.AWAITING_CUSTOMER,
            Status.APPROVED,
            Action.SIGN_AS_CUSTOMER,
            signs=Party.CUSTOMER,
            side_effect="apply_variation",
        ),
        Transition(
            Status.AWAITING_SUPPLIER,
            Status.AWAITING_SUPPLIER,
            Action.SIGN_AS_CUSTOMER,
            signs=Party.CUSTOMER,
        ),
        Transition(
            Status.AWAITING_SUPPLIER,
            Status.APPROVED,
            Action.SIGN_AS_SUPPLIER,
            signs=Party.SUPPLIER,
            side_effect="apply_variation",
        ),
        Transition(Status.SUBMITTED, Status.REJECTED, Action.REJECT),
        Transition(Status.AWAITING_SUPPLIER, Status.REJECTED, Action.REJECT),
        Transition(Status.AWAITING_CUSTOMER, Status.REJECTED, Action.REJECT),
        Transition(Status.REJECTED, Status.DRAFT, Action.REVISE, automatic=True),
        Transition(Status.APPROVED, Status.IMPLEMENTED, Action.IMPLEMENT),
    ),
    terminal_states=frozenset({Status.IMPLEMENTED}),
    resets_signatures_on=frozenset({Status.DRAFT, Status.REJECTED}),
)

PARTNER_INVOICE = Workflow(
    name=WorkflowType.PARTNER_INVOICE,
    entity=EntityType.INVOICE,
    description="Partner invoice approved on the supplier side, then paid",
    initial_state=Status.DRAFT,
    states=frozenset(
        {
            Status.DRAFT,
            Status.SUBMITTED,
            Status.APPROVED,
            Status.REJECTED,
            Status.PARTIALLY_PAID,
            Status.PAID,
            Status.OVERDUE,
        }
    ),
    transitions=(
        Transition(Status.DRAFT, Status.SUBMITTED, Action.SUBMIT),
        Transition(Status.SUBMITTED, Status.APPROVED, Action.APPROVE),
        Transition(Status.SUBMITTED, Status.REJECTED, Action.REJECT),
        Transition(Status.REJECTED, Status.DRAFT, Action.REVISE),
        Transition(Status.APPROVED, Status.PARTIALLY_PAID, Action.RECORD_PARTIAL_PAYMENT),
        Transition(Status.APPROVED, Status.PAID, Action.RECORD_PAYMENT),
        Transition(Status.APPROVED, Status.OVERDUE, Action.MARK_OVERDUE, automatic=True),
        Transition(Status.PARTIALLY_PAID, Status.PARTIALLY_PAID, Action.RECORD_PARTIAL_PAYMENT),
        Transition(Status.PARTIALLY_PAID, Status.PAID, Action.RECORD_PAYMENT),
        Transition(Status.OVERDUE, Status.PARTIALLY_PAID, Action.RECORD_PARTIAL_PAYMENT),
        Transition(Status.OVERDUE, Status.PAID, Action.RECORD_PAYMENT),
    ),
    terminal_states=frozenset({Status.PAID}),
)

WORKFLOWS: dict[WorkflowType, Workflow] = {
    WorkflowType.TIMESHEET: _validate_then_approve(WorkflowType.TIMESHEET, EntityType.TIMESHEET),
    WorkflowType.EXPENSE: _validate_then_approve(WorkflowType.EXPENSE, EntityType.EXPENSE),
    WorkflowType.DELIVERABLE: DELIVERABLE,
    WorkflowType.DELIVERABLE_SIGN_OFF: _dual_signature(
        WorkflowType.DELIVERABLE_SIGN_OFF,
        EntityType.DELIVERABLE,
        "mark_delivered",
        "Supplier and customer sign the delivered deliverable",
    ),
    WorkflowType.MILESTONE_BASELINE: _dual_signature(
        WorkflowType.MILESTONE_BASELINE,
        EntityType.MILESTONE,
        "lock_baseline",
        "Both parties commit to the milestone schedule and cost",
    ),
    WorkflowType.CERTIFICATE: _dual_signature(
        WorkflowType.CERTIFICATE,
        EntityType.CERTIFICATE,
        "enable_billing",
        "Both parties certify the milestone is complete",
    ),
    WorkflowType.VARIATION: VARIATION,
    WorkflowType.PARTNER_INVOICE: PARTNER_INVOICE,
}


def get_workflow(workflow_type: str) -> Workflow | None:
    try:
        return WORKFLOWS.get(WorkflowType(workflow_type))
    except ValueError:
        return None


def workflows_for(entity_type: str, action: str | None = None) -> tuple[Workflow, ...]:
    """Workflows governing an entity, optionally only those declaring ``action``."""
    return tuple(
        w
        for w in WORKFLOWS.values()
        if w.entity == entity_type
        and (action is None or any(t.action == action for t in w.transitions))
    )
