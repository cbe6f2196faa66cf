"""Workflow Engine.

Moves entity instances between states. A transition is legal only when the
(state, action) pair is declared for the workflow and the entity's rule set
allows the actor's role. Instances are never modified in place; a successful
transition returns a new instance and the fields it changed.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from signoff.auth.authority import approval_allowed, feature_allows
from signoff.auth.matrix import Action, has_entry, matrix_allows
from signoff.auth.roles import Party, Role, resolve_role
from signoff.auth.rules import rules_for
from signoff.core.definitions import (
    WORKFLOWS,
    ReasonCode,
    Status,
    Transition,
    Workflow,
    WorkflowType,
    get_workflow,
)
from signoff.models.instance import Signature, WorkflowInstance
from signoff.models.settings import WorkflowSettings

logger = logging.getLogger(__name__)

_SLOTS: dict[Party, str] = {
    Party.SUPPLIER: "supplier_signature",
    Party.CUSTOMER: "customer_signature",
}
_SIGN_ACTIONS: dict[Party, Action] = {
    Party.SUPPLIER: Action.SIGN_AS_SUPPLIER,
    Party.CUSTOMER: Action.SIGN_AS_CUSTOMER,
}


class TransitionError(Exception):
    """Base class for refused transitions."""


class InvalidTransitionError(TransitionError):
    """Raised when the action is not legal from the instance's state."""


class ForbiddenError(TransitionError):
    """Raised when the transition exists but the actor may not perform it."""


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    instance: WorkflowInstance
    transition: Transition | None = None
    error: ReasonCode | None = None
    message: str = ""
    previous: WorkflowInstance | None = None

    @property
    def side_effect(self) -> str | None:
        return self.transition.side_effect if self.ok and self.transition else None

    def unwrap(self) -> WorkflowInstance:
        """Return the new instance, raising if the transition was refused."""
        if self.ok:
            return self.instance
        if self.error in (ReasonCode.INVALID_TRANSITION, ReasonCode.UNKNOWN_ENTITY_OR_ACTION):
            raise InvalidTransitionError(self.message)
        raise ForbiddenError(self.message)

    def changes(self) -> dict[str, Any]:
        """Fields that differ from the previous instance, ready for storage."""
        if not self.ok or self.previous is None:
            return {}
        before = self.previous.to_storage()
        return {k: v for k, v in self.instance.to_storage().items() if before.get(k) != v}


def _refuse(instance: WorkflowInstance, error: ReasonCode, message: str) -> TransitionResult:
    logger.debug("Transition refused (%s): %s", error, message)
    return TransitionResult(ok=False, instance=instance, error=error, message=message)


def signature_status(instance: WorkflowInstance) -> Status:
    """Status of a dual-signature entity, derived from its two slots."""
    supplier = instance.supplier_signature is not None
    customer = instance.customer_signature is not None
    if supplier and customer:
        return Status.SIGNED
    if supplier:
        return Status.AWAITING_CUSTOMER
    if customer:
        return Status.AWAITING_SUPPLIER
    return Status.NOT_SIGNED


def is_fully_signed(instance: WorkflowInstance) -> bool:
    return instance.supplier_signature is not None and instance.customer_signature is not None


def current_state(workflow: Workflow, instance: WorkflowInstance) -> str | None:
    if workflow.derived_status:
        return signature_status(instance)
    return instance.status


def guard_allows(
    workflow: Workflow,
    transition: Transition,
    role: str | Role | None,
    instance: WorkflowInstance,
    actor_id: str | None,
) -> bool:
    """Run the rule set (or the bare matrix) for a transition's permission."""
    rules = rules_for(workflow.entity)
    if rules is None:
        return matrix_allows(role, workflow.entity, transition.permission)
    return rules.allows(transition.permission, role, instance, actor_id)


def _apply(
    workflow: Workflow,
    transition: Transition,
    instance: WorkflowInstance,
    actor_id: str | None,
    signer_name: str | None,
    at: datetime | None,
) -> WorkflowInstance:
    updates: dict[str, Any] = {"status": transition.to_state}
    if transition.signs is not None and actor_id is not None:
        updates[_SLOTS[transition.signs]] = Signature(
            signer_id=actor_id,
            signer_name=signer_name,
            signed_at=(at or datetime.now(UTC)).isoformat(),
        )
    if transition.to_state in workflow.resets_signatures_on:
        updates["supplier_signature"] = None
        updates["customer_signature"] = None
    return instance.model_copy(update=updates)


def _accept(
    workflow: Workflow,
    transition: Transition,
    instance: WorkflowInstance,
    actor_id: str | None = None,
    signer_name: str | None = None,
    at: datetime | None = None,
) -> TransitionResult:
    new = _apply(workflow, transition, instance, actor_id, signer_name, at)
    logger.info(
        "%s: %s -[%s]-> %s",
        workflow.name,
        transition.from_state,
        transition.action,
        transition.to_state,
    )
    return TransitionResult(ok=True, instance=new, transition=transition, previous=instance)


def transition(
    workflow_type: str,
    instance: WorkflowInstance,
    action: str,
    role: str | Role | None,
    actor_id: str | None,
    *,
    settings: WorkflowSettings | None = None,
    signer_name: str | None = None,
    at: datetime | None = None,
) -> TransitionResult:
    """Attempt an actor-initiated transition.

    Args:
        workflow_type: One of the WorkflowType names
        instance: Current snapshot of the entity
        action: Action the actor performs
        role: The actor's effective role
        actor_id: The actor's id, checked against owner_id and used to sign
        settings: Optional project approval authority and feature toggles
        signer_name: Display name recorded with a signature
        at: Timestamp recorded with a signature (defaults to now)

    Returns:
        TransitionResult; on refusal the instance is returned unchanged
    """
    workflow = get_workflow(workflow_type)
    if workflow is None:
        return _refuse(
            instance, ReasonCode.UNKNOWN_ENTITY_OR_ACTION, f"Unknown workflow {workflow_type!r}"
        )

    state = current_state(workflow, instance)
    found = workflow.find(state, action)
    if found is None:
        return _refuse(
            instance,
            ReasonCode.INVALID_TRANSITION,
            f"{workflow.name}: no {action!r} transition from {state!r}",
        )
    if found.automatic:
        return _refuse(
            instance,
            ReasonCode.INVALID_TRANSITION,
            f"{workflow.name}: {action!r} from {state!r} is automatic",
        )

    if resolve_role(role) is None:
        return _refuse(instance, ReasonCode.UNKNOWN_ROLE, f"Unknown role {role!r}")

    if not (
        feature_allows(settings, workflow.name, found.permission)
        and feature_allows(settings, workflow.entity, found.permission)
    ):
        return _refuse(
            instance, ReasonCode.FEATURE_DISABLED, f"{workflow.name} is disabled for this project"
        )

    if found.signs is not None and actor_id is None:
        return _refuse(instance, ReasonCode.FORBIDDEN, "A signature needs a signer")

    if not guard_allows(workflow, found, role, instance, actor_id):
        return _refuse(
            instance, ReasonCode.FORBIDDEN, f"{role} may not {action} a {state} {workflow.entity}"
        )

    if not approval_allowed(settings, workflow.entity, found.permission, role, instance):
        return _refuse(
            instance,
            ReasonCode.FORBIDDEN,
            f"Project approval authority does not let {role} {action} {workflow.entity}",
        )

    return _accept(workflow, found, instance, actor_id, signer_name, at)


def sign(
    workflow_type: str,
    instance: WorkflowInstance,
    party: Party,
    role: str | Role | None,
    actor_id: str | None,
    *,
    signer_name: str | None = None,
    at: datetime | None = None,
    settings: WorkflowSettings | None = None,
) -> TransitionResult:
    """Fill one signature slot of a signed workflow."""
    return transition(
        workflow_type,
        instance,
        _SIGN_ACTIONS[party],
        role,
        actor_id,
        settings=settings,
        signer_name=signer_name,
        at=at,
    )


def _automatic(
    workflow: Workflow, instance: WorkflowInstance, action: Action
) -> Transition | None:
    found = workflow.find(current_state(workflow, instance), action)
    if found is None or not found.automatic:
        return None
    return found


def on_edit(workflow_type: str, instance: WorkflowInstance) -> TransitionResult:
    """Apply the automatic revise transition after an entity is re-edited.

    Editing a rejected entry returns it to Draft. Editing in any other state
    changes nothing and still succeeds.
    """
    workflow = get_workflow(workflow_type)
    if workflow is None:
        return _refuse(
            instance, ReasonCode.UNKNOWN_ENTITY_OR_ACTION, f"Unknown workflow {workflow_type!r}"
        )
    found = _automatic(workflow, instance, Action.REVISE)
    if found is None:
        return TransitionResult(
            ok=True, instance=instance, previous=instance, message="No status change"
        )
    return _accept(workflow, found, instance)


def mark_overdue(instance: WorkflowInstance, today: date) -> TransitionResult:
    """Move an approved partner invoice to Overdue once its due date has passed."""
    workflow = WORKFLOWS[WorkflowType.PARTNER_INVOICE]
    found = _automatic(workflow, instance, Action.MARK_OVERDUE)
    if found is None:
        return _refuse(
            instance,
            ReasonCode.INVALID_TRANSITION,
            f"Invoice in {instance.status!r} cannot become overdue",
        )
    if instance.due_date is None:
        return _refuse(instance, ReasonCode.INVALID_TRANSITION, "Invoice has no due date")
    if today <= instance.due_date:
        return _refuse(
            instance, ReasonCode.INVALID_TRANSITION, f"Invoice is not due until {instance.due_date}"
        )
    return _accept(workflow, found, instance)


def _reachable(workflow: Workflow) -> set[Status]:
    seen = {workflow.initial_state}
    queue = deque([workflow.initial_state])
    while queue:
        state = queue.popleft()
        for t in workflow.transitions_from(state):
            if t.to_state not in seen:
                seen.add(t.to_state)
                queue.append(t.to_state)
    return seen


def validate_workflow(workflow: Workflow) -> list[str]:
    problems: list[str] = []
    name = workflow.name
    if workflow.initial_state not in workflow.states:
        problems.append(f"{name}: initial state {workflow.initial_state} is not declared")
    for t in workflow.transitions:
        for state in (t.from_state, t.to_state):
            if state not in workflow.states:
                problems.append(f"{name}: {t.action} uses undeclared state {state}")
        if not has_entry(workflow.entity, t.permission):
            problems.append(f"{name}: no matrix entry for {workflow.entity}.{t.permission}")
    for state in workflow.states:
        outbound = workflow.transitions_from(state)
        if state in workflow.terminal_states and outbound:
            problems.append(f"{name}: terminal state {state} has outbound transitions")
        if state not in workflow.terminal_states and not outbound:
            problems.append(f"{name}: non-terminal state {state} has no way out")
    for state in workflow.states - _reachable(workflow):
        problems.append(f"{name}: state {state} is unreachable from {workflow.initial_state}")
    return problems


def validate_workflows() -> list[str]:
    """Return every problem found across all declared workflows."""
    problems: list[str] = []
    for workflow in WORKFLOWS.values():
        problems.extend(validate_workflow(workflow))
    return problems
