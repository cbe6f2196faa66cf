"""Object-level rules: instance state and ownership on top of the matrix.

Every predicate first requires the matrix to allow the action for the role,
so a rule can only narrow the coarse verdict. Roles with the entity's
``manage`` action skip the ownership and editable-state conditions, never
the validate/approve authority checks.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType

from signoff.auth.matrix import Action, ConfigurationError, EntityType, entry_for, matrix_allows
from signoff.auth.roles import Party, Role
from signoff.core.definitions import Status
from signoff.models.instance import WorkflowInstance

logger = logging.getLogger(__name__)

RoleName = str | Role | None

_NO_STAGES: Mapping[str, Action | None] = MappingProxyType({})
_SIGNATURES = frozenset({Action.SIGN_AS_SUPPLIER, Action.SIGN_AS_CUSTOMER})


class EntityRules:
    """Instance-level predicates for one entity type.

    An empty state set means the entity has no such step, and the
    predicate denies without consulting the matrix.
    """

    initial_state: Status = Status.DRAFT
    editable_states: frozenset[str] = frozenset({Status.DRAFT, Status.REJECTED})
    deletable_states: frozenset[str] = frozenset({Status.DRAFT})
    submittable_states: frozenset[str] = frozenset({Status.DRAFT, Status.REJECTED})
    validate_states: frozenset[str] = frozenset({Status.SUBMITTED})
    approve_states: frozenset[str] = frozenset({Status.VALIDATED})
    # State -> authority required to reject there; None means the reject entry alone
    reject_stages: Mapping[str, Action | None] = MappingProxyType(
        {
            Status.SUBMITTED: Action.VALIDATE,
            Status.VALIDATED: Action.APPROVE,
        }
    )
    owner_gated_actions: frozenset[Action] = frozenset({Action.REVISE})
    signature_actions: frozenset[Action] = frozenset()

    def __init__(self, entity: EntityType) -> None:
        self.entity = entity

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.entity!s})"

    def _matrix(self, role: RoleName, action: Action) -> bool:
        return matrix_allows(role, self.entity, action)

    def referenced_actions(self) -> frozenset[Action]:
        """Matrix actions these predicates consult for this entity."""
        actions = {Action.MANAGE, *self.owner_gated_actions, *self.signature_actions}
        if self.editable_states:
            actions.add(Action.EDIT)
        if self.deletable_states:
            actions.add(Action.DELETE)
        if self.submittable_states:
            actions.add(Action.SUBMIT)
        if self.validate_states:
            actions.add(Action.VALIDATE)
        if self.approve_states:
            actions.add(Action.APPROVE)
        if self.reject_stages:
            actions.add(Action.REJECT)
            actions.update(a for a in self.reject_stages.values() if a is not None)
        return frozenset(actions)

    def is_manager(self, role: RoleName) -> bool:
        """Full-management roles for this entity (its matrix ``manage`` entry)."""
        return self._matrix(role, Action.MANAGE)

    def _status(self, instance: WorkflowInstance) -> str:
        return instance.status or self.initial_state

    def _authority(self, stage_action: Action, instance: WorkflowInstance) -> Action | None:
        """The matrix action that grants a stage's authority for this instance."""
        return stage_action

    def can_edit(self, role: RoleName, instance: WorkflowInstance, actor_id: str | None) -> bool:
        if not self.editable_states or not self._matrix(role, Action.EDIT):
            return False
        if self.is_manager(role):
            return True
        return instance.is_owned_by(actor_id) and self._status(instance) in self.editable_states

    def can_delete(self, role: RoleName, instance: WorkflowInstance, actor_id: str | None) -> bool:
        if not self.deletable_states or not self._matrix(role, Action.DELETE):
            return False
        if self.is_manager(role):
            return True
        return instance.is_owned_by(actor_id) and self._status(instance) in self.deletable_states

    def can_submit(self, role: RoleName, instance: WorkflowInstance, actor_id: str | None) -> bool:
        if instance.status not in self.submittable_states:
            return False
        if not self._matrix(role, Action.SUBMIT):
            return False
        return self.is_manager(role) or instance.is_owned_by(actor_id)

    def can_validate(self, role: RoleName, instance: WorkflowInstance) -> bool:
        if instance.status not in self.validate_states:
            return False
        if not self._matrix(role, Action.VALIDATE):
            return False
        action = self._authority(Action.VALIDATE, instance)
        return action is not None and self._matrix(role, action)

    def can_approve(self, role: RoleName, instance: WorkflowInstance) -> bool:
        if instance.status not in self.approve_states:
            return False
        if not self._matrix(role, Action.APPROVE):
            return False
        action = self._authority(Action.APPROVE, instance)
        return action is not None and self._matrix(role, action)

    def can_reject(self, role: RoleName, instance: WorkflowInstance) -> bool:
        if instance.status not in self.reject_stages:
            return False
        if not self._matrix(role, Action.REJECT):
            return False
        stage = self.reject_stages[instance.status]
        if stage is None:
            return True
        action = self._authority(stage, instance)
        return action is not None and self._matrix(role, action)

    def can_sign(self, party: Party, role: RoleName) -> bool:
        action = Action.SIGN_AS_SUPPLIER if party == Party.SUPPLIER else Action.SIGN_AS_CUSTOMER
        if action not in self.signature_actions:
            return False
        return self._matrix(role, action)

    def can_act(
        self,
        action: Action,
        role: RoleName,
        instance: WorkflowInstance,
        actor_id: str | None,
    ) -> bool:
        """Any other action: the matrix, plus ownership for owner-gated actions."""
        if not self._matrix(role, action):
            return False
        if action in self.owner_gated_actions:
            return self.is_manager(role) or instance.is_owned_by(actor_id)
        return True

    def allows(
        self,
        action: str,
        role: RoleName,
        instance: WorkflowInstance,
        actor_id: str | None,
    ) -> bool:
        """Dispatch an action name to its predicate."""
        try:
            act = Action(action)
        except ValueError:
            logger.warning("Rules for %s: unknown action %r", self.entity, action)
            return False
        match act:
            case Action.EDIT:
                return self.can_edit(role, instance, actor_id)
            case Action.DELETE:
                return self.can_delete(role, instance, actor_id)
            case Action.SUBMIT:
                return self.can_submit(role, instance, actor_id)
            case Action.VALIDATE:
                return self.can_validate(role, instance)
            case Action.APPROVE:
                return self.can_approve(role, instance)
            case Action.REJECT:
                return self.can_reject(role, instance)
            case Action.SIGN_AS_SUPPLIER:
                return self.can_sign(Party.SUPPLIER, role)
            case Action.SIGN_AS_CUSTOMER:
                return self.can_sign(Party.CUSTOMER, role)
            case _:
                return self.can_act(act, role, instance, actor_id)


class ExpenseRules(EntityRules):
    """Expenses route validation and approval by who pays.

    Chargeable expenses need customer-side authority, the rest supplier-side.
    An expense without the flag set cannot be validated, approved or rejected.
    """

    def referenced_actions(self) -> frozenset[Action]:
        return super().referenced_actions() | {
            Action.VALIDATE_CHARGEABLE,
            Action.VALIDATE_NON_CHARGEABLE,
            Action.APPROVE_CHARGEABLE,
            Action.APPROVE_NON_CHARGEABLE,
        }

    def _authority(self, stage_action: Action, instance: WorkflowInstance) -> Action | None:
        chargeable = instance.chargeable_to_customer
        if chargeable is None:
            logger.debug("Expense has no chargeable_to_customer flag; denying %s", stage_action)
            return None
        if stage_action == Action.VALIDATE:
            return Action.VALIDATE_CHARGEABLE if chargeable else Action.VALIDATE_NON_CHARGEABLE
        if stage_action == Action.APPROVE:
            return Action.APPROVE_CHARGEABLE if chargeable else Action.APPROVE_NON_CHARGEABLE
        return stage_action


class DeliverableRules(EntityRules):
    initial_state = Status.NOT_STARTED
    editable_states = frozenset({Status.NOT_STARTED, Status.IN_PROGRESS, Status.REWORK})
    deletable_states = frozenset({Status.NOT_STARTED})
    submittable_states = frozenset({Status.IN_PROGRESS})
    validate_states = frozenset()
    approve_states = frozenset()
    reject_stages = _NO_STAGES
    owner_gated_actions = frozenset({Action.START, Action.RESUME})
    signature_actions = _SIGNATURES


class VariationRules(EntityRules):
    editable_states = frozenset({Status.DRAFT})
    submittable_states = frozenset({Status.DRAFT})
    validate_states = frozenset()
    approve_states = frozenset()
    reject_stages = MappingProxyType(
        {
            Status.SUBMITTED: None,
            Status.AWAITING_SUPPLIER: None,
            Status.AWAITING_CUSTOMER: None,
        }
    )
    owner_gated_actions = frozenset({Action.WITHDRAW})
    signature_actions = _SIGNATURES


class InvoiceRules(EntityRules):
    """Partner invoices: a single supplier-side approval, then payment."""

    editable_states = frozenset({Status.DRAFT})
    submittable_states = frozenset({Status.DRAFT})
    validate_states = frozenset()
    approve_states = frozenset({Status.SUBMITTED})
    reject_stages = MappingProxyType({Status.SUBMITTED: Action.APPROVE})


class SignOffRules(EntityRules):
    """Entities whose only workflow is a pair of signatures."""

    editable_states = frozenset({Status.DRAFT, Status.NOT_SIGNED})
    deletable_states = frozenset({Status.DRAFT, Status.NOT_SIGNED})
    submittable_states = frozenset()
    validate_states = frozenset()
    approve_states = frozenset()
    reject_stages = _NO_STAGES
    owner_gated_actions = frozenset()
    signature_actions = _SIGNATURES


class CertificateRules(SignOffRules):
    """Certificates are created and signed, never edited or deleted."""

    editable_states = frozenset()
    deletable_states = frozenset()


_RULES: dict[EntityType, EntityRules] = {
    EntityType.TIMESHEET: EntityRules(EntityType.TIMESHEET),
    EntityType.EXPENSE: ExpenseRules(EntityType.EXPENSE),
    EntityType.DELIVERABLE: DeliverableRules(EntityType.DELIVERABLE),
    EntityType.VARIATION: VariationRules(EntityType.VARIATION),
    EntityType.INVOICE: InvoiceRules(EntityType.INVOICE),
    EntityType.MILESTONE: SignOffRules(EntityType.MILESTONE),
    EntityType.CERTIFICATE: CertificateRules(EntityType.CERTIFICATE),
}


def rules_for(entity_type: str) -> EntityRules | None:
    """Rule set for a governed entity; None for entities the matrix alone decides."""
    try:
        return _RULES.get(EntityType(entity_type))
    except ValueError:
        return None


def validate_rules(rules: list[EntityRules] | None = None) -> list[str]:
    """Report every (entity, action) a rule set consults that has no matrix entry."""
    problems: list[str] = []
    for rule_set in rules if rules is not None else _RULES.values():
        for action in sorted(rule_set.referenced_actions()):
            try:
                entry_for(rule_set.entity, action)
            except ConfigurationError as e:
                problems.append(f"{rule_set!r}: {e}")
    return problems
