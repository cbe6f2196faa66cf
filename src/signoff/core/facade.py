"""Decision facade: the single entry point callers ask "may this actor...?".

A decision is the logical AND of the effective role's matrix verdict, the
workflow state and the entity's rule set when an instance is supplied, and
the project's feature toggles and approval authority when settings are
supplied. Any unknown input is a deny.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from signoff.auth.authority import approval_allowed, feature_allows
from signoff.auth.matrix import Action, entity_tier, has_entry, matrix_allows
from signoff.auth.resolver import effective_role
from signoff.auth.roles import Role, Tier, roles_in_tier
from signoff.auth.rules import rules_for
from signoff.config import Config
from signoff.core.definitions import (
    ReasonCode,
    Transition,
    Workflow,
    get_workflow,
    workflows_for,
)
from signoff.core.workflow import TransitionResult, current_state, guard_allows
from signoff.core.workflow import transition as run_transition
from signoff.models.actor import Actor
from signoff.models.instance import WorkflowInstance
from signoff.models.settings import WorkflowSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: ReasonCode | None = None
    role: Role | None = None

    def __bool__(self) -> bool:
        return self.allowed


def _open_from(workflow: Workflow, instance: WorkflowInstance, action: str) -> bool:
    found = workflow.find(current_state(workflow, instance), action)
    return found is not None and not found.automatic


class AuthorizationEngine:
    """Answers permission questions and runs transitions for actors."""

    def __init__(self, config: Config | None = None) -> None:
        self._config = config or Config()

    @property
    def config(self) -> Config:
        return self._config

    def role_for(self, actor: Actor, tier: Tier) -> Role | None:
        return effective_role(actor, tier, self._config)

    def explain(
        self,
        actor: Actor,
        action: str,
        entity_type: str,
        instance: WorkflowInstance | None = None,
        *,
        settings: WorkflowSettings | None = None,
    ) -> Decision:
        """Decide and say why."""
        tier = entity_tier(entity_type)
        if tier is None or not has_entry(entity_type, action):
            logger.warning("No permission entry for %r.%r", entity_type, action)
            return Decision(False, ReasonCode.UNKNOWN_ENTITY_OR_ACTION)

        role = self.role_for(actor, tier)
        if role is None:
            logger.debug("Actor %s has no %s role", actor.id, tier)
            return Decision(False, ReasonCode.UNKNOWN_ROLE)

        if not matrix_allows(role, entity_type, action):
            return Decision(False, ReasonCode.FORBIDDEN, role)

        # Workflow actions are only open from states that declare them
        workflows = workflows_for(entity_type, action)
        if instance is not None:
            if workflows and not any(_open_from(w, instance, action) for w in workflows):
                logger.debug("%s.%s is not open from the instance's state", entity_type, action)
                return Decision(False, ReasonCode.INVALID_TRANSITION, role)
            rules = rules_for(entity_type)
            if rules is not None and not rules.allows(action, role, instance, actor.id):
                return Decision(False, ReasonCode.FORBIDDEN, role)

        names = (entity_type, *(w.name for w in workflows))
        if not all(feature_allows(settings, name, action) for name in names):
            return Decision(False, ReasonCode.FEATURE_DISABLED, role)
        if not approval_allowed(settings, entity_type, action, role, instance):
            return Decision(False, ReasonCode.FORBIDDEN, role)

        return Decision(True, None, role)

    def can(
        self,
        actor: Actor,
        action: str,
        entity_type: str,
        instance: WorkflowInstance | None = None,
        *,
        settings: WorkflowSettings | None = None,
    ) -> bool:
        return self.explain(actor, action, entity_type, instance, settings=settings).allowed

    def can_view(self, actor: Actor, entity_type: str) -> bool:
        return self.can(actor, Action.VIEW, entity_type) or self.can(
            actor, Action.ACCESS, entity_type
        )

    def next_transitions(self, workflow_type: str, instance: WorkflowInstance) -> list[Transition]:
        """Actor transitions some role of the tier could take, acting as the owner."""
        workflow = get_workflow(workflow_type)
        if workflow is None:
            return []
        tier = entity_tier(workflow.entity) or Tier.PROJECT
        roles = roles_in_tier(tier)
        state = current_state(workflow, instance)
        return [
            t
            for t in workflow.transitions_from(state)
            if not t.automatic
            and any(guard_allows(workflow, t, role, instance, instance.owner_id) for role in roles)
        ]

    def available_transitions(
        self,
        actor: Actor,
        workflow_type: str,
        instance: WorkflowInstance,
        *,
        settings: WorkflowSettings | None = None,
    ) -> list[Transition]:
        """Transitions this actor may take now."""
        workflow = get_workflow(workflow_type)
        if workflow is None:
            return []
        tier = entity_tier(workflow.entity) or Tier.PROJECT
        role = self.role_for(actor, tier)
        if role is None:
            return []
        state = current_state(workflow, instance)
        return [
            t
            for t in workflow.transitions_from(state)
            if not t.automatic
            and guard_allows(workflow, t, role, instance, actor.id)
            and feature_allows(settings, workflow.name, t.permission)
            and feature_allows(settings, workflow.entity, t.permission)
            and approval_allowed(settings, workflow.entity, t.permission, role, instance)
        ]

    def transition(
        self,
        actor: Actor,
        workflow_type: str,
        instance: WorkflowInstance,
        action: str,
        *,
        settings: WorkflowSettings | None = None,
        signer_name: str | None = None,
        at: datetime | None = None,
    ) -> TransitionResult:
        workflow = get_workflow(workflow_type)
        tier = entity_tier(workflow.entity) if workflow else Tier.PROJECT
        role = self.role_for(actor, tier or Tier.PROJECT)
        return run_transition(
            workflow_type,
            instance,
            action,
            role,
            actor.id,
            settings=settings,
            signer_name=signer_name,
            at=at,
        )
