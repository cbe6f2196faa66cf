"""Effective-role resolution, including "view as" impersonation.

An override only ever lowers privilege: it applies when its session matches
the actor's, the real role may impersonate, and the requested role sits in
the same tier at or below the real one. Anything else falls back to the real
role without raising.
"""

from __future__ import annotations

import logging

from signoff.auth.roles import (
    OrgRole,
    ProjectRole,
    Role,
    Tier,
    is_at_least,
    resolve_role,
    tier_of,
)
from signoff.config import Config
from signoff.models.actor import Actor

logger = logging.getLogger(__name__)

_ORG_MANAGERS = frozenset({OrgRole.ORG_OWNER, OrgRole.ORG_ADMIN})


def _stored_role(actor: Actor, tier: Tier) -> Role | None:
    name = actor.project_role if tier == Tier.PROJECT else actor.org_role
    role = resolve_role(name)
    if role is not None and tier_of(role) != tier:
        logger.warning("Actor %s has %s stored as a %s role", actor.id, role, tier)
        return None
    return role


def actual_role(actor: Actor, tier: Tier, config: Config | None = None) -> Role | None:
    """The actor's real role in a tier, before any override."""
    config = config or Config()
    role = _stored_role(actor, tier)
    if tier != Tier.PROJECT or not config.org_admins_manage_projects:
        return role
    if resolve_role(actor.org_role) in _ORG_MANAGERS:
        return ProjectRole.SUPPLIER_PM
    return role


def _override_role(actor: Actor, tier: Tier, real: Role | None, config: Config) -> Role | None:
    override = actor.view_as
    if override is None or real is None:
        return None
    if actor.session_id is None or override.session_id != actor.session_id:
        logger.debug("Ignoring view-as for %s: session mismatch", actor.id)
        return None
    if real not in config.impersonators(tier):
        logger.debug("Ignoring view-as for %s: %s may not impersonate", actor.id, real)
        return None
    requested = resolve_role(override.role)
    if requested is None or tier_of(requested) != tier:
        return None
    if not is_at_least(real, requested):
        logger.debug("Ignoring view-as for %s: %s outranks %s", actor.id, requested, real)
        return None
    return requested


def effective_role(actor: Actor, tier: Tier, config: Config | None = None) -> Role | None:
    """The role every authorization decision in a tier is made with."""
    config = config or Config()
    real = actual_role(actor, tier, config)
    return _override_role(actor, tier, real, config) or real


def is_impersonating(actor: Actor, tier: Tier, config: Config | None = None) -> bool:
    config = config or Config()
    real = actual_role(actor, tier, config)
    requested = _override_role(actor, tier, real, config)
    return requested is not None and requested != real
