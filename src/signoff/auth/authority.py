"""Per-project approval authority and feature toggles.

Projects may restrict which contract side approves an entity type, and may
switch whole features off. Both only ever narrow what the matrix and rules
already allow.
"""

from __future__ import annotations

import logging

from signoff.auth.matrix import Action
from signoff.auth.roles import Party, Role, party_of
from signoff.models.instance import WorkflowInstance
from signoff.models.settings import ApprovalAuthority, WorkflowSettings

logger = logging.getLogger(__name__)

# Entity type or workflow type -> feature toggle name
FEATURES: dict[str, str] = {
    "timesheet": "timesheets",
    "expense": "expenses",
    "variation": "variations",
    "certificate": "certificates",
    "milestone_baseline": "baselines",
    "kpi": "kpis",
    "quality_standard": "quality_standards",
    "raid": "raid",
}

READ_ACTIONS = frozenset({Action.VIEW, Action.ACCESS})

APPROVAL_ACTIONS = frozenset(
    {
        Action.VALIDATE,
        Action.VALIDATE_CHARGEABLE,
        Action.VALIDATE_NON_CHARGEABLE,
        Action.APPROVE,
        Action.APPROVE_CHARGEABLE,
        Action.APPROVE_NON_CHARGEABLE,
        Action.REJECT,
    }
)


def feature_for(name: str) -> str | None:
    return FEATURES.get(name)


def is_feature_enabled(settings: WorkflowSettings | None, feature: str | None) -> bool:
    """Features default to enabled when no setting is stored."""
    if settings is None or feature is None:
        return True
    return settings.features.get(feature, True)


def feature_allows(settings: WorkflowSettings | None, name: str, action: str) -> bool:
    """Disabled features still allow viewing; every other action is denied."""
    if action in READ_ACTIONS:
        return True
    feature = feature_for(name)
    if is_feature_enabled(settings, feature):
        return True
    logger.debug("Feature %s disabled; denying %s on %s", feature, action, name)
    return False


def authority_for(settings: WorkflowSettings | None, entity_type: str) -> ApprovalAuthority:
    if settings is None:
        return ApprovalAuthority.BOTH
    return settings.approval_authority.get(entity_type, ApprovalAuthority.BOTH)


def approval_allowed(
    settings: WorkflowSettings | None,
    entity_type: str,
    action: str,
    role: str | Role | None,
    instance: WorkflowInstance | None = None,
) -> bool:
    """Check the project's approval authority for an approval-stage action.

    ``both`` and ``either`` leave the matrix decision alone. ``supplier_only``
    and ``customer_only`` keep only that side's role. ``conditional`` picks the
    side from ``chargeable_to_customer`` and denies when the flag is missing.
    ``none`` means no separate approval is required: the matrix and rule
    verdict stands, so whoever holds the stage authority completes it.
    """
    if action not in APPROVAL_ACTIONS:
        return True
    authority = authority_for(settings, entity_type)
    party = party_of(role)
    match authority:
        case ApprovalAuthority.BOTH | ApprovalAuthority.EITHER | ApprovalAuthority.NONE:
            return True
        case ApprovalAuthority.SUPPLIER_ONLY:
            return party == Party.SUPPLIER
        case ApprovalAuthority.CUSTOMER_ONLY:
            return party == Party.CUSTOMER
        case ApprovalAuthority.CONDITIONAL:
            if instance is None or instance.chargeable_to_customer is None:
                return False
            wanted = Party.CUSTOMER if instance.chargeable_to_customer else Party.SUPPLIER
            return party == wanted
    return False
