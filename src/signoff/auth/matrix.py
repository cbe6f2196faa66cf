"""Permission matrix: (entity type, action) -> roles allowed.

Two matrices sit side by side, one per tier. Lookups are deny-by-default:
an unknown role, entity or action is never allowed.

Entries flagged ``asymmetric`` deliberately grant a lower role something a
higher role of the same tier does not get (customer-side authority, work
recorded only by the people doing it). Every other entry respects the role
ordering, which ``validate_matrix`` checks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from signoff.auth.roles import (
    OrgRole,
    ProjectRole,
    Role,
    Tier,
    label,
    level_of,
    resolve_role,
    roles_in_tier,
    tier_of,
)

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when an (entity, action) pair a rule or workflow needs is missing."""


class EntityType(StrEnum):
    # Project tier
    TIMESHEET = "timesheet"
    EXPENSE = "expense"
    MILESTONE = "milestone"
    DELIVERABLE = "deliverable"
    RESOURCE = "resource"
    PARTNER = "partner"
    VARIATION = "variation"
    CERTIFICATE = "certificate"
    INVOICE = "invoice"
    USERS = "users"
    SETTINGS = "settings"
    KPI = "kpi"
    QUALITY_STANDARD = "quality_standard"
    RAID = "raid"
    REPORTS = "reports"
    # Organisation tier
    ORGANISATION = "organisation"
    ORG_MEMBERS = "org_members"
    ORG_PROJECTS = "org_projects"
    ORG_SETTINGS = "org_settings"


class Action(StrEnum):
    VIEW = "view"
    ACCESS = "access"
    CREATE = "create"
    CREATE_FOR_OTHERS = "create_for_others"
    EDIT = "edit"
    DELETE = "delete"
    MANAGE = "manage"
    # Approval pipeline
    SUBMIT = "submit"
    WITHDRAW = "withdraw"
    VALIDATE = "validate"
    VALIDATE_CHARGEABLE = "validate_chargeable"
    VALIDATE_NON_CHARGEABLE = "validate_non_chargeable"
    APPROVE = "approve"
    APPROVE_CHARGEABLE = "approve_chargeable"
    APPROVE_NON_CHARGEABLE = "approve_non_chargeable"
    REJECT = "reject"
    REVISE = "revise"
    # Deliverable review
    START = "start"
    RESUME = "resume"
    COMPLETE_REVIEW = "complete_review"
    REQUEST_REWORK = "request_rework"
    MARK_DELIVERED = "mark_delivered"
    # Signatures
    SIGN_AS_SUPPLIER = "sign_as_supplier"
    SIGN_AS_CUSTOMER = "sign_as_customer"
    IMPLEMENT = "implement"
    # Invoices
    GENERATE_CUSTOMER = "generate_customer"
    GENERATE_THIRD_PARTY = "generate_third_party"
    RECORD_PAYMENT = "record_payment"
    RECORD_PARTIAL_PAYMENT = "record_partial_payment"
    MARK_OVERDUE = "mark_overdue"
    # Confidential attributes
    VIEW_COST_PRICE = "view_cost_price"
    VIEW_RESOURCE_TYPE = "view_resource_type"
    VIEW_MARGINS = "view_margins"
    # Misc project actions
    USE_GANTT = "use_gantt"
    EDIT_BILLING = "edit_billing"
    UPDATE_STATUS = "update_status"
    ASSIGN_OWNER = "assign_owner"
    VIEW_WORKFLOW_SUMMARY = "view_workflow_summary"
    # Organisation actions
    INVITE = "invite"
    REMOVE = "remove"
    CHANGE_ROLE = "change_role"
    PROMOTE_TO_OWNER = "promote_to_owner"
    MANAGE_BILLING = "manage_billing"
    VIEW_BILLING = "view_billing"
    ASSIGN_MEMBERS = "assign_members"
    MANAGE_FEATURES = "manage_features"
    MANAGE_BRANDING = "manage_branding"


@dataclass(frozen=True)
class MatrixEntry:
    roles: frozenset[Role]
    asymmetric: bool = False
    system_only: bool = False
    note: str = ""


def _allow(*roles: Role, note: str = "") -> MatrixEntry:
    return MatrixEntry(frozenset(roles), note=note)


def _asymmetric(*roles: Role, note: str) -> MatrixEntry:
    return MatrixEntry(frozenset(roles), asymmetric=True, note=note)


def _system(note: str) -> MatrixEntry:
    return MatrixEntry(frozenset(), system_only=True, note=note)


_SP = ProjectRole.SUPPLIER_PM
_CP = ProjectRole.CUSTOMER_PM
_CO = ProjectRole.CONTRIBUTOR
_VI = ProjectRole.VIEWER

ALL_PROJECT_ROLES = (_SP, _CP, _CO, _VI)
MANAGERS = (_SP, _CP)
SUPPLIER_SIDE = (_SP,)
CUSTOMER_SIDE = (_CP,)
WORKERS = (_SP, _CO)

ALL_ORG_ROLES = (OrgRole.ORG_OWNER, OrgRole.ORG_ADMIN, OrgRole.ORG_MEMBER)
ORG_ADMINS = (OrgRole.ORG_OWNER, OrgRole.ORG_ADMIN)
ORG_OWNER_ONLY = (OrgRole.ORG_OWNER,)

_WORK = "recorded by the people doing the work, not the customer"
_CUSTOMER = "customer-side authority"


PROJECT_MATRIX: dict[EntityType, dict[Action, MatrixEntry]] = {
    EntityType.TIMESHEET: {
        Action.VIEW: _allow(*ALL_PROJECT_ROLES),
        Action.CREATE: _asymmetric(*WORKERS, note=_WORK),
        Action.CREATE_FOR_OTHERS: _allow(*SUPPLIER_SIDE),
        Action.EDIT: _asymmetric(*WORKERS, note=_WORK),
        Action.DELETE: _asymmetric(*WORKERS, note="owners delete their own drafts"),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
        Action.SUBMIT: _asymmetric(*WORKERS, note=_WORK),
        Action.VALIDATE: _allow(*SUPPLIER_SIDE),
        Action.APPROVE: _asymmetric(*CUSTOMER_SIDE, note=_CUSTOMER),
        Action.REJECT: _allow(*MANAGERS),
        Action.REVISE: _asymmetric(*WORKERS, note=_WORK),
    },
    EntityType.EXPENSE: {
        Action.VIEW: _allow(*ALL_PROJECT_ROLES),
        Action.CREATE: _asymmetric(*WORKERS, note=_WORK),
        Action.CREATE_FOR_OTHERS: _allow(*SUPPLIER_SIDE),
        Action.EDIT: _asymmetric(*WORKERS, note=_WORK),
        Action.DELETE: _asymmetric(*WORKERS, note="owners delete their own drafts"),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
        Action.SUBMIT: _asymmetric(*WORKERS, note=_WORK),
        Action.VALIDATE: _allow(*MANAGERS, note="routed by chargeable_to_customer"),
        Action.VALIDATE_CHARGEABLE: _asymmetric(*CUSTOMER_SIDE, note=_CUSTOMER),
        Action.VALIDATE_NON_CHARGEABLE: _allow(*SUPPLIER_SIDE),
        Action.APPROVE: _allow(*MANAGERS, note="routed by chargeable_to_customer"),
        Action.APPROVE_CHARGEABLE: _asymmetric(*CUSTOMER_SIDE, note=_CUSTOMER),
        Action.APPROVE_NON_CHARGEABLE: _allow(*SUPPLIER_SIDE),
        Action.REJECT: _allow(*MANAGERS, note="routed by chargeable_to_customer"),
        Action.REVISE: _asymmetric(*WORKERS, note=_WORK),
    },
    EntityType.MILESTONE: {
        Action.VIEW: _allow(*ALL_PROJECT_ROLES),
        Action.CREATE: _allow(*SUPPLIER_SIDE),
        Action.EDIT: _allow(*SUPPLIER_SIDE),
        Action.DELETE: _allow(*SUPPLIER_SIDE),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
        Action.USE_GANTT: _allow(*SUPPLIER_SIDE),
        Action.EDIT_BILLING: _allow(*SUPPLIER_SIDE),
        Action.SIGN_AS_SUPPLIER: _allow(*SUPPLIER_SIDE),
        Action.SIGN_AS_CUSTOMER: _asymmetric(*CUSTOMER_SIDE, note=_CUSTOMER),
    },
    EntityType.DELIVERABLE: {
        Action.VIEW: _allow(*ALL_PROJECT_ROLES),
        Action.CREATE: _asymmetric(*WORKERS, note=_WORK),
        Action.EDIT: _asymmetric(*WORKERS, note=_WORK),
        Action.DELETE: _allow(*SUPPLIER_SIDE),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
        Action.START: _asymmetric(*WORKERS, note=_WORK),
        Action.SUBMIT: _asymmetric(*WORKERS, note=_WORK),
        Action.RESUME: _asymmetric(*WORKERS, note=_WORK),
        Action.COMPLETE_REVIEW: _asymmetric(*CUSTOMER_SIDE, note=_CUSTOMER),
        Action.REQUEST_REWORK: _asymmetric(*CUSTOMER_SIDE, note=_CUSTOMER),
        Action.MARK_DELIVERED: _allow(*MANAGERS),
        Action.SIGN_AS_SUPPLIER: _allow(*SUPPLIER_SIDE),
        Action.SIGN_AS_CUSTOMER: _asymmetric(*CUSTOMER_SIDE, note=_CUSTOMER),
    },
    EntityType.KPI: {
        Action.VIEW: _allow(*ALL_PROJECT_ROLES),
        Action.CREATE: _allow(*SUPPLIER_SIDE),
        Action.EDIT: _allow(*SUPPLIER_SIDE),
        Action.DELETE: _allow(*SUPPLIER_SIDE),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
    },
    EntityType.QUALITY_STANDARD: {
        Action.VIEW: _allow(*ALL_PROJECT_ROLES),
        Action.CREATE: _allow(*SUPPLIER_SIDE),
        Action.EDIT: _allow(*SUPPLIER_SIDE),
        Action.DELETE: _allow(*SUPPLIER_SIDE),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
    },
    EntityType.RAID: {
        Action.VIEW: _allow(*ALL_PROJECT_ROLES),
        Action.CREATE: _allow(*MANAGERS),
        Action.EDIT: _allow(*MANAGERS),
        Action.DELETE: _allow(*SUPPLIER_SIDE),
        Action.MANAGE: _allow(*MANAGERS),
        Action.UPDATE_STATUS: _allow(*MANAGERS),
        Action.ASSIGN_OWNER: _allow(*MANAGERS),
    },
    EntityType.RESOURCE: {
        Action.VIEW: _allow(*ALL_PROJECT_ROLES),
        Action.CREATE: _allow(*SUPPLIER_SIDE),
        Action.EDIT: _allow(*SUPPLIER_SIDE),
        Action.DELETE: _allow(*SUPPLIER_SIDE),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
        Action.VIEW_COST_PRICE: _allow(*SUPPLIER_SIDE),
        Action.VIEW_RESOURCE_TYPE: _allow(*SUPPLIER_SIDE),
        Action.VIEW_MARGINS: _allow(*SUPPLIER_SIDE),
    },
    EntityType.PARTNER: {
        Action.VIEW: _allow(*SUPPLIER_SIDE),
        Action.CREATE: _allow(*SUPPLIER_SIDE),
        Action.EDIT: _allow(*SUPPLIER_SIDE),
        Action.DELETE: _allow(*SUPPLIER_SIDE),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
    },
    EntityType.VARIATION: {
        Action.VIEW: _allow(*ALL_PROJECT_ROLES),
        Action.CREATE: _allow(*SUPPLIER_SIDE),
        Action.EDIT: _allow(*SUPPLIER_SIDE),
        Action.DELETE: _allow(*SUPPLIER_SIDE),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
        Action.SUBMIT: _allow(*SUPPLIER_SIDE),
        Action.WITHDRAW: _allow(*SUPPLIER_SIDE),
        Action.SIGN_AS_SUPPLIER: _allow(*SUPPLIER_SIDE),
        Action.SIGN_AS_CUSTOMER: _asymmetric(*CUSTOMER_SIDE, note=_CUSTOMER),
        Action.REJECT: _allow(*MANAGERS),
        Action.REVISE: _allow(*SUPPLIER_SIDE),
        Action.IMPLEMENT: _allow(*SUPPLIER_SIDE),
    },
    EntityType.CERTIFICATE: {
        Action.VIEW: _allow(*MANAGERS),
        Action.CREATE: _allow(*MANAGERS),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
        Action.SIGN_AS_SUPPLIER: _allow(*SUPPLIER_SIDE),
        Action.SIGN_AS_CUSTOMER: _asymmetric(*CUSTOMER_SIDE, note=_CUSTOMER),
    },
    EntityType.INVOICE: {
        Action.VIEW: _allow(*MANAGERS),
        Action.GENERATE_CUSTOMER: _allow(*MANAGERS),
        Action.GENERATE_THIRD_PARTY: _allow(*SUPPLIER_SIDE),
        Action.VIEW_MARGINS: _allow(*SUPPLIER_SIDE),
        Action.CREATE: _allow(*SUPPLIER_SIDE),
        Action.EDIT: _allow(*SUPPLIER_SIDE),
        Action.DELETE: _allow(*SUPPLIER_SIDE),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
        Action.SUBMIT: _allow(*SUPPLIER_SIDE),
        Action.APPROVE: _allow(*SUPPLIER_SIDE),
        Action.REJECT: _allow(*SUPPLIER_SIDE),
        Action.REVISE: _allow(*SUPPLIER_SIDE),
        Action.RECORD_PAYMENT: _allow(*SUPPLIER_SIDE),
        Action.RECORD_PARTIAL_PAYMENT: _allow(*SUPPLIER_SIDE),
        Action.MARK_OVERDUE: _system("raised by the caller once due_date has passed"),
    },
    EntityType.SETTINGS: {
        Action.ACCESS: _allow(*SUPPLIER_SIDE),
        Action.EDIT: _allow(*SUPPLIER_SIDE),
    },
    EntityType.USERS: {
        Action.VIEW: _allow(*SUPPLIER_SIDE),
        Action.MANAGE: _allow(*SUPPLIER_SIDE),
    },
    EntityType.REPORTS: {
        Action.ACCESS: _allow(*MANAGERS),
        Action.VIEW_WORKFLOW_SUMMARY: _allow(*MANAGERS),
    },
}

ORG_MATRIX: dict[EntityType, dict[Action, MatrixEntry]] = {
    EntityType.ORGANISATION: {
        Action.VIEW: _allow(*ALL_ORG_ROLES),
        Action.EDIT: _allow(*ORG_ADMINS),
        Action.DELETE: _allow(*ORG_OWNER_ONLY),
        Action.MANAGE_BILLING: _allow(*ORG_OWNER_ONLY),
        Action.VIEW_BILLING: _allow(*ORG_ADMINS),
    },
    EntityType.ORG_MEMBERS: {
        Action.VIEW: _allow(*ALL_ORG_ROLES),
        Action.INVITE: _allow(*ORG_ADMINS),
        Action.REMOVE: _allow(*ORG_ADMINS),
        Action.CHANGE_ROLE: _allow(*ORG_ADMINS),
        Action.PROMOTE_TO_OWNER: _allow(*ORG_OWNER_ONLY),
    },
    EntityType.ORG_PROJECTS: {
        Action.VIEW: _allow(*ALL_ORG_ROLES),
        Action.CREATE: _allow(*ORG_ADMINS),
        Action.DELETE: _allow(*ORG_ADMINS, note="project deletion is delegated to org admins"),
        Action.ASSIGN_MEMBERS: _allow(*ORG_ADMINS),
    },
    EntityType.ORG_SETTINGS: {
        Action.VIEW: _allow(*ORG_ADMINS),
        Action.EDIT: _allow(*ORG_ADMINS),
        Action.MANAGE_FEATURES: _allow(*ORG_OWNER_ONLY),
        Action.MANAGE_BRANDING: _allow(*ORG_ADMINS),
    },
}

MATRICES: dict[Tier, dict[EntityType, dict[Action, MatrixEntry]]] = {
    Tier.PROJECT: PROJECT_MATRIX,
    Tier.ORGANISATION: ORG_MATRIX,
}

_ENTITY_TIERS: dict[EntityType, Tier] = {
    entity: tier for tier, matrix in MATRICES.items() for entity in matrix
}


def _parse(entity_type: str, action: str) -> tuple[EntityType, Action] | None:
    try:
        return EntityType(entity_type), Action(action)
    except ValueError:
        return None


def _lookup(entity_type: str, action: str) -> MatrixEntry | None:
    parsed = _parse(entity_type, action)
    if parsed is None:
        logger.warning("Permission matrix: unknown entity or action %r.%r", entity_type, action)
        return None
    entity, act = parsed
    tier = _ENTITY_TIERS.get(entity)
    if tier is None:
        logger.warning("Permission matrix: entity %r has no matrix", entity_type)
        return None
    entry = MATRICES[tier][entity].get(act)
    if entry is None:
        logger.warning("Permission matrix: unknown action %r for entity %r", action, entity_type)
    return entry


def entity_tier(entity_type: str) -> Tier | None:
    try:
        return _ENTITY_TIERS.get(EntityType(entity_type))
    except ValueError:
        return None


def matrix_allows(role: str | Role | None, entity_type: str, action: str) -> bool:
    """Coarse allow/deny from the role alone, ignoring instance state."""
    entry = _lookup(entity_type, action)
    if entry is None:
        return False
    resolved = resolve_role(role)
    if resolved is None:
        return False
    return resolved in entry.roles


def has_entry(entity_type: str, action: str) -> bool:
    parsed = _parse(entity_type, action)
    if parsed is None:
        return False
    entity, act = parsed
    tier = _ENTITY_TIERS.get(entity)
    return tier is not None and act in MATRICES[tier][entity]


def entry_for(entity_type: str, action: str) -> MatrixEntry:
    """Return the entry for a pair that must exist.

    Raises:
        ConfigurationError: If the pair has no matrix entry
    """
    if not has_entry(entity_type, action):
        raise ConfigurationError(f"No permission matrix entry for {entity_type}.{action}")
    entity, act = EntityType(entity_type), Action(action)
    return MATRICES[_ENTITY_TIERS[entity]][entity][act]


def roles_for(entity_type: str, action: str) -> frozenset[Role]:
    """Roles allowed to perform an action, e.g. for "who can approve this?"."""
    entry = _lookup(entity_type, action)
    return entry.roles if entry else frozenset()


def actions_for(entity_type: str) -> tuple[Action, ...]:
    tier = entity_tier(entity_type)
    if tier is None:
        return ()
    return tuple(MATRICES[tier][EntityType(entity_type)])


def permissions_for_role(role: str | Role | None) -> dict[str, dict[str, bool]]:
    """Every entity/action of the role's tier mapped to the role's verdict."""
    resolved = resolve_role(role)
    tier = tier_of(resolved)
    if resolved is None or tier is None:
        return {}
    return {
        str(entity): {str(action): resolved in entry.roles for action, entry in actions.items()}
        for entity, actions in MATRICES[tier].items()
    }


def permission_summary(tier: Tier = Tier.PROJECT) -> str:
    lines: list[str] = []
    for entity, actions in MATRICES[tier].items():
        lines.append(f"\n## {entity.replace('_', ' ').title()}")
        for action, entry in actions.items():
            names = ", ".join(label(r) for r in roles_in_tier(tier) if r in entry.roles)
            lines.append(f"- {action}: {names or 'nobody (system only)'}")
    return "\n".join(lines)


def validate_matrix() -> list[str]:
    """Return every configuration problem found in both matrices."""
    problems: list[str] = []
    for tier, matrix in MATRICES.items():
        ordered = roles_in_tier(tier)
        top = ordered[0]
        for entity, actions in matrix.items():
            if not (Action.VIEW in actions or Action.ACCESS in actions):
                problems.append(f"{entity}: no view or access action")
            for action, entry in actions.items():
                where = f"{entity}.{action}"
                if not entry.roles and not entry.system_only:
                    problems.append(f"{where}: empty role set not marked system_only")
                stray = [r for r in entry.roles if tier_of(r) != tier]
                if stray:
                    problems.append(f"{where}: roles from another tier {sorted(stray)}")
                widened = entry.roles - {top}
                if action == Action.DELETE and widened and not (entry.asymmetric or entry.note):
                    problems.append(f"{where}: delete widened beyond {top} without a note")
                if entry.asymmetric:
                    continue
                for granted in entry.roles:
                    for other in ordered:
                        if level_of(other) >= level_of(granted) and other not in entry.roles:
                            problems.append(
                                f"{where}: {other} outranks {granted} but is denied"
                            )
    return problems
