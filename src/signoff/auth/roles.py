"""Role registry for the organisation and project tiers.

Project hierarchy: supplier_pm > customer_pm > contributor > viewer
Organisation hierarchy: org_owner > org_admin > org_member
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

logger = logging.getLogger(__name__)

UNKNOWN_LEVEL = 0
UNKNOWN_LABEL = "Unknown"


class Tier(StrEnum):
    ORGANISATION = "organisation"
    PROJECT = "project"


class ProjectRole(StrEnum):
    SUPPLIER_PM = "supplier_pm"
    CUSTOMER_PM = "customer_pm"
    CONTRIBUTOR = "contributor"
    VIEWER = "viewer"


class OrgRole(StrEnum):
    ORG_OWNER = "org_owner"
    ORG_ADMIN = "org_admin"
    ORG_MEMBER = "org_member"


class Party(StrEnum):
    """Contract side a role signs or approves for."""

    SUPPLIER = "supplier"
    CUSTOMER = "customer"


Role = ProjectRole | OrgRole


@dataclass(frozen=True)
class RoleInfo:
    tier: Tier
    level: int
    label: str
    description: str = ""


_ROLE_INFO: dict[Role, RoleInfo] = {
    ProjectRole.SUPPLIER_PM: RoleInfo(
        Tier.PROJECT, 4, "Supplier PM", "Full project management, supplier signatory"
    ),
    ProjectRole.CUSTOMER_PM: RoleInfo(
        Tier.PROJECT, 3, "Customer PM", "Customer approvals and signatures"
    ),
    ProjectRole.CONTRIBUTOR: RoleInfo(
        Tier.PROJECT, 2, "Contributor", "Records own timesheets, expenses and work"
    ),
    ProjectRole.VIEWER: RoleInfo(Tier.PROJECT, 1, "Viewer", "Read-only access"),
    OrgRole.ORG_OWNER: RoleInfo(
        Tier.ORGANISATION, 3, "Owner", "Full control including billing and deletion"
    ),
    OrgRole.ORG_ADMIN: RoleInfo(
        Tier.ORGANISATION, 2, "Admin", "Manage members, settings, and projects"
    ),
    OrgRole.ORG_MEMBER: RoleInfo(Tier.ORGANISATION, 1, "Member", "Access assigned projects"),
}

# Deprecated role names from the five-role project scheme. Only resolve_role reads this.
ROLE_ALIASES: dict[str, Role] = {
    "admin": ProjectRole.SUPPLIER_PM,
}

_PARTIES: dict[Role, Party] = {
    ProjectRole.SUPPLIER_PM: Party.SUPPLIER,
    ProjectRole.CUSTOMER_PM: Party.CUSTOMER,
}


def resolve_role(value: str | Role | None) -> Role | None:
    """Parse a stored role name, applying the alias table. Unknown names give None."""
    if value is None:
        return None
    if isinstance(value, ProjectRole | OrgRole):
        return value
    if value in ROLE_ALIASES:
        logger.debug("Role alias %r resolved to %s", value, ROLE_ALIASES[value])
        return ROLE_ALIASES[value]
    for enum in (ProjectRole, OrgRole):
        try:
            return enum(value)
        except ValueError:
            continue
    logger.warning("Unknown role: %r", value)
    return None


def role_info(role: str | Role | None) -> RoleInfo | None:
    resolved = resolve_role(role)
    if resolved is None:
        return None
    return _ROLE_INFO[resolved]


def level_of(role: str | Role | None) -> int:
    """Privilege level of a role, UNKNOWN_LEVEL for anything unrecognised."""
    info = role_info(role)
    return info.level if info else UNKNOWN_LEVEL


def is_at_least(role: str | Role | None, min_role: str | Role | None) -> bool:
    """Check a role is at or above another role of the same tier."""
    info = role_info(role)
    required = role_info(min_role)
    if info is None or required is None or info.tier != required.tier:
        return False
    return info.level >= required.level


def label(role: str | Role | None) -> str:
    info = role_info(role)
    return info.label if info else UNKNOWN_LABEL


def tier_of(role: str | Role | None) -> Tier | None:
    info = role_info(role)
    return info.tier if info else None


def roles_in_tier(tier: Tier) -> tuple[Role, ...]:
    """Roles of a tier, most privileged first."""
    members = [role for role, info in _ROLE_INFO.items() if info.tier == tier]
    return tuple(sorted(members, key=lambda r: _ROLE_INFO[r].level, reverse=True))


def party_of(role: str | Role | None) -> Party | None:
    resolved = resolve_role(role)
    if resolved is None:
        return None
    return _PARTIES.get(resolved)
