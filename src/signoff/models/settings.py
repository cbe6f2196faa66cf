"""Per-project workflow settings supplied by the caller."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ApprovalAuthority(StrEnum):
    """Which contract side may approve an entity type on a project."""

    BOTH = "both"
    SUPPLIER_ONLY = "supplier_only"
    CUSTOMER_ONLY = "customer_only"
    EITHER = "either"
    CONDITIONAL = "conditional"
    NONE = "none"


class WorkflowSettings(BaseModel):
    """Approval authority per entity and feature toggles for one project.

    Missing entries mean the defaults: matrix authority and every feature on.
    """

    model_config = ConfigDict(frozen=True)

    approval_authority: dict[str, ApprovalAuthority] = Field(default_factory=dict)
    features: dict[str, bool] = Field(default_factory=dict)
