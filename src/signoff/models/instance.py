"""Snapshots of governed entities as the engine sees them."""

from __future__ import annotations

from datetime import UTC, date, datetime

from pydantic import BaseModel, ConfigDict, Field


class Signature(BaseModel):
    """One filled signature slot."""

    model_config = ConfigDict(frozen=True)

    signer_id: str
    signer_name: str | None = None
    signed_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())


class WorkflowInstance(BaseModel):
    """The fields of an entity that authorization and workflows depend on.

    Instances are immutable; every transition returns a new one.
    """

    model_config = ConfigDict(frozen=True)

    status: str | None = None
    owner_id: str | None = None
    chargeable_to_customer: bool | None = None
    supplier_signature: Signature | None = None
    customer_signature: Signature | None = None
    due_date: date | None = None

    def is_owned_by(self, actor_id: str | None) -> bool:
        return self.owner_id is not None and actor_id is not None and self.owner_id == actor_id

    def to_storage(self) -> dict:
        return self.model_dump(mode="json")
