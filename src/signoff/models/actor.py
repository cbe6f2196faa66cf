"""Actor model: who is asking, and as whom."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class ViewAsOverride(BaseModel):
    """A session-scoped request to act under a lower role."""

    model_config = ConfigDict(frozen=True)

    role: str
    session_id: str
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())


class Actor(BaseModel):
    """An authenticated user with the roles stored for them.

    Role names are kept as stored strings; the role registry resolves them,
    including deprecated aliases.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str | None = None
    project_role: str | None = None
    org_role: str | None = None
    view_as: ViewAsOverride | None = None

    def to_response(self) -> dict:
        return {
            "_v": "1.0",
            "id": self.id,
            "project_role": self.project_role,
            "org_role": self.org_role,
            "view_as": self.view_as.role if self.view_as else None,
        }
