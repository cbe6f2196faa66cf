"""Shared test fixtures for Signoff."""

from __future__ import annotations

from pathlib import Path

import pytest

from signoff.config import Config
from signoff.core.facade import AuthorizationEngine
from signoff.models.actor import Actor
from signoff.models.instance import WorkflowInstance


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(config_path=tmp_path)


@pytest.fixture
def engine(config: Config) -> AuthorizationEngine:
    return AuthorizationEngine(config)


@pytest.fixture
def supplier() -> Actor:
    return Actor(id="sup-1", session_id="s-sup", project_role="supplier_pm")


@pytest.fixture
def customer() -> Actor:
    return Actor(id="cus-1", session_id="s-cus", project_role="customer_pm")


@pytest.fixture
def contributor() -> Actor:
    return Actor(id="con-1", session_id="s-con", project_role="contributor")


@pytest.fixture
def viewer() -> Actor:
    return Actor(id="view-1", session_id="s-view", project_role="viewer")


@pytest.fixture
def make_instance():
    """Factory for instance snapshots, owned by the contributor fixture by default."""

    def _make(status: str | None = "Draft", owner_id: str | None = "con-1", **kwargs):
        return WorkflowInstance(status=status, owner_id=owner_id, **kwargs)

    return _make
