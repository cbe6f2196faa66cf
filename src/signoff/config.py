"""Signoff configuration management."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from signoff.auth.roles import OrgRole, ProjectRole, Role, Tier, resolve_role, tier_of

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """Signoff configuration."""

    config_path: Path = field(default_factory=lambda: Path.home() / ".signoff")
    log_level: str = "INFO"

    # Real roles allowed to adopt a lower "view as" role, per tier
    project_impersonators: list[str] = field(
        default_factory=lambda: [str(ProjectRole.SUPPLIER_PM)]
    )
    org_impersonators: list[str] = field(
        default_factory=lambda: [str(OrgRole.ORG_OWNER), str(OrgRole.ORG_ADMIN)]
    )

    # Org owners/admins act as supplier_pm on every project of the organisation
    org_admins_manage_projects: bool = True

    jwt_algorithm: str = "HS256"
    token_minutes: int = 60

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load config from defaults, env vars, then YAML file."""
        config = cls()

        if config_path:
            config.config_path = config_path

        env_path = os.environ.get("SIGNOFF_CONFIG")
        if env_path:
            config.config_path = Path(env_path)

        env_log = os.environ.get("SIGNOFF_LOG_LEVEL")
        if env_log:
            config.log_level = env_log

        config_file = config.config_file
        if config_file.exists():
            with open(config_file) as f:
                data = yaml.safe_load(f) or {}
            for key, value in data.items():
                if not hasattr(config, key):
                    logger.warning("Ignoring unknown config key %r in %s", key, config_file)
                    continue
                expected_type = type(getattr(config, key))
                if expected_type is Path:
                    setattr(config, key, Path(value))
                elif expected_type is list:
                    setattr(config, key, [str(v) for v in value or []])
                else:
                    setattr(config, key, expected_type(value))

        config.project_impersonators = _known_roles(config.project_impersonators, Tier.PROJECT)
        config.org_impersonators = _known_roles(config.org_impersonators, Tier.ORGANISATION)
        return config

    @property
    def config_file(self) -> Path:
        return self.config_path / "config.yaml"

    def impersonators(self, tier: Tier) -> frozenset[Role]:
        """Real roles that may adopt a view-as override in a tier."""
        names = self.project_impersonators if tier == Tier.PROJECT else self.org_impersonators
        resolved = (resolve_role(name) for name in names)
        return frozenset(role for role in resolved if role is not None and tier_of(role) == tier)

    def save(self) -> None:
        """Save current config to YAML."""
        self.config_path.mkdir(parents=True, exist_ok=True)
        data = {
            "log_level": self.log_level,
            "project_impersonators": list(self.project_impersonators),
            "org_impersonators": list(self.org_impersonators),
            "org_admins_manage_projects": self.org_admins_manage_projects,
            "jwt_algorithm": self.jwt_algorithm,
            "token_minutes": self.token_minutes,
        }
        with open(self.config_file, "w") as f:
            yaml.dump(data, f, default_flow_style=False)


def _known_roles(names: list[str], tier: Tier) -> list[str]:
    kept: list[str] = []
    for name in names:
        role = resolve_role(name)
        if role is None or tier_of(role) != tier:
            logger.warning("Dropping impersonator %r: not a %s role", name, tier)
            continue
        kept.append(str(role))
    return kept
