"""CLI: init, matrix, who, can, transitions, check, token, whoami."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from signoff.auth.jwt import (
    TokenExpiredError,
    TokenInvalidError,
    actor_from_token,
    create_token,
    jwt_secret,
)
from signoff.auth.matrix import (
    MATRICES,
    EntityType,
    actions_for,
    entity_tier,
    has_entry,
    permissions_for_role,
    roles_for,
    validate_matrix,
)
from signoff.auth.roles import Tier, label, resolve_role, roles_in_tier
from signoff.auth.rules import validate_rules
from signoff.config import Config
from signoff.core.definitions import WorkflowType, get_workflow
from signoff.core.facade import AuthorizationEngine
from signoff.core.workflow import validate_workflows
from signoff.models.actor import Actor
from signoff.models.instance import WorkflowInstance


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@click.group()
@click.version_option(package_name="signoff-engine")
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def main(ctx: click.Context, log_level: str | None) -> None:
    """Signoff: authorization and approval workflows."""
    config = Config.load()
    if log_level:
        config.log_level = log_level
    _setup_logging(config.log_level)
    ctx.obj = config


@main.command()
@click.argument("path", type=click.Path(), default="~/.signoff")
def init(path: str) -> None:
    """Write a default config.yaml."""
    config_path = Path(path).expanduser().resolve()
    config = Config(config_path=config_path)
    config.save()
    click.echo(f"Initialized config at {config.config_file}")
    click.echo(f"  export SIGNOFF_CONFIG={config_path}")


@main.command()
@click.option(
    "--tier",
    type=click.Choice([str(t) for t in Tier]),
    default=str(Tier.PROJECT),
    help="Which matrix to show",
)
@click.option("--role", default=None, help="Show one role's verdicts instead of role lists")
def matrix(tier: str, role: str | None) -> None:
    """Print the permission matrix."""
    console = Console()
    if role:
        resolved = resolve_role(role)
        if resolved is None:
            click.echo(f"Error: Unknown role {role!r}", err=True)
            sys.exit(1)
        table = Table(title=f"Permissions for {label(resolved)}")
        table.add_column("Entity", style="cyan")
        table.add_column("Allowed", style="green")
        table.add_column("Denied", style="red")
        for entity, actions in permissions_for_role(resolved).items():
            allowed = [a for a, ok in actions.items() if ok]
            denied = [a for a, ok in actions.items() if not ok]
            table.add_row(entity, ", ".join(allowed), ", ".join(denied))
        console.print(table)
        return

    selected = Tier(tier)
    ordered = roles_in_tier(selected)
    table = Table(title=f"{selected.capitalize()} permission matrix")
    table.add_column("Entity", style="cyan")
    table.add_column("Action", style="magenta")
    for r in ordered:
        table.add_column(label(r), justify="center")
    for entity, actions in MATRICES[selected].items():
        for action, entry in actions.items():
            marks = ["[green]✓[/green]" if r in entry.roles else "·" for r in ordered]
            suffix = " *" if entry.asymmetric else ""
            table.add_row(str(entity), f"{action}{suffix}", *marks)
    console.print(table)
    console.print("* asymmetric entry")


@main.command()
@click.argument("entity", type=click.Choice([str(e) for e in EntityType]))
@click.argument("action")
def who(entity: str, action: str) -> None:
    """List the roles allowed to perform ACTION on ENTITY."""
    if not has_entry(entity, action):
        known = ", ".join(actions_for(entity))
        click.echo(f"Error: {entity} has no action {action!r} (known: {known})", err=True)
        sys.exit(1)
    roles = roles_for(entity, action)
    if not roles:
        click.echo(f"Nobody may {action} {entity}")
        return
    tier = entity_tier(entity) or Tier.PROJECT
    for role in roles_in_tier(tier):
        if role in roles:
            click.echo(f"{role}\t{label(role)}")


def _actor(
    actor_id: str, role: str | None, org_role: str | None, session_id: str | None
) -> Actor:
    return Actor(id=actor_id, session_id=session_id, project_role=role, org_role=org_role)


def _instance(
    status: str | None, owner: str | None, chargeable: bool | None
) -> WorkflowInstance:
    return WorkflowInstance(status=status, owner_id=owner, chargeable_to_customer=chargeable)


@main.command()
@click.argument("action")
@click.argument("entity", type=click.Choice([str(e) for e in EntityType]))
@click.option("--role", default=None, help="Stored project role")
@click.option("--org-role", default=None, help="Stored organisation role")
@click.option("--actor", "actor_id", default="cli-user", help="Actor id")
@click.option("--status", default=None, help="Instance status, e.g. Draft")
@click.option("--owner", default=None, help="Instance owner id")
@click.option("--chargeable/--not-chargeable", default=None, help="Expense chargeable flag")
@click.pass_obj
def can(
    config: Config,
    action: str,
    entity: str,
    role: str | None,
    org_role: str | None,
    actor_id: str,
    status: str | None,
    owner: str | None,
    chargeable: bool | None,
) -> None:
    """Decide whether an actor may perform ACTION on ENTITY."""
    engine = AuthorizationEngine(config)
    actor = _actor(actor_id, role, org_role, None)
    has_instance = status is not None or owner is not None or chargeable is not None
    instance = _instance(status, owner, chargeable) if has_instance else None
    decision = engine.explain(actor, action, entity, instance)
    if decision.allowed:
        click.echo(f"allowed (as {decision.role})")
    else:
        click.echo(f"denied: {decision.reason}")


@main.command()
@click.argument("workflow", type=click.Choice([str(w) for w in WorkflowType]))
@click.option("--status", default=None, help="Current status")
@click.option("--role", default=None, help="Only transitions this project role may take")
@click.option("--actor", "actor_id", default="cli-user", help="Actor id")
@click.option("--owner", default=None, help="Instance owner id")
@click.option("--chargeable/--not-chargeable", default=None, help="Expense chargeable flag")
@click.pass_obj
def transitions(
    config: Config,
    workflow: str,
    status: str | None,
    role: str | None,
    actor_id: str,
    owner: str | None,
    chargeable: bool | None,
) -> None:
    """List the transitions open from a state."""
    definition = get_workflow(workflow)
    if definition is None:
        click.echo(f"Error: Unknown workflow {workflow!r}", err=True)
        sys.exit(1)
    engine = AuthorizationEngine(config)
    instance = _instance(status or str(definition.initial_state), owner, chargeable)
    if role:
        found = engine.available_transitions(_actor(actor_id, role, None, None), workflow, instance)
    else:
        found = engine.next_transitions(workflow, instance)

    table = Table(title=f"{workflow}: from {instance.status}")
    table.add_column("Action", style="cyan")
    table.add_column("To", style="green")
    table.add_column("Side effect", style="magenta")
    for t in found:
        table.add_row(str(t.action), str(t.to_state), t.side_effect or "")
    Console().print(table)


@main.command()
def check() -> None:
    """Validate the permission matrix, rule sets and workflow definitions."""
    problems = validate_matrix() + validate_rules() + validate_workflows()
    if problems:
        for problem in problems:
            click.echo(f"  {problem}", err=True)
        click.echo(f"Error: {len(problems)} configuration problem(s)", err=True)
        sys.exit(1)
    click.echo("Matrix, rules and workflows OK")


@main.command()
@click.argument("user_id")
@click.option("--role", default=None, help="Stored project role")
@click.option("--org-role", default=None, help="Stored organisation role")
@click.option("--session", "session_id", default=None, help="Session id")
@click.pass_obj
def token(
    config: Config,
    user_id: str,
    role: str | None,
    org_role: str | None,
    session_id: str | None,
) -> None:
    """Issue an identity token valid for the configured number of minutes."""
    for name in (role, org_role):
        if name and resolve_role(name) is None:
            click.echo(f"Error: Unknown role {name!r}", err=True)
            sys.exit(1)
    click.echo(
        create_token(
            user_id,
            project_role=role,
            org_role=org_role,
            session_id=session_id,
            exp_minutes=config.token_minutes,
            algorithm=config.jwt_algorithm,
        )
    )


@main.command()
@click.argument("token")
@click.pass_obj
def whoami(config: Config, token: str) -> None:
    """Decode an identity token and show the roles it grants."""
    secret = jwt_secret()
    try:
        actor = actor_from_token(token, secret, algorithm=config.jwt_algorithm)
    except (TokenExpiredError, TokenInvalidError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    engine = AuthorizationEngine(config)
    project = engine.role_for(actor, Tier.PROJECT)
    org = engine.role_for(actor, Tier.ORGANISATION)
    lines = [
        f"User: {actor.id}",
        f"Session: {actor.session_id or '-'}",
        f"Project role: {label(project)} ({project or 'none'})",
        f"Org role: {label(org)} ({org or 'none'})",
    ]
    if actor.project_role and resolve_role(actor.project_role) is None:
        lines.append(f"[yellow]Stored role {actor.project_role!r} is not recognised[/yellow]")
    Console().print(Panel("\n".join(lines), title="Identity"))


if __name__ == "__main__":
    main()
