"""CLI entry point for inspecting and cleaning up run resources."""

import json
import sys
from typing import Any

import click
import yaml
from rich.console import Console
from rich.table import Table

from .config import ENV_VARS, get_config_path, load_config
from .engine.docker import DockerEngine
from .errors import ContainersError
from .shared.logging import configure_logging

console = Console()


def _managed_labels(config: Any, session: str | None) -> dict[str, str]:
    labels = {config.label("managed"): "true"}
    if session:
        labels[config.label("session")] = session
    return labels


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def cli(ctx: click.Context, verbose: int, json_output: bool) -> None:
    """Ephemeral test containers: inspect configuration and leftovers."""
    ctx.ensure_object(dict)
    config = load_config()
    level = {0: config.log_level, 1: "info"}.get(verbose, "debug")
    configure_logging(level)
    ctx.obj["config"] = config
    ctx.obj["json_output"] = json_output


@cli.group()
def config() -> None:
    """Inspect configuration."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the effective configuration and where each value came from."""
    cfg = ctx.obj["config"]
    values = cfg.to_dict()
    sources = {key: cfg.get_source(key) for key in values}

    if ctx.obj["json_output"]:
        click.echo(json.dumps({"values": values, "sources": sources}, indent=2))
        return

    click.echo("bdd-containers configuration")
    click.echo(f"Config file: {get_config_path()}\n")
    click.echo(yaml.dump(values, default_flow_style=False, sort_keys=False).rstrip())
    click.echo("\nSources:")
    for key, source in sources.items():
        env_hint = f" ({ENV_VARS[key]})" if source == "environment" else ""
        click.echo(f"  {key}: {source}{env_hint}")


@cli.command()
@click.option("--session", help="Only resources of this run session")
@click.pass_context
def status(ctx: click.Context, session: str | None) -> None:
    """List containers and networks created by test runs."""
    cfg = ctx.obj["config"]
    engine = DockerEngine(host_override=cfg.host_override)
    try:
        resources = engine.list_managed(_managed_labels(cfg, session))
    except ContainersError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if ctx.obj["json_output"]:
        click.echo(json.dumps(resources, indent=2))
        return

    if not resources:
        click.echo("No managed resources found.")
        return

    table = Table(title="Managed resources")
    for column in ("Kind", "Name", "ID", "Status", "Session", "Scenario"):
        table.add_column(column)
    for resource in resources:
        labels = resource["labels"]
        table.add_row(
            resource["kind"],
            resource["name"],
            resource["id"],
            resource["status"],
            labels.get(cfg.label("session"), "-"),
            labels.get(cfg.label("scenario"), "-"),
        )
    console.print(table)


@cli.command()
@click.option("--session", help="Only resources of this run session")
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def prune(ctx: click.Context, session: str | None, yes: bool) -> None:
    """Remove containers and networks left behind by crashed runs."""
    cfg = ctx.obj["config"]
    if not yes:
        scope = f"session {session}" if session else "all sessions"
        click.confirm(f"Remove managed containers and networks of {scope}?", abort=True)

    engine = DockerEngine(host_override=cfg.host_override)
    try:
        removed = engine.prune(_managed_labels(cfg, session))
    except ContainersError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if ctx.obj["json_output"]:
        click.echo(json.dumps({"removed": removed}, indent=2))
    elif removed:
        click.echo(f"Removed {len(removed)} resource(s):")
        for name in removed:
            click.echo(f"  ✓ {name}")
    else:
        click.echo("Nothing to remove.")


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
