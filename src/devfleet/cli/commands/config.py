"""Config command group for devfleet CLI.

Shows and edits the global configuration. After a value changes, servers
depending on it are refreshed according to refreshOnChange.
"""

from __future__ import annotations

__all__ = ["config"]

import json
from pathlib import Path

import click

from devfleet.cli.context import open_fleet
from devfleet.cli.output import emit_json, fail, format_refresh_outcomes
from devfleet.cli.styling import style_dim, style_header, style_success
from devfleet.config import (
    CONFIG_KEYS,
    find_project_config,
    get_global_config_path,
    load_global_config,
    remove_variable,
    set_config_value,
    set_variable,
)
from devfleet.core.drift import find_servers_using_config_key
from devfleet.exceptions import DevfleetError, InteractiveNotAvailableError


def _apply_change(ctx: click.Context, config_key: str, as_json: bool) -> list[dict[str, object]]:
    """Refresh dependent servers; print a hint when the policy leaves them alone."""
    fleet = open_fleet(ctx, interactive=not as_json)
    outcomes = fleet.apply_config_change(config_key)
    if not as_json:
        if outcomes:
            click.echo(format_refresh_outcomes(outcomes))
        elif fleet.config.refresh_on_change in ("manual", "on-start"):
            affected = find_servers_using_config_key(fleet.registry.list(), config_key)
            if affected:
                names = ", ".join(e.name for e in affected)
                click.echo(style_dim(f"Servers using {config_key}: {names}. Run 'devfleet refresh' to apply."))
    return [o.to_dict() for o in outcomes]


@click.group()
def config() -> None:
    """Configuration management commands.

    \b
    Keys: hostname, protocol, httpsCert, httpsKey, refreshOnChange,
          portRange.min, portRange.max, tempDir
    User variables ({{name}} in templates) are managed with add/remove.
    reset restores defaults.
    """
    pass


@config.command("show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def config_show(as_json: bool) -> None:
    """Display the merged configuration for the current directory."""
    loaded = load_global_config()
    if as_json:
        emit_json(loaded.to_file_dict())
        return

    click.echo(style_header("Configuration"))
    click.echo(f"  hostname: {loaded.hostname}")
    click.echo(f"  protocol: {loaded.protocol}")
    click.echo(f"  portRange: {loaded.port_range.min}-{loaded.port_range.max}")
    click.echo(f"  refreshOnChange: {loaded.refresh_on_change}")
    click.echo(f"  tempDir: {loaded.temp_dir}")
    click.echo(f"  httpsCert: {loaded.https_cert or '(not set)'}")
    click.echo(f"  httpsKey: {loaded.https_key or '(not set)'}")
    click.echo()

    click.echo(style_header("Variables"))
    if not loaded.variables:
        click.echo(style_dim("  (none)"))
    for name, value in sorted(loaded.variables.items()):
        click.echo(f"  {name}: {value}")
    click.echo()

    click.echo(f"Global config: {get_global_config_path()}")
    project = find_project_config(Path.cwd())
    if project is not None:
        click.echo(f"Project config: {project}")


@config.command("path")
def config_path_cmd() -> None:
    """Show the global config file path."""
    path = get_global_config_path()
    click.echo(str(path))
    if not path.exists():
        click.echo("(file does not exist - defaults are in use)", err=True)


@config.command("set")
@click.argument("key", type=click.Choice(CONFIG_KEYS))
@click.argument("value")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str, as_json: bool) -> None:
    """Set a config KEY to VALUE (empty VALUE clears httpsCert/httpsKey)."""
    try:
        set_config_value(key, value)
        if not as_json:
            click.echo(style_success(f"Set {key} = {json.dumps(value)}"))
        refreshed = _apply_change(ctx, key, as_json)
    except DevfleetError as e:
        fail(e, as_json)

    if as_json:
        emit_json({"key": key, "value": value, "refreshed": refreshed})


@config.command("add")
@click.argument("name")
@click.argument("value")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def config_add(ctx: click.Context, name: str, value: str, as_json: bool) -> None:
    """Add or replace user variable NAME, usable as {{NAME}}."""
    try:
        set_variable(name, value)
        if not as_json:
            click.echo(style_success(f"Added variable {{{{{name}}}}}"))
        refreshed = _apply_change(ctx, f"variables.{name}", as_json)
    except DevfleetError as e:
        fail(e, as_json)

    if as_json:
        emit_json({"variable": name, "value": value, "refreshed": refreshed})


@config.command("remove")
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def config_remove(name: str, as_json: bool) -> None:
    """Remove user variable NAME."""
    removed = remove_variable(name)
    if as_json:
        emit_json({"variable": name, "removed": removed})
    elif removed:
        click.echo(style_success(f"Removed variable {{{{{name}}}}}"))
    else:
        click.echo(style_dim(f"Variable {name} is not defined."))


@config.command("reset")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def config_reset(ctx: click.Context, force: bool, as_json: bool) -> None:
    """Reset the global configuration to defaults (variables are removed).

    Asks for confirmation unless --force. In CI (or with --json) --force is
    required.
    """
    try:
        fleet = open_fleet(ctx, interactive=not as_json)
        if not force:
            if as_json or fleet.ci:
                raise InteractiveNotAvailableError("Config reset requires --force when running non-interactively")
            if not click.confirm("Reset configuration to defaults?", default=False):
                click.echo(style_dim("Cancelled"))
                return
        reset = fleet.reset_config()
    except DevfleetError as e:
        fail(e, as_json)

    if as_json:
        emit_json({"reset": True, "config": reset.to_file_dict()})
    else:
        click.echo(style_success(f"Configuration reset to defaults ({get_global_config_path()})"))
