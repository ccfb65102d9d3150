"""Interactive prompt helpers for CLI commands.

These are the callbacks Fleet uses when it runs interactively: filling
missing template variables, confirming a config refresh and confirming
server removal.
"""

from __future__ import annotations

__all__ = [
    "confirm_refresh",
    "confirm_remove",
    "prompt_missing_variable",
    "prompt_with_retry",
]

import click

from devfleet.cli.styling import style_warning
from devfleet.core.drift import DriftResult, format_drift
from devfleet.core.templates import MissingVariable
from devfleet.registry.models import ServerEntry


def prompt_with_retry(prompt_text: str) -> str:
    """Prompt for a required value, retrying if empty.

    Args:
        prompt_text: Text to show in prompt.

    Returns:
        Non-empty string value from user.
    """
    while True:
        value: str = click.prompt(prompt_text, type=str, default="", show_default=False)
        if value.strip():
            return value.strip()
        click.echo("  This field is required.")


def prompt_missing_variable(missing: MissingVariable) -> str:
    """Ask for a template variable that has no configured value.

    The answer is saved to the global config by the caller, so the user is
    told where it will end up.
    """
    if missing.is_custom_var:
        target = f"variables.{missing.template_var}"
    else:
        target = missing.config_key or missing.template_var
    click.echo(f"Template uses {{{{{missing.template_var}}}}} but it is not configured (saved as {target}).")
    return prompt_with_retry(missing.prompt)


def confirm_refresh(entry: ServerEntry, drift: DriftResult) -> bool:
    """Show the drift for a server and ask whether to apply it now."""
    click.echo(style_warning(f'Config changed since "{entry.name}" was started'))
    click.echo(format_drift(drift))
    return click.confirm(f'Restart "{entry.name}" with the new config?', default=True)


def confirm_remove(entries: list[ServerEntry]) -> bool:
    if len(entries) == 1:
        message = f'Are you sure you want to remove server "{entries[0].name}"?'
    else:
        names = ", ".join(e.name for e in entries)
        message = f"Are you sure you want to remove {len(entries)} servers ({names})?"
    return click.confirm(message, default=False)
