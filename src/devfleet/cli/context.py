"""Builds the Fleet for a CLI invocation from the global --ci/--no-ci flags."""

from __future__ import annotations

__all__ = ["open_fleet"]

from pathlib import Path

import click

from devfleet.cli.prompts import confirm_refresh, confirm_remove, prompt_missing_variable
from devfleet.fleet import Fleet


def open_fleet(ctx: click.Context, *, interactive: bool = True) -> Fleet:
    """Open a Fleet rooted at the current directory.

    Args:
        ctx: Click context; the root context carries the --ci/--no-ci flags.
        interactive: Wire prompt callbacks (disabled for --json output).
    """
    flags = ctx.find_root().obj or {}
    callbacks = {}
    if interactive:
        callbacks = {
            "prompt_value": prompt_missing_variable,
            "confirm_refresh": confirm_refresh,
            "confirm_remove": confirm_remove,
        }
    return Fleet.open(
        Path.cwd(),
        ci=flags.get("ci", False),
        no_ci=flags.get("no_ci", False),
        **callbacks,
    )
