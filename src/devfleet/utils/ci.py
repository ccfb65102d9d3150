"""CI environment detection.

Non-interactive contexts (CI runners, MCP calls) cannot prompt, so missing
variables become errors and destructive operations require --force. CI runs
also switch port allocation to the sequential allocator.
"""

from __future__ import annotations

__all__ = ["CIContext", "detect_ci", "is_ci"]

import os
from dataclasses import dataclass
from typing import Mapping

from devfleet.constants import CI_ENVIRONMENTS


@dataclass(frozen=True, slots=True)
class CIContext:
    """Result of CI detection."""

    is_ci: bool
    name: str | None = None


def _truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() not in ("", "0", "false", "no")


def detect_ci(
    *,
    ci: bool = False,
    no_ci: bool = False,
    environ: Mapping[str, str] | None = None,
) -> CIContext:
    """Decide whether this invocation runs in CI.

    Precedence: --no-ci, then --ci, then the environment. Vendor-specific
    variables name the environment; a bare CI variable reports "Unknown CI".

    Args:
        ci: Force CI mode on.
        no_ci: Force CI mode off (wins over ci).
        environ: Environment to inspect (defaults to os.environ).

    Returns:
        CIContext with the detected environment name, if any.
    """
    if no_ci:
        return CIContext(is_ci=False)
    if ci:
        return CIContext(is_ci=True, name="forced")

    env = os.environ if environ is None else environ
    for name, var in CI_ENVIRONMENTS:
        if _truthy(env.get(var)):
            return CIContext(is_ci=True, name=name)
    if _truthy(env.get("CI")):
        return CIContext(is_ci=True, name="Unknown CI")
    return CIContext(is_ci=False)


def is_ci(*, ci: bool = False, no_ci: bool = False, environ: Mapping[str, str] | None = None) -> bool:
    """Shorthand for detect_ci(...).is_ci."""
    return detect_ci(ci=ci, no_ci=no_ci, environ=environ).is_ci
