"""CLI output styling utilities.

Visual language for devfleet output:
- Cyan bold for section headers and labels
- Green for success (with checkmark), red for failure (with cross)
- Yellow for warnings such as config drift
- Dim for neutral/empty state messages
- Process status coloured by health (online green, stopped dim, errored red)
"""

from __future__ import annotations

__all__ = [
    "style_dim",
    "style_error",
    "style_header",
    "style_label",
    "style_status",
    "style_success",
    "style_url",
    "style_warning",
]

import click

from devfleet.supervisor.base import ProcessStatus

_STATUS_COLORS: dict[ProcessStatus, str] = {
    ProcessStatus.ONLINE: "green",
    ProcessStatus.ERRORED: "red",
    ProcessStatus.UNKNOWN: "yellow",
}


def style_header(title: str) -> str:
    """Style a section header as "--- Title ---" in cyan bold.

    Example:
        >>> click.echo(style_header("Servers"))
        --- Servers ---
    """
    return click.style(f"--- {title} ---", fg="cyan", bold=True)


def style_label(label: str) -> str:
    """Style a label (colon appended) for summary lines."""
    return click.style(f"{label}:", fg="cyan", bold=True)


def style_success(message: str) -> str:
    """Green message with a checkmark prefix."""
    return click.style(f"✓ {message}", fg="green")


def style_error(message: str) -> str:
    """Red message with a cross prefix.

    Example:
        >>> click.echo(style_error('Server "api" not found'), err=True)
        ✗ Server "api" not found
    """
    return click.style(f"✗ {message}", fg="red")


def style_dim(message: str) -> str:
    return click.style(message, dim=True)


def style_warning(message: str) -> str:
    """Yellow bold "Warning: ..." line."""
    return click.style(f"Warning: {message}", fg="yellow", bold=True)


def style_status(status: ProcessStatus) -> str:
    """Colour a process status by health."""
    color = _STATUS_COLORS.get(status)
    if color is None:
        return click.style(status.value, dim=True)
    return click.style(status.value, fg=color)


def style_url(url: str) -> str:
    return click.style(url, fg="blue", underline=True)
