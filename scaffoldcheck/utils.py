"""Shared utility functions for scaffoldcheck.

Provides unique project names, duration formatting, Rich-based console
helpers and HTTP health polling.  The phase harness itself lives in
:mod:`scaffoldcheck.phases`; everything here is a small building block
shared by several modules.
"""

from __future__ import annotations

import asyncio
import secrets
import string
import time

import httpx
from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------

_BASE36 = string.digits + string.ascii_lowercase


def unique_project_name(prefix: str = "example", length: int = 6) -> str:
    """Return a collision-resistant project name such as ``example-k3x9qa``.

    The suffix is drawn from the base36 alphabet so the result is a valid
    npm package name and directory name on every platform.
    """
    suffix = "".join(secrets.choice(_BASE36) for _ in range(length))
    return f"{prefix}-{suffix}"


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
        format_duration(3661.0) -> "1h 1m 1s"
    """
    if seconds < 0:
        return "0.0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    if hours > 0 or minutes > 0:
        parts.append(f"{int(secs)}s")
    else:
        parts.append(f"{secs:.1f}s")

    return " ".join(parts)


def tail(text: str, max_lines: int = 10, max_chars: int = 2000) -> str:
    """Return the last *max_lines* non-empty lines of *text*, capped in length."""
    lines = [line for line in text.splitlines() if line.strip()]
    result = "\n".join(lines[-max_lines:])
    if len(result) > max_chars:
        result = result[-max_chars:]
    return result


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------

PHASE_COLORS: dict[str, str] = {
    "serve": "bright_cyan",
    "test": "bright_green",
    "build": "bright_yellow",
    "unlock": "bright_magenta",
}


def print_phase_header(name: str, detail: str = "") -> None:
    """Print a full-width rule announcing a phase."""
    color = PHASE_COLORS.get(name, "white")
    label = f"[bold {color}] {name.upper()} [/bold {color}]"
    if detail:
        label += f"[dim]{escape(detail)}[/dim] "
    console.print(Rule(label, style=color))


def print_summary_table(
    rows: list[dict[str, str]], title: str = "Summary"
) -> None:
    """Print a table whose columns are the keys of the first row."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    if not rows:
        table.add_column("Result")
        table.add_row("(nothing ran)")
        console.print(table)
        return

    for column in rows[0]:
        table.add_column(column)
    for row in rows:
        table.add_row(*(str(value) for value in row.values()))

    console.print(table)
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")


# ---------------------------------------------------------------------------
# Health-check polling
# ---------------------------------------------------------------------------


async def wait_for_health(
    url: str,
    timeout: float = 60,
    interval: float = 1,
) -> bool:
    """Poll *url* until it responds with HTTP 200 or *timeout* elapses.

    Returns:
        ``True`` if a 200 response was received within the timeout window,
        ``False`` otherwise.
    """
    deadline = time.monotonic() + timeout

    async with httpx.AsyncClient(timeout=httpx.Timeout(5.0, connect=3.0)) as client:
        while time.monotonic() < deadline:
            try:
                response = await client.get(url)
                if response.status_code == 200:
                    return True
            except httpx.HTTPError:
                pass

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(min(interval, remaining))

    return False
