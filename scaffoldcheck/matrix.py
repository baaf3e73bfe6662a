"""scaffoldcheck matrix runner.

Drives every (flavor x stream library) combination through the full
lifecycle:

1. SCAFFOLD -- run the generator into a uniquely named directory and
   validate the ``package.json`` it writes.
2. SERVE / TEST / BUILD / UNLOCK -- run the project's npm scripts one after
   the other, each bounded by a deadline.
3. TEARDOWN -- remove the generated directory, whatever happened.

Combinations run sequentially and are isolated from each other: a crash in
one combination is recorded and the next one still runs.

Usage::

    python -m scaffoldcheck --generator "node ./index.js" --templates-dir ..
    python -m scaffoldcheck --stream xstream --stream rxjs --results report.json
"""

from __future__ import annotations

import asyncio
import shlex
import sys
import time
import traceback
from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from scaffoldcheck.config import STREAM_LIBS, ConfigError, Flavor, HarnessConfig
from scaffoldcheck.phases.sequencer import PhaseSequencer
from scaffoldcheck.phases.watcher import PhaseWatcher
from scaffoldcheck.process.runner import ProcessRunner
from scaffoldcheck.results import Combination, CombinationResult, MatrixReport
from scaffoldcheck.scaffold.session import GenerationFailure, scaffold_session
from scaffoldcheck.utils import (
    format_duration,
    print_error,
    print_success,
    print_summary_table,
    print_warning,
)

console = Console()


def build_combinations(
    flavors: Sequence[Flavor],
    stream_libs: Sequence[str],
    templates_dir: Path,
) -> list[Combination]:
    """Return the flavor-major cross product of *flavors* and *stream_libs*.

    Raises:
        ConfigError: If either list is empty, a stream library is unknown, or
            a flavor's template does not exist.
    """
    if not flavors:
        raise ConfigError("No flavors configured")
    if not stream_libs:
        raise ConfigError("No stream libraries configured")

    unknown = [lib for lib in stream_libs if lib not in STREAM_LIBS]
    if unknown:
        raise ConfigError(
            f"Unknown stream libraries: {', '.join(unknown)} "
            f"(expected one of {', '.join(STREAM_LIBS)})"
        )

    return [
        Combination.from_flavor(flavor, stream_lib, templates_dir)
        for flavor in flavors
        for stream_lib in stream_libs
    ]


class MatrixRunner:
    """Runs a fresh scaffold session and phase sequence per combination."""

    def __init__(self, config: HarnessConfig, runner: Optional[ProcessRunner] = None) -> None:
        self.config = config
        self.runner = runner or ProcessRunner()
        self.sequencer = PhaseSequencer(config, PhaseWatcher(self.runner))

    async def run_all(
        self,
        flavors: Sequence[Flavor],
        stream_libs: Sequence[str],
    ) -> AsyncIterator[CombinationResult]:
        """Yield one result per combination, in order.

        The iterator is single-use: sessions are consumed as it advances.

        Raises:
            ConfigError: On the first iteration, if the matrix is invalid.
        """
        combinations = build_combinations(flavors, stream_libs, self.config.templates_dir)
        total = len(combinations)
        for index, combination in enumerate(combinations, 1):
            console.print(
                Panel(
                    f"[bold]{combination.label}[/bold]\n"
                    f"Template : {combination.template_ref}",
                    title=f"[bold]Combination {index}/{total}[/bold]",
                    border_style="bright_cyan",
                )
            )
            yield await self.run_combination(combination)

    async def run_combination(self, combination: Combination) -> CombinationResult:
        """Scaffold *combination*, run its phases, and tear it down.

        Never raises for failures inside the combination; they are recorded
        on the returned result instead.
        """
        start = time.monotonic()
        abort = asyncio.Event()
        timer = asyncio.get_running_loop().call_later(self.config.combination_timeout, abort.set)
        partial: Optional[CombinationResult] = None

        try:
            async with scaffold_session(combination, self.config, self.runner) as session:
                partial = await self.sequencer.run(session, abort)
            result = partial
        except GenerationFailure as exc:
            print_error(f"Generation failed for {combination.label}: {escape(exc.reason)}")
            result = CombinationResult(
                combination=combination,
                project_name=exc.project_name,
                generated=False,
                generation_error=exc.reason,
            )
        except Exception as exc:
            print_error(f"{combination.label} errored: {escape(str(exc))}")
            console.print(traceback.format_exc(), style="dim", markup=False)
            base = partial or CombinationResult(combination=combination)
            result = base.model_copy(update={"error": f"{type(exc).__name__}: {exc}"})
        finally:
            timer.cancel()

        elapsed = time.monotonic() - start
        if result.passed:
            print_success(f"{combination.label} passed in {format_duration(elapsed)}")
        else:
            print_error(f"{combination.label} FAILED after {format_duration(elapsed)}")
        return result.model_copy(update={"duration_seconds": elapsed})

    async def run(
        self,
        flavors: Optional[Sequence[Flavor]] = None,
        stream_libs: Optional[Sequence[str]] = None,
    ) -> MatrixReport:
        """Run the whole matrix, print a summary, and save the report if configured."""
        start = time.monotonic()
        flavors = list(flavors) if flavors is not None else self.config.flavors
        stream_libs = list(stream_libs) if stream_libs is not None else self.config.stream_libs

        results = [result async for result in self.run_all(flavors, stream_libs)]
        report = MatrixReport(
            results=results,
            metadata={
                "generator_command": self.config.generator_command,
                "workspace_dir": str(self.config.workspace_path),
                "total_duration_seconds": round(time.monotonic() - start, 2),
            },
        )

        print_summary_table(report.table_rows(), title="Scaffold Matrix")
        console.print(report.summary_text(), markup=False)

        if self.config.results_path is not None:
            report.save(self.config.results_path)
            console.print(f"[dim]Results saved to {self.config.results_path}[/dim]")

        return report


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _parse_flavor(value: str) -> Flavor:
    """Parse ``NAME=TEMPLATE`` (or a bare ``TEMPLATE``) into a :class:`Flavor`."""
    name, sep, template = value.partition("=")
    if not sep:
        template = name
        name = Path(template).name
    if not name.strip() or not template.strip():
        raise ValueError(f"Invalid flavor: {value!r} (expected NAME=TEMPLATE)")
    return Flavor(name=name.strip(), template=template.strip())


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point for ``python -m scaffoldcheck``."""
    import argparse

    parser = argparse.ArgumentParser(
        prog="scaffoldcheck",
        description="Verify that a project generator produces working projects",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  scaffoldcheck --generator 'node ./index.js' --templates-dir ..\n"
            "  scaffoldcheck --flavor 'ES6 + Browserify=cycle-scripts-es-browserify' "
            "--stream xstream\n"
            "  scaffoldcheck --config harness.json --results report.json\n"
        ),
    )
    parser.add_argument("--config", type=Path, help="JSON configuration file")
    parser.add_argument("--generator", help="Generator command, e.g. 'node ./index.js'")
    parser.add_argument(
        "--flavor",
        action="append",
        default=None,
        metavar="NAME=TEMPLATE",
        help="Flavor to test (repeatable; default: configured flavors)",
    )
    parser.add_argument(
        "--stream",
        action="append",
        default=None,
        choices=STREAM_LIBS,
        help="Stream library to test (repeatable; default: all)",
    )
    parser.add_argument("--workspace", type=Path, help="Directory for generated projects")
    parser.add_argument("--templates-dir", type=Path, help="Base directory for flavor templates")
    parser.add_argument("--package-manager", help="Package manager command (default: npm)")
    parser.add_argument("--timeout", type=float, help="Per-phase deadline in seconds")
    parser.add_argument(
        "--page-check",
        action="store_true",
        help="Assert the rendered page content once the dev server is ready",
    )
    parser.add_argument("--results", type=Path, help="Write the JSON report to this path")

    args = parser.parse_args(argv)

    try:
        config = HarnessConfig.load(args.config) if args.config else HarnessConfig.from_env()
    except (OSError, ValueError) as exc:
        console.print(f"[bold red]Error:[/bold red] Invalid configuration: {exc}")
        sys.exit(1)

    updates: dict[str, Any] = {}
    try:
        if args.generator:
            updates["generator_command"] = shlex.split(args.generator)
        if args.flavor:
            updates["flavors"] = [_parse_flavor(value).model_dump() for value in args.flavor]
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)
    if args.stream:
        updates["stream_libs"] = list(dict.fromkeys(args.stream))
    if args.workspace:
        updates["workspace_dir"] = args.workspace
    if args.templates_dir:
        updates["templates_dir"] = args.templates_dir
    if args.package_manager:
        updates["package_manager"] = shlex.split(args.package_manager)
    if args.timeout is not None:
        updates["phase_timeout"] = args.timeout
    if args.page_check:
        updates["page_check"] = {**config.page_check.model_dump(), "enabled": True}
    if args.results:
        updates["results_path"] = args.results

    try:
        config = HarnessConfig.model_validate({**config.model_dump(), **updates})
    except ValidationError as exc:
        console.print(f"[bold red]Error:[/bold red] Invalid configuration: {exc}")
        sys.exit(1)

    runner = MatrixRunner(config)
    try:
        report = asyncio.run(runner.run())
    except ConfigError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)
    except KeyboardInterrupt:
        print_warning("Interrupted -- generated projects were removed.")
        sys.exit(130)

    if report.overall_passed:
        console.print("[bold green]All combinations passed![/bold green]")
    else:
        console.print("[bold red]Some combinations failed.[/bold red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
