"""Generated-project lifecycle.

A :class:`ScaffoldSession` owns exactly one generated project directory:
it picks a unique name, runs the external generator for one combination,
validates the manifest the generator wrote, and removes the directory again
when the session ends, whatever the outcome.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel

from scaffoldcheck.config import HarnessConfig
from scaffoldcheck.process.runner import ProcessRunner, ProcessSpawnError
from scaffoldcheck.results import Combination
from scaffoldcheck.scaffold.manifest import ManifestError, ProjectManifest, load_manifest
from scaffoldcheck.utils import format_duration, tail, unique_project_name

console = Console()


class GenerationFailure(Exception):
    """Raised when the generator fails or produces an invalid project.

    Attributes:
        reason: Human-readable cause (exit code, missing field, ...).
        project_name: Name of the project that was being generated.
        exit_code: Generator exit code, when it ran to completion.
    """

    def __init__(
        self,
        reason: str,
        *,
        project_name: str = "",
        exit_code: Optional[int] = None,
    ) -> None:
        self.reason = reason
        self.project_name = project_name
        self.exit_code = exit_code
        super().__init__(reason)


class ScaffoldSession:
    """One generated project directory and its validated manifest."""

    def __init__(
        self,
        combination: Combination,
        config: HarnessConfig,
        runner: Optional[ProcessRunner] = None,
        *,
        name: Optional[str] = None,
    ) -> None:
        self.combination = combination
        self.config = config
        self.runner = runner or ProcessRunner()
        self.id = name or unique_project_name()
        self.workspace = config.workspace_path
        self.directory: Path = self.workspace / self.id
        self.manifest: Optional[ProjectManifest] = None
        self._destroyed = False

    @property
    def command(self) -> list[str]:
        """Generator invocation for this session."""
        return [
            *self.config.generator_command,
            self.id,
            "--flavor",
            self.combination.template_ref,
            "--stream",
            self.combination.stream_lib,
        ]

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # -- Lifecycle -----------------------------------------------------------

    @classmethod
    async def create(
        cls,
        combination: Combination,
        config: HarnessConfig,
        runner: Optional[ProcessRunner] = None,
    ) -> "ScaffoldSession":
        """Allocate a session and generate its project.

        Raises:
            GenerationFailure: If generation fails; the partial directory has
                already been removed.
        """
        session = cls(combination, config, runner)
        try:
            await session.generate()
        except BaseException:
            session.destroy()
            raise
        return session

    async def generate(self) -> ProjectManifest:
        """Run the generator and validate the manifest it writes.

        Returns:
            The validated manifest (also stored on :attr:`manifest`).

        Raises:
            GenerationFailure: On spawn error, timeout, nonzero exit, or any
                manifest invariant violation.
        """
        console.print(
            Panel(
                f"[cyan]Generating project[/cyan] [bold]{self.id}[/bold]\n"
                f"  Flavor: {self.combination.flavor_name}\n"
                f"  Template: {self.combination.template_ref}\n"
                f"  Stream: {self.combination.stream_lib}\n"
                f"  Directory: {self.directory}",
                title="Scaffold",
                border_style="cyan",
            )
        )

        self.workspace.mkdir(parents=True, exist_ok=True)
        command_text = " ".join(self.command)

        try:
            handle = await self.runner.spawn(self.command, self.workspace)
        except ProcessSpawnError as exc:
            raise GenerationFailure(str(exc), project_name=self.id) from exc

        try:
            exit_code = await asyncio.wait_for(
                handle.wait(), timeout=self.config.generator_timeout
            )
        except asyncio.TimeoutError:
            raise GenerationFailure(
                f"`{command_text}` timed out after {format_duration(self.config.generator_timeout)}",
                project_name=self.id,
            ) from None
        finally:
            await handle.terminate()

        if exit_code != 0:
            reason = f"`{command_text}` result code: {exit_code}"
            stderr = tail(handle.stderr_text, max_lines=5)
            if stderr:
                reason += f"\n{stderr}"
            raise GenerationFailure(reason, project_name=self.id, exit_code=exit_code)

        try:
            self.manifest = load_manifest(
                self.directory,
                project_name=self.id,
                template_id=self.combination.package,
                version=self.config.expected_version,
                scripts_delegate=self.config.scripts_delegate,
            )
        except ManifestError as exc:
            raise GenerationFailure(
                f"invalid manifest: {exc}", project_name=self.id, exit_code=0
            ) from exc

        console.print(f"  [green]Generated {self.id} ({self.manifest.version})[/green]")
        return self.manifest

    def destroy(self) -> None:
        """Remove the project directory. Only the first call has any effect."""
        if self._destroyed:
            return
        self._destroyed = True
        if self.directory.exists():
            shutil.rmtree(self.directory)
            console.print(f"  [dim]Removed {self.directory}[/dim]")


@asynccontextmanager
async def scaffold_session(
    combination: Combination,
    config: HarnessConfig,
    runner: Optional[ProcessRunner] = None,
) -> AsyncIterator[ScaffoldSession]:
    """Generate a project for *combination* and remove it on every exit path.

    Usage::

        async with scaffold_session(combination, config) as session:
            result = await PhaseSequencer(config).run(session)

    Raises:
        GenerationFailure: Propagated from :meth:`ScaffoldSession.generate`
            after the partial directory was removed.
    """
    session = ScaffoldSession(combination, config, runner)
    try:
        await session.generate()
        yield session
    finally:
        session.destroy()
