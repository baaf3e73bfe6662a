"""The four built-in phases run against every generated project.

Each phase delegates to one npm script of the generated project:

==========  ==============================  ===============================
Phase       Command                         Resolves on
==========  ==============================  ===============================
serve       ``npm start``                   port / bundler readiness line
test        ``npm test`` (``CI=true``)      exit code 0
build       ``npm run build``               exit code 0 + ``build/`` exists
unlock      ``npm run take-off-...``        exit code 0 + ``build/`` exists
==========  ==============================  ===============================
"""

from __future__ import annotations

import re
from pathlib import Path

from scaffoldcheck.config import HarnessConfig
from scaffoldcheck.phases.models import OutputRule, PhaseSpec, PostCondition
from scaffoldcheck.phases.page_check import PageContentCheck
from scaffoldcheck.process.runner import StreamName

PHASE_NAMES: tuple[str, ...] = ("serve", "test", "build", "unlock")

# Phase name -> npm script it delegates to.
PHASE_SCRIPTS: dict[str, str] = {
    "serve": "start",
    "test": "test",
    "build": "build",
    "unlock": "take-off-training-wheels",
}


def script_command(config: HarnessConfig, script: str) -> tuple[str, ...]:
    """Return the package-manager invocation for an npm *script*."""
    if script in ("start", "test"):
        return (*config.package_manager, script)
    return (*config.package_manager, "run", script)


def serve_ready_rule(config: HarnessConfig) -> OutputRule:
    """Stdout lines that show the dev server is bound or the bundle is ready."""
    patterns = (rf":{config.serve_port}\b", *(re.escape(p) for p in config.serve_ready_patterns))
    return OutputRule(patterns=patterns, streams=frozenset({StreamName.STDOUT}))


def build_phase_specs(config: HarnessConfig, project_dir: Path) -> list[PhaseSpec]:
    """Build the ordered serve, test, build, unlock specs for *project_dir*."""
    project_dir = Path(project_dir)
    build_output = PostCondition(
        path=config.build_output_dir,
        description=f"`{config.build_output_dir}` folder not created",
    )

    def allowed(phase: str) -> tuple[str, ...]:
        return tuple(config.allowed_stderr.get(phase, ()))

    serve = PhaseSpec(
        name="serve",
        command=script_command(config, PHASE_SCRIPTS["serve"]),
        working_directory=project_dir,
        deadline=config.deadline_for("serve"),
        success_rule=serve_ready_rule(config),
        allowed_stderr=allowed("serve"),
        success_on_match=config.serve_ready_on_match,
        success_on_exit=False,
        ready_check=(
            PageContentCheck.from_config(config, project_dir)
            if config.page_check.enabled
            else None
        ),
    )
    test = PhaseSpec(
        name="test",
        command=script_command(config, PHASE_SCRIPTS["test"]),
        working_directory=project_dir,
        env={"CI": "true"},
        deadline=config.deadline_for("test"),
        allowed_stderr=allowed("test"),
    )
    build = PhaseSpec(
        name="build",
        command=script_command(config, PHASE_SCRIPTS["build"]),
        working_directory=project_dir,
        deadline=config.deadline_for("build"),
        allowed_stderr=allowed("build"),
        post_condition=build_output,
    )
    unlock = PhaseSpec(
        name="unlock",
        command=script_command(config, PHASE_SCRIPTS["unlock"]),
        working_directory=project_dir,
        deadline=config.deadline_for("unlock"),
        allowed_stderr=allowed("unlock"),
        post_condition=build_output if config.check_unlock_output else None,
    )
    return [serve, test, build, unlock]
