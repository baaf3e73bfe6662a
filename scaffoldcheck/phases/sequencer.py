"""Runs the built-in phases against one generated project."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Optional

from scaffoldcheck.config import HarnessConfig
from scaffoldcheck.phases.models import PhaseOutcome, PhaseSpec
from scaffoldcheck.phases.specs import build_phase_specs
from scaffoldcheck.phases.watcher import PhaseWatcher
from scaffoldcheck.results import CombinationResult
from scaffoldcheck.utils import print_phase_header

if TYPE_CHECKING:
    from scaffoldcheck.scaffold.session import ScaffoldSession


class PhaseSequencer:
    """Runs serve, test, build and unlock in order, one at a time.

    Every phase runs even when an earlier one failed, so a single broken
    script does not hide the state of the others.  Each phase's process tree
    is gone before the next phase starts.
    """

    def __init__(
        self,
        config: HarnessConfig,
        watcher: Optional[PhaseWatcher] = None,
    ) -> None:
        self.config = config
        self.watcher = watcher or PhaseWatcher()

    def specs_for(self, session: "ScaffoldSession") -> list[PhaseSpec]:
        return build_phase_specs(self.config, session.directory)

    async def run(
        self,
        session: "ScaffoldSession",
        abort: Optional[asyncio.Event] = None,
    ) -> CombinationResult:
        """Run every phase against *session* and collect the outcomes.

        Once *abort* is set, the running phase is stopped and the remaining
        phases resolve as aborted without being started.
        """
        start = time.monotonic()
        outcomes: dict[str, PhaseOutcome] = {}

        for spec in self.specs_for(session):
            print_phase_header(spec.name, f" {spec.command_text} ")
            outcomes[spec.name] = await self.watcher.execute(spec, abort)

        return CombinationResult(
            combination=session.combination,
            project_name=session.id,
            generated=True,
            phase_outcomes=outcomes,
            duration_seconds=time.monotonic() - start,
        )
