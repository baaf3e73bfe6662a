"""Bounded, cancellable observation of one phase process.

The watcher starts the phase command and waits concurrently on three
sources: the next output/exit event, the phase deadline, and an optional
external abort event.  Events that arrive together are judged as one batch
with a fixed priority (failure lines, then readiness lines, then exit), so
the verdict never depends on how the operating system happened to split the
output.  A ready check that follows a readiness match is bounded by the
same deadline and abort.  Whatever the verdict, the process tree is gone
before :meth:`PhaseWatcher.execute` returns.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from rich.console import Console
from rich.markup import escape

from scaffoldcheck.phases.models import OutcomeKind, PhaseOutcome, PhaseSpec
from scaffoldcheck.process.runner import (
    OutputLine,
    ProcessEvent,
    ProcessExit,
    ProcessHandle,
    ProcessRunner,
    ProcessSpawnError,
)

console = Console()

# Exit code reported when the phase command could not be started.
COMMAND_NOT_FOUND_EXIT_CODE = 127

_OUTCOME_STYLES: dict[OutcomeKind, str] = {
    OutcomeKind.PASSED: "green",
    OutcomeKind.FAILED_EXIT_CODE: "red",
    OutcomeKind.FAILED_STDERR: "red",
    OutcomeKind.TIMED_OUT: "yellow",
    OutcomeKind.FAILED_POST_CONDITION: "red",
}


class PhaseWatcher:
    """Runs a :class:`PhaseSpec` and resolves it to a :class:`PhaseOutcome`."""

    def __init__(self, runner: Optional[ProcessRunner] = None) -> None:
        self.runner = runner or ProcessRunner()

    async def execute(
        self,
        spec: PhaseSpec,
        abort: Optional[asyncio.Event] = None,
    ) -> PhaseOutcome:
        """Run *spec* to a terminal outcome.

        Args:
            spec: The phase to run.
            abort: Optional event; once set, the phase is stopped and resolves
                ``timed_out`` with ``aborted=True``.

        Returns:
            The phase outcome.  Phase failures are values, never exceptions.
        """
        start = time.monotonic()

        if abort is not None and abort.is_set():
            outcome = self._aborted(spec, start)
            self._log(outcome)
            return outcome

        try:
            handle = await self.runner.spawn(
                list(spec.command), spec.working_directory, dict(spec.env) or None
            )
        except ProcessSpawnError as exc:
            outcome = PhaseOutcome(
                phase=spec.name,
                kind=OutcomeKind.FAILED_EXIT_CODE,
                exit_code=COMMAND_NOT_FOUND_EXIT_CODE,
                message=str(exc),
                duration_seconds=time.monotonic() - start,
                deadline_seconds=spec.deadline,
            )
            self._log(outcome)
            return outcome

        try:
            outcome = await self._observe(spec, handle, abort, start)
            # The ready check needs the server alive, so only a readiness match qualifies.
            if outcome.passed and outcome.matched_line and spec.ready_check is not None:
                outcome = await self._run_ready_check(spec, outcome, abort, start)
        finally:
            await handle.terminate()

        if outcome.passed and spec.post_condition is not None:
            reason = spec.post_condition.check(spec.working_directory)
            if reason:
                outcome = outcome.downgrade(OutcomeKind.FAILED_POST_CONDITION, reason)

        outcome = outcome.model_copy(update={"duration_seconds": time.monotonic() - start})
        self._log(outcome)
        return outcome

    # -- Observation ---------------------------------------------------------

    async def _observe(
        self,
        spec: PhaseSpec,
        handle: ProcessHandle,
        abort: Optional[asyncio.Event],
        start: float,
    ) -> PhaseOutcome:
        deadline = start + spec.deadline
        abort_task = asyncio.create_task(abort.wait()) if abort is not None else None
        ready_line: Optional[str] = None

        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return self._timed_out(spec, start)

                event_task = asyncio.create_task(handle.next_event())
                waiters: set[asyncio.Task] = {event_task}
                if abort_task is not None:
                    waiters.add(abort_task)

                try:
                    done, _ = await asyncio.wait(
                        waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                    )
                finally:
                    if not event_task.done():
                        event_task.cancel()

                if abort_task is not None and abort_task in done:
                    return self._aborted(spec, start)
                if event_task not in done:
                    return self._timed_out(spec, start)

                batch = [event_task.result(), *handle.drain_events()]
                outcome, ready_line = self._classify(spec, batch, ready_line, start)
                if outcome is not None:
                    return outcome
        finally:
            if abort_task is not None:
                abort_task.cancel()

    async def _run_ready_check(
        self,
        spec: PhaseSpec,
        outcome: PhaseOutcome,
        abort: Optional[asyncio.Event],
        start: float,
    ) -> PhaseOutcome:
        """Run the ready check within what is left of the phase deadline."""
        remaining = start + spec.deadline - time.monotonic()
        if remaining <= 0:
            return self._timed_out(spec, start)

        check_task = asyncio.ensure_future(spec.ready_check())
        waiters: set[asyncio.Future] = {check_task}
        abort_task = None
        if abort is not None:
            abort_task = asyncio.create_task(abort.wait())
            waiters.add(abort_task)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            pending = [task for task in waiters if not task.done()]
            for task in pending:
                task.cancel()
            # Let a cancelled check stop whatever it started before the server goes.
            await asyncio.gather(*pending, return_exceptions=True)

        if abort_task is not None and abort_task in done:
            return self._aborted(spec, start)
        if check_task not in done:
            return self._timed_out(spec, start)

        reason = check_task.result()
        if reason:
            return outcome.downgrade(OutcomeKind.FAILED_POST_CONDITION, reason)
        return outcome

    def _classify(
        self,
        spec: PhaseSpec,
        batch: list[ProcessEvent],
        ready_line: Optional[str],
        start: float,
    ) -> tuple[Optional[PhaseOutcome], Optional[str]]:
        """Judge one batch of events: failure, then readiness, then exit."""
        lines = [event for event in batch if isinstance(event, OutputLine)]
        exits = [event for event in batch if isinstance(event, ProcessExit)]

        def _outcome(kind: OutcomeKind, **kwargs) -> PhaseOutcome:
            return PhaseOutcome(
                phase=spec.name,
                kind=kind,
                duration_seconds=time.monotonic() - start,
                deadline_seconds=spec.deadline,
                **kwargs,
            )

        for line in lines:
            if spec.is_failure(line):
                return _outcome(OutcomeKind.FAILED_STDERR, message=line.text), ready_line

        for line in lines:
            if ready_line is None and spec.is_ready(line):
                ready_line = line.text
                if spec.success_on_match:
                    return _outcome(OutcomeKind.PASSED, matched_line=line.text), ready_line

        if exits:
            exit_code = exits[0].exit_code
            if exit_code != 0:
                return _outcome(OutcomeKind.FAILED_EXIT_CODE, exit_code=exit_code), ready_line
            if spec.success_on_exit or ready_line is not None:
                return _outcome(OutcomeKind.PASSED, exit_code=0), ready_line
            return (
                _outcome(
                    OutcomeKind.FAILED_EXIT_CODE,
                    exit_code=0,
                    message="exited before signalling readiness",
                ),
                ready_line,
            )

        return None, ready_line

    # -- Helpers -------------------------------------------------------------

    @staticmethod
    def _timed_out(spec: PhaseSpec, start: float) -> PhaseOutcome:
        return PhaseOutcome(
            phase=spec.name,
            kind=OutcomeKind.TIMED_OUT,
            duration_seconds=time.monotonic() - start,
            deadline_seconds=spec.deadline,
        )

    @staticmethod
    def _aborted(spec: PhaseSpec, start: float) -> PhaseOutcome:
        return PhaseOutcome(
            phase=spec.name,
            kind=OutcomeKind.TIMED_OUT,
            duration_seconds=time.monotonic() - start,
            deadline_seconds=spec.deadline,
            aborted=True,
        )

    @staticmethod
    def _log(outcome: PhaseOutcome) -> None:
        style = _OUTCOME_STYLES[outcome.kind]
        console.print(
            f"  [{style}]{outcome.phase}: {escape(outcome.describe())}[/{style}] "
            f"[dim]({outcome.duration_seconds:.1f}s)[/dim]"
        )
