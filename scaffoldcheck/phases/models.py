"""Phase specifications and outcomes.

A :class:`PhaseSpec` is pure data: the command to run, where to run it, how
long to wait, and which output lines mean "ready" or "broken".  The watcher
is generic over specs, so the four built-in phases differ only in the values
defined in :mod:`scaffoldcheck.phases.specs`.

A :class:`PhaseOutcome` is the terminal, immutable verdict for one phase.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from scaffoldcheck.process.runner import OutputLine, StreamName

# Returns a failure reason, or ``None`` when the check passed.
ReadyCheck = Callable[[], Awaitable[Optional[str]]]

DEFAULT_DEADLINE_SECONDS = 30.0


# ---------------------------------------------------------------------------
# Output rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OutputRule:
    """Predicate over single output lines.

    A line matches when it was written to one of ``streams`` and either
    ``any_line`` is set or one of the regex ``patterns`` is found in it.
    """

    patterns: tuple[str, ...] = ()
    streams: frozenset[StreamName] = frozenset(StreamName)
    any_line: bool = False

    def matches(self, line: OutputLine) -> bool:
        if line.stream not in self.streams:
            return False
        if self.any_line:
            return True
        return any(re.search(pattern, line.text) for pattern in self.patterns)


NO_MATCH = OutputRule()
ANY_STDERR = OutputRule(streams=frozenset({StreamName.STDERR}), any_line=True)


@dataclass(frozen=True)
class PostCondition:
    """A path that must exist once the phase has passed."""

    path: str
    description: str = ""

    def check(self, working_directory: Path) -> Optional[str]:
        """Return a failure reason, or ``None`` if the path exists."""
        target = Path(self.path)
        if not target.is_absolute():
            target = Path(working_directory) / target
        if target.exists():
            return None
        return self.description or f"`{self.path}` folder not created"


# ---------------------------------------------------------------------------
# Phase specification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PhaseSpec:
    """Everything the watcher needs to run and judge one phase."""

    name: str
    command: tuple[str, ...]
    working_directory: Path
    env: Mapping[str, str] = field(default_factory=dict)
    deadline: float = DEFAULT_DEADLINE_SECONDS
    success_rule: OutputRule = NO_MATCH
    failure_rule: OutputRule = ANY_STDERR
    # Regexes for stderr lines that are expected output rather than failures.
    allowed_stderr: tuple[str, ...] = ()
    success_on_match: bool = False
    success_on_exit: bool = True
    post_condition: Optional[PostCondition] = None
    ready_check: Optional[ReadyCheck] = None

    def is_failure(self, line: OutputLine) -> bool:
        if not self.failure_rule.matches(line):
            return False
        if line.stream is StreamName.STDERR and any(
            re.search(pattern, line.text) for pattern in self.allowed_stderr
        ):
            return False
        return True

    def is_ready(self, line: OutputLine) -> bool:
        return self.success_rule.matches(line)

    @property
    def command_text(self) -> str:
        return " ".join(self.command)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class OutcomeKind(str, Enum):
    """Terminal verdicts a phase can resolve to."""

    PASSED = "passed"
    FAILED_EXIT_CODE = "failed_exit_code"
    FAILED_STDERR = "failed_stderr"
    TIMED_OUT = "timed_out"
    FAILED_POST_CONDITION = "failed_post_condition"


class PhaseOutcome(BaseModel):
    """Immutable verdict for one phase."""

    model_config = ConfigDict(frozen=True)

    phase: str = Field(..., description="Phase name (serve, test, build, unlock)")
    kind: OutcomeKind
    exit_code: Optional[int] = Field(default=None)
    message: str = Field(default="", description="Captured error text or failure reason")
    matched_line: str = Field(default="", description="Output line that resolved the phase")
    duration_seconds: float = Field(default=0.0, ge=0.0)
    deadline_seconds: float = Field(default=0.0, ge=0.0)
    aborted: bool = Field(default=False, description="Resolved by an external abort")

    @computed_field  # type: ignore[misc]
    @property
    def passed(self) -> bool:
        return self.kind is OutcomeKind.PASSED

    def downgrade(self, kind: OutcomeKind, message: str) -> "PhaseOutcome":
        """Return a copy with a new (failing) kind and message."""
        return self.model_copy(update={"kind": kind, "message": message})

    def describe(self) -> str:
        """First actionable cause, suitable for a one-line report."""
        if self.kind is OutcomeKind.PASSED:
            return "passed"
        if self.kind is OutcomeKind.FAILED_EXIT_CODE:
            text = f"exit code {self.exit_code}"
            return f"{text}: {self.message}" if self.message else text
        if self.kind is OutcomeKind.TIMED_OUT:
            if self.aborted:
                return f"aborted after {int(self.duration_seconds * 1000)}ms"
            return f"timed out after {int(self.deadline_seconds * 1000)}ms"
        return self.message
