"""Combination and matrix results.

Provides Pydantic v2 models for everything the harness reports: the
(flavor, stream library) combination under test, the per-combination
result with its ordered phase outcomes, and the aggregated matrix report.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from scaffoldcheck.config import STREAM_LIBS, Flavor
from scaffoldcheck.phases.models import PhaseOutcome
from scaffoldcheck.phases.specs import PHASE_NAMES


# ---------------------------------------------------------------------------
# Combination
# ---------------------------------------------------------------------------

class Combination(BaseModel):
    """One (flavor, stream library) pair driven through the phase sequence."""

    model_config = ConfigDict(frozen=True)

    flavor_name: str = Field(..., description="Display name of the flavor")
    template_ref: str = Field(..., description="Resolved template passed to --flavor")
    package: str = Field(..., description="devDependencies key expected in the manifest")
    stream_lib: str = Field(..., description="Stream library passed to --stream")

    @field_validator("stream_lib")
    @classmethod
    def _known_stream_lib(cls, value: str) -> str:
        if value not in STREAM_LIBS:
            raise ValueError(
                f"Unknown stream library '{value}' (expected one of {', '.join(STREAM_LIBS)})"
            )
        return value

    @classmethod
    def from_flavor(cls, flavor: Flavor, stream_lib: str, templates_dir: Path) -> "Combination":
        """Build a combination, resolving the flavor's template path."""
        return cls(
            flavor_name=flavor.name,
            template_ref=flavor.resolve_template(templates_dir),
            package=flavor.template_id,
            stream_lib=stream_lib,
        )

    @property
    def label(self) -> str:
        return f"{self.flavor_name} / {self.stream_lib}"


# ---------------------------------------------------------------------------
# Per-combination result
# ---------------------------------------------------------------------------

class CombinationResult(BaseModel):
    """Outcome of scaffolding one combination and running its phases."""

    model_config = ConfigDict(frozen=True)

    combination: Combination
    project_name: str = Field(default="", description="Generated project (directory) name")
    generated: bool = Field(default=False, description="Generator succeeded and manifest validated")
    generation_error: str = Field(default="")
    phase_outcomes: dict[str, PhaseOutcome] = Field(
        default_factory=dict, description="Phase name -> outcome, in run order"
    )
    error: str = Field(default="", description="Unexpected fault isolated by the matrix runner")
    duration_seconds: float = Field(default=0.0, ge=0.0)

    @computed_field  # type: ignore[misc]
    @property
    def passed(self) -> bool:
        """True only when generation succeeded and every phase passed."""
        return (
            self.generated
            and not self.error
            and bool(self.phase_outcomes)
            and all(outcome.passed for outcome in self.phase_outcomes.values())
        )

    @computed_field  # type: ignore[misc]
    @property
    def scaffold_outcome(self) -> str:
        return "pass" if self.passed else "fail"

    def failure_causes(self) -> list[str]:
        """First actionable cause for every failing step, in order."""
        causes: list[str] = []
        if self.error:
            causes.append(f"error: {self.error.strip().splitlines()[-1]}")
        if not self.generated and self.generation_error:
            causes.append(f"generate: {self.generation_error}")
        for name, outcome in self.phase_outcomes.items():
            if not outcome.passed:
                causes.append(f"{name}: {outcome.describe()}")
        return causes


# ---------------------------------------------------------------------------
# Matrix report
# ---------------------------------------------------------------------------

class MatrixReport(BaseModel):
    """Aggregated results for a whole flavor x stream-library run."""

    results: list[CombinationResult] = Field(default_factory=list)
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="ISO-8601 timestamp of when the report was generated",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @computed_field  # type: ignore[misc]
    @property
    def overall_passed(self) -> bool:
        return bool(self.results) and all(r.passed for r in self.results)

    # -- Serialisation helpers -----------------------------------------------

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent)

    def save(self, path: Path) -> None:
        """Persist the report to a JSON file, creating parent directories as needed."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json(), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "MatrixReport":
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    # -- Summary helpers -----------------------------------------------------

    def summary_dict(self) -> dict[str, Any]:
        """Condensed summary suitable for logs."""
        return {
            "overall_passed": self.overall_passed,
            "timestamp": self.timestamp,
            "total": len(self.results),
            "passed": sum(1 for r in self.results if r.passed),
            "failed": sum(1 for r in self.results if not r.passed),
            "combinations": {
                r.combination.label: {
                    "verdict": r.scaffold_outcome,
                    "phases": {
                        name: outcome.kind.value for name, outcome in r.phase_outcomes.items()
                    },
                }
                for r in self.results
            },
        }

    def table_rows(self) -> list[dict[str, str]]:
        """One row per combination for :func:`scaffoldcheck.utils.print_summary_table`."""
        rows: list[dict[str, str]] = []
        for r in self.results:
            row = {
                "Combination": r.combination.label,
                "Generate": "ok" if r.generated else "FAIL",
            }
            for name in PHASE_NAMES:
                outcome = r.phase_outcomes.get(name)
                if outcome is None:
                    row[name.capitalize()] = "-"
                else:
                    row[name.capitalize()] = "ok" if outcome.passed else outcome.kind.value
            row["Verdict"] = r.scaffold_outcome.upper()
            rows.append(row)
        return rows

    def summary_text(self) -> str:
        """Human-readable multi-line summary listing each failure cause."""
        lines: list[str] = []
        status = "PASSED" if self.overall_passed else "FAILED"
        lines.append(f"Scaffold Matrix  [{status}]  {self.timestamp}")
        lines.append("-" * 60)
        for r in self.results:
            mark = "ok" if r.passed else "FAIL"
            lines.append(
                f"  {r.combination.label}  ({r.duration_seconds:.1f}s)  [{mark}]"
            )
            for cause in r.failure_causes():
                lines.append(f"      {cause}")
        lines.append("-" * 60)
        return "\n".join(lines)
