"""scaffoldcheck configuration.

Centralised, typed configuration for the harness. All settings use Pydantic
v2 models so they can be validated at construction time and serialised
to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

# Stream libraries the generator knows how to substitute into a template.
STREAM_LIBS: tuple[str, ...] = ("xstream", "most", "rxjs", "rx")


class ConfigError(ValueError):
    """Raised when the harness configuration cannot describe a runnable matrix."""


class Flavor(BaseModel):
    """A named scaffold template selectable at generation time."""

    name: str = Field(..., description="Human-readable flavor name")
    template: str = Field(..., description="Template reference passed to --flavor")
    package: str = Field(
        default="",
        description="devDependencies key the generated manifest must carry "
        "(defaults to the last path component of the template)",
    )

    @property
    def template_id(self) -> str:
        """Identifier of the template package inside the generated manifest."""
        return self.package or Path(self.template).name

    def resolve_template(self, templates_dir: Path) -> str:
        """Return the absolute template path, checking that it exists.

        Raises:
            ConfigError: If the resolved template path does not exist.
        """
        candidate = Path(self.template)
        if not candidate.is_absolute():
            candidate = Path(templates_dir) / candidate
        candidate = candidate.resolve()
        if not candidate.exists():
            raise ConfigError(
                f"Template for flavor '{self.name}' not found: {candidate}"
            )
        return str(candidate)


DEFAULT_FLAVORS: list[Flavor] = [
    Flavor(name="ES6 (babel) + Browserify", template="cycle-scripts-es-browserify"),
]


class PageCheckConfig(BaseModel):
    """Settings for the rendered-page assertion run once the dev server is up."""

    enabled: bool = Field(default=False)
    path: str = Field(default="/")
    selector: str = Field(default="#app>div")
    expected_text: str = Field(default="My Awesome Cycle.js app")
    timeout: float = Field(default=30.0, gt=0, description="Seconds to wait for the page")


class HarnessConfig(BaseModel):
    """Global scaffoldcheck configuration.

    Instances are typically created once by the CLI entry point (or by
    :meth:`from_env`) and passed to :class:`~scaffoldcheck.matrix.MatrixRunner`,
    which hands them down to sessions and sequencers.
    """

    generator_command: list[str] = Field(
        default_factory=lambda: ["create-cycle-app"],
        description="Command (argv prefix) that runs the scaffolding generator",
    )
    workspace_dir: Path = Field(
        default=Path("./.scaffoldcheck"),
        description="Directory in which generated projects are created",
    )
    templates_dir: Path = Field(
        default=Path("."),
        description="Base directory for relative flavor templates",
    )
    flavors: list[Flavor] = Field(default_factory=lambda: list(DEFAULT_FLAVORS))
    stream_libs: list[str] = Field(default_factory=lambda: list(STREAM_LIBS))
    package_manager: list[str] = Field(default_factory=lambda: ["npm"])

    # Timing (seconds)
    phase_timeout: float = Field(default=30.0, gt=0, description="Default per-phase deadline")
    phase_timeouts: dict[str, float] = Field(
        default_factory=dict, description="Per-phase deadline overrides"
    )
    generator_timeout: float = Field(default=600.0, gt=0)
    combination_timeout: float = Field(
        default=3600.0, gt=0, description="Abort budget for one whole combination"
    )

    # Manifest expectations
    expected_version: str = Field(default="0.1.0")
    scripts_delegate: str = Field(
        default="cycle-scripts",
        description="Command every generated npm script must delegate to",
    )

    # Phase policy
    serve_port: int = Field(default=8000, ge=1, le=65535)
    serve_ready_patterns: list[str] = Field(default_factory=lambda: ["browserify"])
    serve_ready_on_match: bool = Field(
        default=True,
        description="Treat a readiness line as serve success without waiting for exit",
    )
    check_unlock_output: bool = Field(
        default=True,
        description="Require the build output directory after the unlock phase",
    )
    build_output_dir: str = Field(default="build")
    allowed_stderr: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Per-phase regexes for stderr lines that are not failures",
    )
    page_check: PageCheckConfig = Field(default_factory=PageCheckConfig)

    results_path: Path | None = Field(default=None)

    @field_validator("stream_libs")
    @classmethod
    def _known_stream_libs(cls, value: list[str]) -> list[str]:
        unknown = [lib for lib in value if lib not in STREAM_LIBS]
        if unknown:
            raise ValueError(
                f"Unknown stream libraries: {', '.join(unknown)} "
                f"(expected one of {', '.join(STREAM_LIBS)})"
            )
        return value

    @field_validator("generator_command", "package_manager")
    @classmethod
    def _non_empty_command(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("command must not be empty")
        return value

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def deadline_for(self, phase: str) -> float:
        """Return the deadline in seconds for *phase*."""
        return self.phase_timeouts.get(phase, self.phase_timeout)

    @property
    def workspace_path(self) -> Path:
        """Absolute workspace directory."""
        return Path(self.workspace_dir).resolve()

    @property
    def serve_url(self) -> str:
        """URL the page check visits."""
        return f"http://localhost:{self.serve_port}{self.page_check.path}"

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file and return its path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "HarnessConfig":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "HarnessConfig":
        """Build a ``HarnessConfig`` from environment variables.

        Recognised variables (all optional):
            SCAFFOLDCHECK_GENERATOR, SCAFFOLDCHECK_WORKSPACE,
            SCAFFOLDCHECK_TEMPLATES_DIR, SCAFFOLDCHECK_STREAMS,
            SCAFFOLDCHECK_PACKAGE_MANAGER, SCAFFOLDCHECK_PHASE_TIMEOUT,
            SCAFFOLDCHECK_PAGE_CHECK, SCAFFOLDCHECK_RESULTS.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("SCAFFOLDCHECK_GENERATOR"):
            kwargs["generator_command"] = shlex.split(os.environ["SCAFFOLDCHECK_GENERATOR"])
        if os.environ.get("SCAFFOLDCHECK_WORKSPACE"):
            kwargs["workspace_dir"] = Path(os.environ["SCAFFOLDCHECK_WORKSPACE"])
        if os.environ.get("SCAFFOLDCHECK_TEMPLATES_DIR"):
            kwargs["templates_dir"] = Path(os.environ["SCAFFOLDCHECK_TEMPLATES_DIR"])
        if os.environ.get("SCAFFOLDCHECK_STREAMS"):
            kwargs["stream_libs"] = [
                s.strip() for s in os.environ["SCAFFOLDCHECK_STREAMS"].split(",") if s.strip()
            ]
        if os.environ.get("SCAFFOLDCHECK_PACKAGE_MANAGER"):
            kwargs["package_manager"] = shlex.split(os.environ["SCAFFOLDCHECK_PACKAGE_MANAGER"])
        if os.environ.get("SCAFFOLDCHECK_PHASE_TIMEOUT"):
            kwargs["phase_timeout"] = float(os.environ["SCAFFOLDCHECK_PHASE_TIMEOUT"])
        if os.environ.get("SCAFFOLDCHECK_RESULTS"):
            kwargs["results_path"] = Path(os.environ["SCAFFOLDCHECK_RESULTS"])

        page_check = PageCheckConfig(
            enabled=os.environ.get("SCAFFOLDCHECK_PAGE_CHECK", "").lower() in ("1", "true", "yes")
        )
        return cls(page_check=page_check, **kwargs)
