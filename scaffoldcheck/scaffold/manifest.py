"""Generated ``package.json`` model and structural validation."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from scaffoldcheck.phases.specs import PHASE_SCRIPTS

MANIFEST_FILENAME = "package.json"

REQUIRED_SCRIPTS: tuple[str, ...] = tuple(PHASE_SCRIPTS.values())


class ManifestError(ValueError):
    """Raised when a generated manifest is missing or violates an invariant."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class ProjectManifest(BaseModel):
    """The subset of ``package.json`` the harness relies on."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    version: str
    private: Any = Field(default=True)
    dev_dependencies: dict[str, Any] = Field(default_factory=dict, alias="devDependencies")
    dependencies: dict[str, Any] = Field(default_factory=dict)
    scripts: dict[str, str] = Field(default_factory=dict)


def manifest_problems(
    data: dict[str, Any],
    *,
    project_name: str,
    template_id: str,
    version: str,
    scripts_delegate: str,
) -> list[str]:
    """Return every structural problem found in a parsed manifest."""
    problems: list[str] = []

    for key, expected in (("name", project_name), ("version", version)):
        if key not in data:
            problems.append(f"missing field '{key}'")
        elif data[key] != expected:
            problems.append(f"'{key}' is {data[key]!r}, expected {expected!r}")

    if "private" not in data:
        problems.append("missing field 'private'")
    elif not data["private"]:
        problems.append(f"'private' is {data['private']!r}, expected a truthy value")

    dev_dependencies = data.get("devDependencies")
    if not isinstance(dev_dependencies, dict):
        problems.append("missing field 'devDependencies'")
    elif not dev_dependencies.get(template_id):
        problems.append(f"missing field 'devDependencies[{template_id}]'")

    scripts = data.get("scripts")
    if not isinstance(scripts, dict):
        problems.append("missing field 'scripts'")
    else:
        for script in REQUIRED_SCRIPTS:
            expected = f"{scripts_delegate} {script}"
            if script not in scripts:
                problems.append(f"missing field 'scripts.{script}'")
            elif scripts[script] != expected:
                problems.append(
                    f"'scripts.{script}' is {scripts[script]!r}, expected {expected!r}"
                )

    return problems


def load_manifest(
    project_dir: Path,
    *,
    project_name: str,
    template_id: str,
    version: str,
    scripts_delegate: str,
) -> ProjectManifest:
    """Read, parse and validate ``<project_dir>/package.json``.

    Raises:
        ManifestError: If the file is missing, unparseable, or violates any
            invariant.  All violations are reported together.
    """
    path = Path(project_dir) / MANIFEST_FILENAME
    if not path.exists():
        raise ManifestError([f"{MANIFEST_FILENAME} not found at {path}"])

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ManifestError([f"{MANIFEST_FILENAME} is not valid JSON: {exc}"]) from exc

    if not isinstance(data, dict):
        raise ManifestError([f"{MANIFEST_FILENAME} must contain a JSON object"])

    problems = manifest_problems(
        data,
        project_name=project_name,
        template_id=template_id,
        version=version,
        scripts_delegate=scripts_delegate,
    )
    if problems:
        raise ManifestError(problems)

    try:
        return ProjectManifest.model_validate(data)
    except ValidationError as exc:
        raise ManifestError([f"{MANIFEST_FILENAME} has unexpected types: {exc}"]) from exc
