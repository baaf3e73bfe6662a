"""Shared pytest fixtures for the scaffoldcheck test suite.

Provides reusable fixtures for:
- A fake project generator that writes a ``package.json``
- A fake package manager whose scripts print, fail, hang or create folders
- Harness configurations wired to both fakes
- Process liveness checks
"""

from __future__ import annotations

import json
import sys
import textwrap
from collections.abc import Callable
from pathlib import Path
from typing import Any

import psutil
import pytest

from scaffoldcheck.config import Flavor, HarnessConfig
from scaffoldcheck.results import Combination


# ---------------------------------------------------------------------------
# Fake executables
# ---------------------------------------------------------------------------

# Invoked as: <generator> NAME --flavor TEMPLATE_PATH --stream LIB
# Behaviour is read from TEMPLATE_PATH/generator.json; TEMPLATE_PATH/npm.json
# is copied into the project as fake-npm.json.
FAKE_GENERATOR = textwrap.dedent("""\
    import json
    import shutil
    import sys
    import time
    from pathlib import Path

    args = sys.argv[1:]
    name = args[0]
    template = Path(args[args.index("--flavor") + 1])
    stream = args[args.index("--stream") + 1]

    control_file = template / "generator.json"
    control = json.loads(control_file.read_text()) if control_file.exists() else {}

    if control.get("hang"):
        time.sleep(60)

    project = Path.cwd() / name
    project.mkdir()

    manifest = {
        "name": name,
        "version": "0.1.0",
        "private": True,
        "devDependencies": {template.name: "1.0.0"},
        "dependencies": {stream: "*"},
        "scripts": {
            script: "cycle-scripts " + script
            for script in ("start", "test", "build", "take-off-training-wheels")
        },
    }
    for key in control.get("omit", []):
        manifest.pop(key, None)
    for script in control.get("omit_scripts", []):
        manifest["scripts"].pop(script, None)
    manifest.update(control.get("overrides", {}))

    if not control.get("skip_manifest"):
        (project / "package.json").write_text(json.dumps(manifest, indent=2))

    behaviour = template / "npm.json"
    if behaviour.exists():
        shutil.copy(behaviour, project / "fake-npm.json")

    if control.get("stderr"):
        print(control["stderr"], file=sys.stderr, flush=True)
    sys.exit(control.get("exit_code", 0))
""")

# Invoked as: <npm> start | <npm> test | <npm> run SCRIPT
# Defaults below are overridden per script by ./fake-npm.json.  When
# FAKE_NPM_LOG is set, every invocation appends one JSON line to it.
FAKE_NPM = textwrap.dedent("""\
    import json
    import os
    import sys
    import time
    from pathlib import Path

    DEFAULTS = {
        "start": {"stdout": ["Server running at http://localhost:8000"], "hang": True},
        "test": {"stdout": ["1 passing"]},
        "build": {"stdout": ["bundled"], "mkdir": "build"},
        "take-off-training-wheels": {"stdout": ["ejected"], "mkdir": "build"},
    }

    args = sys.argv[1:]
    script = args[1] if args and args[0] == "run" else args[0]

    behaviours = dict(DEFAULTS)
    override = Path("fake-npm.json")
    if override.exists():
        behaviours.update(json.loads(override.read_text()))
    behaviour = behaviours.get(script, {})

    log = os.environ.get("FAKE_NPM_LOG")
    if log:
        with open(log, "a") as fh:
            record = {
                "script": script,
                "cwd": os.getcwd(),
                "pid": os.getpid(),
                "ci": os.environ.get("CI", ""),
            }
            fh.write(json.dumps(record) + "\\n")

    time.sleep(behaviour.get("delay", 0))
    for line in behaviour.get("stdout", []):
        print(line, flush=True)
    for line in behaviour.get("stderr", []):
        print(line, file=sys.stderr, flush=True)
    if behaviour.get("mkdir"):
        Path(behaviour["mkdir"]).mkdir(exist_ok=True)
    if behaviour.get("hang"):
        while True:
            time.sleep(1)
    sys.exit(behaviour.get("exit", 0))
""")


@pytest.fixture
def fake_generator(tmp_path: Path) -> list[str]:
    """Command prefix running the fake generator."""
    script = tmp_path / "fake_generator.py"
    script.write_text(FAKE_GENERATOR, encoding="utf-8")
    return [sys.executable, str(script)]


@pytest.fixture
def fake_npm(tmp_path: Path) -> list[str]:
    """Command prefix running the fake package manager."""
    script = tmp_path / "fake_npm.py"
    script.write_text(FAKE_NPM, encoding="utf-8")
    return [sys.executable, str(script)]


@pytest.fixture
def npm_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Callable[[], list[dict[str, Any]]]:
    """Record fake npm invocations; returns a reader for the recorded calls."""
    log_path = tmp_path / "npm-calls.jsonl"
    monkeypatch.setenv("FAKE_NPM_LOG", str(log_path))

    def read() -> list[dict[str, Any]]:
        if not log_path.exists():
            return []
        return [json.loads(line) for line in log_path.read_text().splitlines() if line]

    return read


# ---------------------------------------------------------------------------
# Templates & configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    """Directory holding fake flavor templates."""
    path = tmp_path / "templates"
    path.mkdir()
    return path


@pytest.fixture
def make_template(templates_dir: Path) -> Callable[..., Path]:
    """Create a template directory with optional generator and npm behaviour.

    Usage::

        make_template("tmpl-bad", generator={"exit_code": 1})
        make_template("tmpl-slow", npm={"test": {"stderr": ["boom"]}})
    """

    def _make(
        name: str = "cycle-scripts-test",
        generator: dict[str, Any] | None = None,
        npm: dict[str, Any] | None = None,
    ) -> Path:
        template = templates_dir / name
        template.mkdir(exist_ok=True)
        if generator is not None:
            (template / "generator.json").write_text(json.dumps(generator))
        if npm is not None:
            (template / "npm.json").write_text(json.dumps(npm))
        return template

    return _make


@pytest.fixture
def harness_config(
    tmp_path: Path,
    templates_dir: Path,
    fake_generator: list[str],
    fake_npm: list[str],
    make_template: Callable[..., Path],
) -> HarnessConfig:
    """Configuration wired to the fake generator and package manager."""
    make_template("cycle-scripts-test")
    return HarnessConfig(
        generator_command=fake_generator,
        package_manager=fake_npm,
        workspace_dir=tmp_path / "workspace",
        templates_dir=templates_dir,
        flavors=[Flavor(name="Test flavor", template="cycle-scripts-test")],
        stream_libs=["xstream"],
        phase_timeout=15.0,
        generator_timeout=30.0,
    )


@pytest.fixture
def combination(harness_config: HarnessConfig) -> Combination:
    """The single combination described by ``harness_config``."""
    return Combination.from_flavor(
        harness_config.flavors[0], "xstream", harness_config.templates_dir
    )


# ---------------------------------------------------------------------------
# Processes
# ---------------------------------------------------------------------------

def _pid_alive(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


@pytest.fixture
def pid_alive() -> Callable[[int], bool]:
    """Return a predicate telling whether a pid is still a live process."""
    return _pid_alive


@pytest.fixture
def python_command() -> Callable[[str], list[str]]:
    """Build an argv running a Python snippet in a fresh interpreter."""

    def _command(code: str) -> list[str]:
        return [sys.executable, "-c", textwrap.dedent(code)]

    return _command
