"""Unit tests for ScaffoldSession (scaffoldcheck.scaffold.session).

Tests cover:
- Generating a project with the fake generator
- Generator invocation (name, --flavor, --stream)
- GenerationFailure on nonzero exit, timeout, missing binary, bad manifest
- destroy(): removes the directory, only once, also after failure
- scaffold_session context manager cleanup
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from scaffoldcheck.config import Flavor, HarnessConfig
from scaffoldcheck.results import Combination
from scaffoldcheck.scaffold.session import GenerationFailure, ScaffoldSession, scaffold_session


def _combination_for(config: HarnessConfig, template: str) -> Combination:
    return Combination.from_flavor(
        Flavor(name=template, template=template), "xstream", config.templates_dir
    )


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class TestGenerate:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generates_named_project(self, harness_config, make_template):
        make_template("tmplX", generator={"overrides": {"devDependencies": {"tmplX": "^1.0"}}})
        session = ScaffoldSession(
            _combination_for(harness_config, "tmplX"), harness_config, name="proj1"
        )

        manifest = await session.generate()

        assert session.directory == harness_config.workspace_path / "proj1"
        assert (session.directory / "package.json").is_file()
        assert manifest.name == "proj1"
        assert manifest.version == "0.1.0"
        assert manifest.private is True
        assert manifest.dev_dependencies == {"tmplX": "^1.0"}
        assert manifest.scripts["start"] == "cycle-scripts start"
        assert manifest.scripts["take-off-training-wheels"] == "cycle-scripts take-off-training-wheels"
        assert session.manifest is manifest
        session.destroy()

    @pytest.mark.unit
    def test_command(self, harness_config, combination):
        session = ScaffoldSession(combination, harness_config, name="proj1")
        assert session.command == [
            *harness_config.generator_command,
            "proj1",
            "--flavor",
            combination.template_ref,
            "--stream",
            "xstream",
        ]

    @pytest.mark.unit
    def test_default_name_is_unique(self, harness_config, combination):
        first = ScaffoldSession(combination, harness_config)
        second = ScaffoldSession(combination, harness_config)
        assert first.id.startswith("example-")
        assert first.id != second.id

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_nonzero_exit(self, harness_config, make_template: Callable[..., Path]):
        make_template("tmpl-broken", generator={"exit_code": 1, "stderr": "template not found"})
        session = ScaffoldSession(
            _combination_for(harness_config, "tmpl-broken"), harness_config, name="proj1"
        )

        with pytest.raises(GenerationFailure) as exc_info:
            await session.generate()

        failure = exc_info.value
        assert failure.exit_code == 1
        assert failure.project_name == "proj1"
        assert "result code: 1" in failure.reason
        assert "template not found" in failure.reason
        session.destroy()
        assert not session.directory.exists()

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "control, field",
        [
            ({"omit": ["version"]}, "missing field 'version'"),
            ({"omit": ["private"]}, "missing field 'private'"),
            ({"omit": ["devDependencies"]}, "missing field 'devDependencies'"),
            ({"omit_scripts": ["take-off-training-wheels"]}, "scripts.take-off-training-wheels"),
            ({"overrides": {"version": "1.0.0"}}, "'version' is '1.0.0'"),
            ({"skip_manifest": True}, "package.json not found"),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_manifest(self, harness_config, make_template, control, field):
        make_template("tmpl-bad", generator=control)
        session = ScaffoldSession(
            _combination_for(harness_config, "tmpl-bad"), harness_config, name="proj1"
        )

        with pytest.raises(GenerationFailure) as exc_info:
            await session.generate()

        assert exc_info.value.reason.startswith("invalid manifest")
        assert field in exc_info.value.reason
        assert exc_info.value.exit_code == 0
        session.destroy()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generator_not_found(self, harness_config, combination):
        config = harness_config.model_copy(
            update={"generator_command": ["definitely-not-a-real-generator"]}
        )
        with pytest.raises(GenerationFailure, match="Command not found"):
            await ScaffoldSession(combination, config).generate()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generator_timeout(self, harness_config, make_template):
        make_template("tmpl-hang", generator={"hang": True})
        config = harness_config.model_copy(update={"generator_timeout": 0.5})
        session = ScaffoldSession(_combination_for(config, "tmpl-hang"), config)

        with pytest.raises(GenerationFailure, match="timed out"):
            await session.generate()


# ---------------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------------


class TestDestroy:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_destroy_removes_directory_once(self, harness_config, combination):
        session = ScaffoldSession(combination, harness_config)
        await session.generate()
        assert session.directory.exists()

        session.destroy()
        assert not session.directory.exists()
        assert session.destroyed

        session.directory.mkdir()
        session.destroy()
        assert session.directory.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_removes_partial_directory(self, harness_config, make_template):
        make_template("tmpl-partial", generator={"exit_code": 2})
        combination = _combination_for(harness_config, "tmpl-partial")

        with pytest.raises(GenerationFailure) as exc_info:
            await ScaffoldSession.create(combination, harness_config)

        name = exc_info.value.project_name
        assert name
        assert not (harness_config.workspace_path / name).exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_context_manager_cleans_up_on_success(self, harness_config, combination):
        async with scaffold_session(combination, harness_config) as session:
            directory = session.directory
            assert directory.is_dir()
        assert not directory.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_context_manager_cleans_up_on_error(self, harness_config, combination):
        directory = None
        with pytest.raises(RuntimeError, match="phase crashed"):
            async with scaffold_session(combination, harness_config) as session:
                directory = session.directory
                raise RuntimeError("phase crashed")
        assert directory is not None
        assert not directory.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_context_manager_cleans_up_failed_generation(
        self, harness_config, make_template
    ):
        make_template("tmpl-noversion", generator={"omit": ["version"]})
        combination = _combination_for(harness_config, "tmpl-noversion")

        with pytest.raises(GenerationFailure):
            async with scaffold_session(combination, harness_config):
                pytest.fail("body must not run")

        assert list(harness_config.workspace_path.iterdir()) == []
