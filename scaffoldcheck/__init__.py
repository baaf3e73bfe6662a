"""scaffoldcheck -- end-to-end verification of a project scaffolding generator.

Generates a project for every (flavor x stream library) combination, then
runs its serve, test, build and unlock scripts under a bounded, cancellable
watcher and reports a per-phase verdict.

Quick usage::

    from scaffoldcheck import HarnessConfig, MatrixRunner

    report = await MatrixRunner(HarnessConfig(generator_command=["create-cycle-app"])).run()
    print(report.summary_text())
"""

from scaffoldcheck.config import STREAM_LIBS, ConfigError, Flavor, HarnessConfig, PageCheckConfig
from scaffoldcheck.matrix import MatrixRunner, build_combinations
from scaffoldcheck.results import Combination, CombinationResult, MatrixReport

__version__ = "0.1.0"

__all__ = [
    "STREAM_LIBS",
    "Combination",
    "CombinationResult",
    "ConfigError",
    "Flavor",
    "HarnessConfig",
    "MatrixReport",
    "MatrixRunner",
    "PageCheckConfig",
    "build_combinations",
]
