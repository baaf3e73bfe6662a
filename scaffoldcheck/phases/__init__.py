"""scaffoldcheck phases -- phase specs, outcomes and the watcher.

Provides the data describing each lifecycle phase (serve, test, build,
unlock), the :class:`PhaseWatcher` that runs one phase to a terminal
outcome, and the page-content check used by the serve phase.  The
:class:`~scaffoldcheck.phases.sequencer.PhaseSequencer` lives in
:mod:`scaffoldcheck.phases.sequencer`.
"""

from scaffoldcheck.phases.models import (
    ANY_STDERR,
    NO_MATCH,
    OutcomeKind,
    OutputRule,
    PhaseOutcome,
    PhaseSpec,
    PostCondition,
)
from scaffoldcheck.phases.page_check import PageContentCheck
from scaffoldcheck.phases.specs import PHASE_NAMES, PHASE_SCRIPTS, build_phase_specs
from scaffoldcheck.phases.watcher import PhaseWatcher

__all__ = [
    "ANY_STDERR",
    "NO_MATCH",
    "PHASE_NAMES",
    "PHASE_SCRIPTS",
    "OutcomeKind",
    "OutputRule",
    "PageContentCheck",
    "PhaseOutcome",
    "PhaseSpec",
    "PhaseWatcher",
    "PostCondition",
    "build_phase_specs",
]
