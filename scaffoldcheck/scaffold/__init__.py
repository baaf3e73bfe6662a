"""scaffoldcheck scaffold -- generated-project sessions.

Quick usage::

    from scaffoldcheck.scaffold import scaffold_session

    async with scaffold_session(combination, config) as session:
        print(session.directory, session.manifest.version)
"""

from scaffoldcheck.scaffold.manifest import (
    MANIFEST_FILENAME,
    REQUIRED_SCRIPTS,
    ManifestError,
    ProjectManifest,
    load_manifest,
    manifest_problems,
)
from scaffoldcheck.scaffold.session import GenerationFailure, ScaffoldSession, scaffold_session

__all__ = [
    "MANIFEST_FILENAME",
    "REQUIRED_SCRIPTS",
    "GenerationFailure",
    "ManifestError",
    "ProjectManifest",
    "ScaffoldSession",
    "load_manifest",
    "manifest_problems",
    "scaffold_session",
]
