"""scaffoldcheck -- child-process management.

Quick usage::

    from scaffoldcheck.process import ProcessRunner

    handle = await ProcessRunner().spawn(["npm", "test"], project_dir, {"CI": "true"})
    exit_code = await handle.wait()
    await handle.terminate()
"""

from scaffoldcheck.process.runner import (
    OutputLine,
    ProcessEvent,
    ProcessExit,
    ProcessHandle,
    ProcessRunner,
    ProcessSpawnError,
    StreamName,
)

__all__ = [
    "OutputLine",
    "ProcessEvent",
    "ProcessExit",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSpawnError",
    "StreamName",
]
