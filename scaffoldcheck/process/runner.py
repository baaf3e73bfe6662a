"""Child-process management for generator and phase commands.

Spawns one external command per call, pumps its stdout and stderr line by
line into a single ordered event queue, and exposes exit notification plus a
forced, idempotent termination that also reclaims descendant processes (dev
servers started by ``npm start`` live one or two levels below the process we
spawn).

On POSIX every command starts in its own session, so its process group
holds the whole tree, including descendants that outlived their parent and
were reparented away from it.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import psutil

# asyncio's default 64 KiB line limit is too small for bundler output.
DEFAULT_STREAM_LIMIT = 1024 * 1024

# How long to wait for killed descendants to disappear.
KILL_WAIT_SECONDS = 3.0

# How long output may keep arriving after the process itself has exited.
# A descendant that inherited the pipes can hold them open indefinitely.
PIPE_DRAIN_SECONDS = 1.0

# Poll interval for the exit status while the pipes are still open.
EXIT_POLL_SECONDS = 0.05

USE_PROCESS_GROUPS = os.name == "posix"


class StreamName(str, Enum):
    """Which output stream a line was read from."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class OutputLine:
    """One line of process output, without its trailing newline."""

    stream: StreamName
    text: str


@dataclass(frozen=True)
class ProcessExit:
    """Emitted once, after the output read before the process exited."""

    exit_code: int


ProcessEvent = Union[OutputLine, ProcessExit]


class ProcessSpawnError(Exception):
    """Raised when a command cannot be started at all."""

    def __init__(self, message: str, command: list[str] | None = None):
        self.command = list(command or [])
        super().__init__(message)


def _group_members(pgid: int) -> list[psutil.Process]:
    members = []
    for proc in psutil.process_iter():
        try:
            if os.getpgid(proc.pid) == pgid:
                members.append(proc)
        except (ProcessLookupError, PermissionError):
            continue
    return members


def _kill_process_tree(pid: int, pgid: Optional[int] = None, parent_alive: bool = True) -> None:
    """Kill *pid*, its descendants and its process group, then wait briefly.

    Args:
        pid: The process we spawned.
        pgid: Its process group, when it leads one of its own.
        parent_alive: False once the parent has been reaped; its pid may then
            belong to an unrelated process and is not touched.
    """
    victims: list[psutil.Process] = []
    if parent_alive:
        try:
            parent = psutil.Process(pid)
            victims = [parent, *parent.children(recursive=True)]
        except psutil.NoSuchProcess:
            victims = []

    if pgid is not None:
        # A group id stays reserved while any member is alive, so this is
        # safe even after the leader has been reaped.
        victims.extend(proc for proc in _group_members(pgid) if proc not in victims)
        try:
            os.killpg(pgid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass

    for proc in victims:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    # The parent is reaped by asyncio; only the descendants are polled here.
    descendants = [proc for proc in victims if proc.pid != pid]
    if descendants:
        psutil.wait_procs(descendants, timeout=KILL_WAIT_SECONDS)


class ProcessHandle:
    """A running (or finished) child process and its captured output.

    Attributes:
        process: The underlying asyncio process.
        command: The argv the process was started with.
        lines: Every output line seen so far, in arrival order.
    """

    def __init__(self, process: asyncio.subprocess.Process, command: list[str]) -> None:
        self.process = process
        self.command = list(command)
        self.lines: list[OutputLine] = []
        # Spawned as a session leader, so the group id is the pid.
        self.pgid: Optional[int] = process.pid if USE_PROCESS_GROUPS else None
        self._events: asyncio.Queue[ProcessEvent] = asyncio.Queue()
        self._exited: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self._terminated = False
        self._monitor = asyncio.create_task(self._monitor_process())

    # -- Properties ----------------------------------------------------------

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def is_running(self) -> bool:
        """True until the process has exited and been reaped."""
        return self.process.returncode is None

    @property
    def stdout_text(self) -> str:
        return "\n".join(line.text for line in self.lines if line.stream is StreamName.STDOUT)

    @property
    def stderr_text(self) -> str:
        return "\n".join(line.text for line in self.lines if line.stream is StreamName.STDERR)

    # -- Events --------------------------------------------------------------

    async def next_event(self) -> ProcessEvent:
        """Wait for the next output line or the exit event."""
        return await self._events.get()

    def drain_events(self) -> list[ProcessEvent]:
        """Return every event already queued, without waiting."""
        events: list[ProcessEvent] = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except asyncio.QueueEmpty:
                return events

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        return await asyncio.shield(self._exited)

    # -- Termination ---------------------------------------------------------

    async def terminate(self) -> None:
        """Forcibly stop the process and its descendants.

        Safe to call after a natural exit and any number of times.  After a
        natural exit the process group is still killed, which reclaims
        descendants the process left behind.
        """
        if not self._terminated:
            self._terminated = True
            await asyncio.to_thread(
                _kill_process_tree,
                self.process.pid,
                self.pgid,
                self.process.returncode is None,
            )
            await self._wait_for_exit()

        # Pipes close once the whole tree is gone; the monitor then finishes.
        if not self._monitor.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._monitor), timeout=KILL_WAIT_SECONDS)
            except asyncio.TimeoutError:
                self._monitor.cancel()
                self._set_exited(self.process.returncode)

    # -- Internal ------------------------------------------------------------

    async def _pump(self, reader: asyncio.StreamReader | None, stream: StreamName) -> None:
        if reader is None:
            return
        split = False
        while True:
            try:
                raw = await reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as exc:
                # EOF: whatever follows the last newline.
                raw = exc.partial
            except asyncio.LimitOverrunError as exc:
                # Longer than the stream limit: the buffered part becomes a
                # line of its own and the rest follows as further lines.
                raw = await reader.read(exc.consumed)
                split = True
            else:
                if split and raw in (b"\n", b"\r\n"):
                    # Terminator of a line already emitted in pieces.
                    split = False
                    continue
                split = False
            if not raw:
                return
            line = OutputLine(stream, raw.decode("utf-8", errors="replace").rstrip("\r\n"))
            self.lines.append(line)
            self._events.put_nowait(line)

    async def _wait_for_exit(self) -> int:
        """Wait until the process is reaped, even while its pipes stay open.

        ``returncode`` is set as soon as asyncio reaps the child, whereas
        ``Process.wait()`` may also wait for the pipes to close.
        """
        waiter = asyncio.ensure_future(self.process.wait())
        try:
            while not waiter.done() and self.process.returncode is None:
                await asyncio.wait({waiter}, timeout=EXIT_POLL_SECONDS)
        finally:
            if not waiter.done():
                waiter.cancel()
        return self.process.returncode

    async def _monitor_process(self) -> None:
        pumps = asyncio.gather(
            self._pump(self.process.stdout, StreamName.STDOUT),
            self._pump(self.process.stderr, StreamName.STDERR),
        )
        try:
            exit_code = await self._wait_for_exit()
            try:
                await asyncio.wait_for(asyncio.shield(pumps), timeout=PIPE_DRAIN_SECONDS)
            except asyncio.TimeoutError:
                # A descendant still holds the pipes; its later output is dropped
                # so that the exit stays the last event.
                pass
        finally:
            pumps.cancel()
        self._set_exited(exit_code)

    def _set_exited(self, exit_code: int | None) -> None:
        if self._exited.done():
            return
        code = exit_code if exit_code is not None else -1
        self._events.put_nowait(ProcessExit(code))
        self._exited.set_result(code)


class ProcessRunner:
    """Starts external commands with an explicit working directory.

    The harness never changes its own working directory; every spawn passes
    ``cwd`` to the child instead.
    """

    def __init__(self, stream_limit: int = DEFAULT_STREAM_LIMIT) -> None:
        self.stream_limit = stream_limit

    async def spawn(
        self,
        command: list[str],
        working_directory: str | Path,
        env: dict[str, str] | None = None,
    ) -> ProcessHandle:
        """Start *command* in *working_directory*.

        Args:
            command: Argument vector; the first entry is resolved on ``PATH``.
            working_directory: Directory the child runs in.
            env: Extra environment variables merged on top of ``os.environ``.

        Returns:
            A :class:`ProcessHandle` whose output is already being pumped.

        Raises:
            ProcessSpawnError: If the command or directory does not exist, or
                the executable cannot be run.
        """
        if not command:
            raise ProcessSpawnError("Empty command", command)

        merged_env: dict[str, str] | None = None
        if env:
            merged_env = {**os.environ, **env}

        search_path = (merged_env or os.environ).get("PATH")
        executable = shutil.which(command[0], path=search_path)
        if executable is None:
            raise ProcessSpawnError(f"Command not found: '{command[0]}'", command)

        cwd = Path(working_directory)
        if not cwd.is_dir():
            raise ProcessSpawnError(f"Working directory not found: {cwd}", command)

        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *command[1:],
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
                env=merged_env,
                limit=self.stream_limit,
                start_new_session=USE_PROCESS_GROUPS,
            )
        except FileNotFoundError as exc:
            raise ProcessSpawnError(f"Command not found: '{command[0]}'", command) from exc
        except PermissionError as exc:
            raise ProcessSpawnError(
                f"Permission denied executing: '{command[0]}'", command
            ) from exc

        return ProcessHandle(process, command)
