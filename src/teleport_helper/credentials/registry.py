"""Process table access for finding and stopping proxy processes."""

import logging
import os
import signal
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import psutil

from ..process import ProcessRunner


logger = logging.getLogger(__name__)


@dataclass
class ProcessEntry:
    """A process as seen in the process table."""
    pid: int
    command: str


class ProcessRegistry(ABC):
    """Enumerate, match and terminate OS processes."""

    @abstractmethod
    async def enumerate(self) -> List[ProcessEntry]:
        """List running processes. Entries for the listing itself are excluded."""
        pass

    @abstractmethod
    async def terminate(self, pids: Sequence[int]) -> None:
        """Send a termination signal to every pid."""
        pass

    async def match(self, predicate: Callable[[str], bool]) -> List[ProcessEntry]:
        """Running processes whose command line satisfies ``predicate``."""
        own_pid = os.getpid()
        return [
            entry for entry in await self.enumerate()
            if entry.pid != own_pid and predicate(entry.command)
        ]


def parse_ps_listing(output: str) -> List[ProcessEntry]:
    """Parse ``ps aux`` output into entries.

    The header and any ``ps`` or ``grep`` lines (the listing itself) are
    skipped.
    """
    entries = []
    for line in output.splitlines():
        fields = line.split(None, 10)
        if len(fields) < 11 or not fields[1].isdigit():
            continue
        command = fields[10]
        program = os.path.basename(command.split(None, 1)[0])
        if program in ("ps", "grep") or "grep " in command:
            continue
        entries.append(ProcessEntry(pid=int(fields[1]), command=command))
    return entries


class PsProcessRegistry(ProcessRegistry):
    """Registry backed by the ``ps`` and ``kill`` commands."""

    def __init__(self, runner: Optional[ProcessRunner] = None, timeout: float = 10):
        self.runner = runner or ProcessRunner()
        self.timeout = timeout

    async def enumerate(self) -> List[ProcessEntry]:
        output = await self.runner.run("ps", ["aux"], timeout=self.timeout)
        return parse_ps_listing(output)

    async def terminate(self, pids: Sequence[int]) -> None:
        if not pids:
            return
        # One kill for the whole batch; pids that already exited are not checked
        ok = await self.runner.run_silent("kill", [str(pid) for pid in pids], timeout=self.timeout)
        if not ok:
            logger.debug(f"kill reported failure for some of {list(pids)}")


class PsutilProcessRegistry(ProcessRegistry):
    """Registry backed by psutil, for platforms without a usable ``ps``."""

    async def enumerate(self) -> List[ProcessEntry]:
        entries = []
        for proc in psutil.process_iter(["pid", "cmdline"]):
            try:
                cmdline = proc.info.get("cmdline") or []
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            if not cmdline:
                continue
            entries.append(ProcessEntry(pid=proc.info["pid"], command=" ".join(cmdline)))
        return entries

    async def terminate(self, pids: Sequence[int]) -> None:
        for pid in pids:
            try:
                psutil.Process(pid).send_signal(signal.SIGTERM)
            except psutil.NoSuchProcess:
                logger.debug(f"Process {pid} already gone")
            except psutil.AccessDenied:
                logger.warning(f"Not permitted to terminate process {pid}")


def create_registry(backend: str = "ps", runner: Optional[ProcessRunner] = None) -> ProcessRegistry:
    """Build the registry named by ``backend`` (``ps`` or ``psutil``)."""
    if backend == "psutil":
        return PsutilProcessRegistry()
    if backend == "ps":
        return PsProcessRegistry(runner)
    raise ValueError(f"Unknown process backend: {backend}")
