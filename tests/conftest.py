"""Shared fixtures for the Teleport helper tests."""

import asyncio
import json
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pytest

from teleport_helper.credentials.registry import ProcessEntry, ProcessRegistry
from teleport_helper.process import ProcessOutput


PROXY_OUTPUT = (
    "Started AWS proxy on http://127.0.0.1:51234.\n"
    "To avoid configuring AWS CLI manually, set the following variables:\n"
    "\n"
    "  export AWS_ACCESS_KEY_ID=AKIAEXAMPLE\n"
    "  export AWS_SECRET_ACCESS_KEY=secret\n"
    "  export AWS_CA_BUNDLE=/home/me/.tsh/keys/proxy/me-app/yl-dev-localca.pem\n"
    "  export HTTPS_PROXY=http://127.0.0.1:51234\n"
)


class FakeRegistry(ProcessRegistry):
    """In-memory process table."""

    def __init__(self, entries: Sequence[ProcessEntry] = (), fail_enumerate: bool = False):
        self.entries = list(entries)
        self.fail_enumerate = fail_enumerate
        self.terminated: List[List[int]] = []

    async def enumerate(self) -> List[ProcessEntry]:
        if self.fail_enumerate:
            raise RuntimeError("ps not available")
        return list(self.entries)

    async def terminate(self, pids: Sequence[int]) -> None:
        self.terminated.append(list(pids))


class FakeProcess:
    """Stands in for an asyncio subprocess."""

    def __init__(self, pid: int = 4242, returncode: Optional[int] = None):
        self.pid = pid
        self.returncode = returncode
        self.signals: List[int] = []

    def send_signal(self, sig: int) -> None:
        self.signals.append(sig)


class FakeRunner:
    """Records commands instead of running them.

    ``on_background`` receives the log path and may schedule writes to it,
    imitating a proxy that prints credentials after a delay.
    """

    def __init__(self, on_background: Optional[Callable[[Path], None]] = None):
        self.calls: List[tuple] = []
        self.on_background = on_background
        self.outputs = {}
        self.silent_results = {}

    async def run_background(self, program, args=(), log_path=None, env=None):
        self.calls.append(("background", program, list(args)))
        if log_path is not None:
            Path(log_path).write_text("")
            if self.on_background:
                self.on_background(Path(log_path))
        return FakeProcess()

    async def run_with_output(self, program, args=(), timeout=None, env=None):
        self.calls.append(("output", program, list(args)))
        return self.outputs.get(tuple(args), ProcessOutput("", "", 0))

    async def run(self, program, args=(), timeout=None, env=None):
        self.calls.append(("run", program, list(args)))
        return self.outputs.get(tuple(args), ProcessOutput("", "", 0)).stdout

    async def run_json(self, program, args=(), timeout=None):
        self.calls.append(("json", program, list(args)))
        return json.loads(self.outputs.get(tuple(args), ProcessOutput("null", "", 0)).stdout)

    async def run_silent(self, program, args=(), timeout=None, env=None):
        self.calls.append(("silent", program, list(args)))
        return self.silent_results.get(tuple(args), True)

    async def run_interactive(self, program, args=(), env=None):
        self.calls.append(("interactive", program, list(args)))


@pytest.fixture
def proxy_output() -> str:
    return PROXY_OUTPUT


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    """A private stand-in for /tmp."""
    path = tmp_path / "tmp"
    path.mkdir()
    return path


@pytest.fixture
def home_dir(tmp_path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


def write_later(content: str, delay: float = 0.05) -> Callable[[Path], None]:
    """Build an ``on_background`` hook that writes ``content`` after ``delay``."""
    def hook(path: Path) -> None:
        loop = asyncio.get_running_loop()
        loop.call_later(delay, path.write_text, content)
    return hook
