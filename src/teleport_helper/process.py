"""Async subprocess execution helpers."""

import asyncio
import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

from .exceptions import CommandTimeout, LaunchFailure, ProcessFailure


logger = logging.getLogger(__name__)


@dataclass
class ProcessOutput:
    """Captured result of a finished command."""
    stdout: str
    stderr: str
    returncode: Optional[int]

    @property
    def success(self) -> bool:
        return self.returncode == 0


class ProcessRunner:
    """Runs external programs on the asyncio event loop.

    Every blocking variant accepts an optional ``timeout`` in seconds. When it
    expires the runner stops waiting and raises ``CommandTimeout``; the child
    is not killed.
    """

    def __init__(self, base_env: Optional[Mapping[str, str]] = None):
        """Initialize the runner.

        Args:
            base_env: Environment handed to children when a call does not pass
                      its own ``env``. Defaults to the inherited environment.
        """
        self.base_env = dict(base_env) if base_env is not None else None

    def _env(self, env: Optional[Mapping[str, str]]) -> Optional[dict]:
        if env is not None:
            return dict(env)
        return self.base_env

    async def _spawn(self, program: str, args: Sequence[str], **kwargs) -> asyncio.subprocess.Process:
        logger.debug(f"Spawning {program} {' '.join(args)}")
        try:
            return await asyncio.create_subprocess_exec(program, *args, **kwargs)
        except FileNotFoundError as e:
            raise LaunchFailure(program, "not found in PATH") from e
        except PermissionError as e:
            raise LaunchFailure(program, "permission denied") from e
        except OSError as e:
            raise LaunchFailure(program, str(e)) from e

    @staticmethod
    async def _wait(program: str, awaitable, timeout: Optional[float]):
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as e:
            raise CommandTimeout(program, timeout) from e

    async def run_with_output(
        self,
        program: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> ProcessOutput:
        """Run a command and capture stdout, stderr and status without failing."""
        proc = await self._spawn(
            program,
            args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._env(env),
        )
        stdout, stderr = await self._wait(program, proc.communicate(), timeout)
        return ProcessOutput(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            returncode=proc.returncode,
        )

    async def run(
        self,
        program: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> str:
        """Run a command and return its stdout.

        Raises:
            ProcessFailure: If the command exits with a non-zero status
            CommandTimeout: If ``timeout`` elapses first
        """
        output = await self.run_with_output(program, args, timeout=timeout, env=env)
        if not output.success:
            raise ProcessFailure(program, output.returncode, output.stderr)
        return output.stdout

    async def run_json(
        self,
        program: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
    ) -> Any:
        """Run a command and decode its stdout as JSON."""
        return json.loads(await self.run(program, args, timeout=timeout))

    async def run_silent(
        self,
        program: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> bool:
        """Run a command with all output discarded and report success."""
        proc = await self._spawn(
            program,
            args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            env=self._env(env),
        )
        returncode = await self._wait(program, proc.wait(), timeout)
        return returncode == 0

    async def run_background(
        self,
        program: str,
        args: Sequence[str] = (),
        log_path: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> asyncio.subprocess.Process:
        """Start a detached command and return immediately.

        The child runs in its own session so it survives the caller. Its stdout
        goes to ``log_path`` (truncated first) or is discarded; stderr is
        always discarded.
        """
        if log_path is None:
            return await self._spawn(
                program,
                args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                env=self._env(env),
                start_new_session=True,
            )

        try:
            log_file = open(log_path, "wb")
        except OSError as e:
            raise LaunchFailure(program, f"cannot open log file {log_path}: {e}") from e

        # The child keeps its own copy of the descriptor.
        with log_file:
            proc = await self._spawn(
                program,
                args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=log_file,
                stderr=asyncio.subprocess.DEVNULL,
                env=self._env(env),
                start_new_session=True,
            )
        logger.info(f"Started background {program} (pid {proc.pid}) logging to {log_path}")
        return proc

    async def run_interactive(
        self,
        program: str,
        args: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Hand the terminal to a command and wait for it to exit."""
        proc = await self._spawn(program, args, env=self._env(env))
        returncode = await proc.wait()
        if returncode != 0:
            raise ProcessFailure(program, returncode)

    @staticmethod
    def command_exists(program: str) -> bool:
        """Check if a program is available on PATH."""
        return shutil.which(program) is not None


def process_alive(proc: asyncio.subprocess.Process) -> bool:
    """Check whether a spawned child is still running."""
    if proc.returncode is not None:
        return False
    try:
        os.kill(proc.pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
