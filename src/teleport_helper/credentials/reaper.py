"""Logout sweep: stop proxies, delete artifacts and undo profile edits."""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, MutableMapping, Optional, Tuple, Union

from ..exceptions import ReapPartialFailure
from ..process import ProcessRunner
from .registry import ProcessRegistry
from .shell import ShellProfileSync


logger = logging.getLogger(__name__)


TEMP_PREFIXES = ("yl", "tsh", "admin_")

PROXY_PATTERNS = ("tsh proxy aws", "tsh proxy db")

SESSION_ENV_VARS = (
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_CA_BUNDLE",
    "HTTPS_PROXY",
    "ACCOUNT",
    "ROLE",
    "AWS_DEFAULT_REGION",
)


def is_proxy_command(command: str) -> bool:
    return any(pattern in command for pattern in PROXY_PATTERNS)


@dataclass
class ReapReport:
    """What a logout sweep did, step by step."""
    removed_files: List[Path] = field(default_factory=list)
    profile_lines_removed: int = 0
    unset_vars: List[str] = field(default_factory=list)
    killed_pids: List[int] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def as_error(self) -> Optional[ReapPartialFailure]:
        """Describe recorded failures as an error, or None if every step worked."""
        if self.ok:
            return None
        return ReapPartialFailure(self.failures)


class SessionReaper:
    """Best-effort cleanup of everything a proxy session leaves behind.

    Each step runs regardless of whether earlier ones failed. Failures are
    logged and recorded on the report, never raised.
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        profile: Optional[ShellProfileSync] = None,
        runner: Optional[ProcessRunner] = None,
        temp_dir: Union[str, Path] = "/tmp",
        tsh_path: str = "tsh",
        environ: Optional[MutableMapping[str, str]] = None,
        logout_timeout: float = 15,
    ):
        self.registry = registry
        self.profile = profile
        self.runner = runner or ProcessRunner()
        self.temp_dir = Path(temp_dir)
        self.tsh_path = tsh_path
        self.environ = environ
        self.logout_timeout = logout_timeout

    def _remove_temp_files(self) -> Tuple[List[Path], List[str]]:
        removed, errors = [], []
        with os.scandir(self.temp_dir) as entries:
            for entry in entries:
                if not entry.name.startswith(TEMP_PREFIXES):
                    continue
                if not entry.is_file(follow_symlinks=False):
                    continue
                try:
                    os.unlink(entry.path)
                    removed.append(Path(entry.path))
                except FileNotFoundError:
                    continue
                except OSError as e:
                    errors.append(f"{entry.path}: {e}")
        return removed, errors

    async def remove_temp_files(self, report: ReapReport) -> None:
        try:
            removed, errors = await asyncio.to_thread(self._remove_temp_files)
        except OSError as e:
            report.failures.append(f"temp files: {e}")
            return
        report.removed_files.extend(removed)
        report.failures.extend(f"temp file {err}" for err in errors)
        logger.info(f"Removed {len(removed)} credential file(s) from {self.temp_dir}")

    async def clean_profile(self, report: ReapReport) -> None:
        if self.profile is None:
            return
        try:
            report.profile_lines_removed = await self.profile.cleanup()
        except Exception as e:
            report.failures.append(f"profile: {e}")

    def unset_environment(self, report: ReapReport) -> None:
        if self.environ is None:
            return
        for key in SESSION_ENV_VARS:
            if self.environ.pop(key, None) is not None:
                report.unset_vars.append(key)

    async def kill_proxies(self, report: ReapReport) -> None:
        try:
            matches = await self.registry.match(is_proxy_command)
        except Exception as e:
            report.failures.append(f"process listing: {e}")
            return

        pids = [entry.pid for entry in matches]
        if not pids:
            logger.info("No running tsh proxies found")
            return

        try:
            await self.registry.terminate(pids)
        except Exception as e:
            report.failures.append(f"kill: {e}")
            return
        report.killed_pids.extend(pids)
        logger.info(f"Sent termination signal to proxies {pids}")

    async def teleport_logout(self, report: ReapReport) -> None:
        for args in (["logout"], ["apps", "logout"]):
            try:
                await self.runner.run_silent(self.tsh_path, args, timeout=self.logout_timeout)
            except Exception as e:
                logger.debug(f"tsh {' '.join(args)} failed: {e}")

    async def reap(self) -> ReapReport:
        """Run every cleanup step and report what happened."""
        report = ReapReport()
        await self.remove_temp_files(report)
        await self.clean_profile(report)
        self.unset_environment(report)
        await self.kill_proxies(report)
        await self.teleport_logout(report)

        for failure in report.failures:
            logger.warning(f"Cleanup step failed: {failure}")
        return report
