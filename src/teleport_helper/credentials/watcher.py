"""Wait for the proxy to write credentials into its log artifact."""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

import aiofiles

from ..exceptions import CredentialTimeout
from .models import READINESS_MARKER


logger = logging.getLogger(__name__)


class CredentialWatcher:
    """Polls a log artifact until the readiness marker shows up."""

    def __init__(
        self,
        marker: str = READINESS_MARKER,
        interval: float = 0.5,
        max_attempts: int = 20,
    ):
        """Initialize the watcher.

        Args:
            marker: Substring that means credentials are available
            interval: Seconds between checks
            max_attempts: Number of checks before giving up
        """
        if interval <= 0 or max_attempts <= 0:
            raise ValueError("interval and max_attempts must be positive")
        self.marker = marker
        self.interval = interval
        self.max_attempts = max_attempts

    @property
    def budget(self) -> float:
        """Total time the watcher waits before timing out."""
        return self.interval * self.max_attempts

    async def is_ready(self, path: Union[str, Path]) -> bool:
        """Check the artifact once. A missing file is simply not ready."""
        try:
            async with aiofiles.open(path, 'r', errors='replace') as f:
                content = await f.read()
        except FileNotFoundError:
            return False
        return self.marker in content

    async def watch(
        self,
        path: Union[str, Path],
        process: Optional[asyncio.subprocess.Process] = None,
    ) -> None:
        """Wait until the artifact contains the readiness marker.

        Args:
            path: Log artifact written by the proxy
            process: Proxy process, only used to report an early exit

        Raises:
            CredentialTimeout: If the marker is not seen within the budget
        """
        path = Path(path)
        exit_reported = False

        for attempt in range(1, self.max_attempts + 1):
            if await self.is_ready(path):
                logger.info(f"Credentials ready in {path} after {attempt} check(s)")
                return

            if process is not None and process.returncode is not None and not exit_reported:
                # Output may still be flushing, keep polling until the budget runs out
                logger.warning(f"Proxy exited with code {process.returncode} before writing credentials")
                exit_reported = True

            await asyncio.sleep(self.interval)

        raise CredentialTimeout(path, self.budget)
