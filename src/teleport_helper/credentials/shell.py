"""Keep the operator's shell profile sourcing the current credential file."""

import asyncio
import logging
import os
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional, Tuple, Union

from ..exceptions import ProfileIOFailure
from .files import atomic_write_text, locked
from .models import ARTIFACT_PREFIX


logger = logging.getLogger(__name__)


MARKER_COMMENT = "Added by th"

# Marker variant used when sync had to end the profile's last line
NO_NEWLINE_SUFFIX = "(no newline at end of file)"

# Left behind by older releases of the tool
LEGACY_SUBSTRINGS = ("yl_aws_credentials", "TH_AWS_")


class ShellFamily(Enum):
    """Supported shells: (name, profile relative to HOME, comment prefix, SHELL substring)."""

    ZSH = ("zsh", ".zshrc", "#", "zsh")
    BASH = ("bash", ".bash_profile", "#", "bash")
    FISH = ("fish", ".config/fish/config.fish", "#", "fish")
    GENERIC = ("sh", ".profile", "#", None)

    def __init__(self, label: str, profile: str, comment: str, match: Optional[str]):
        self.label = label
        self.profile = profile
        self.comment = comment
        self.match = match

    @classmethod
    def detect(cls, shell: Optional[str]) -> "ShellFamily":
        """Pick the family whose marker appears in a ``SHELL`` value."""
        name = os.path.basename(shell or "")
        for family in cls:
            if family.match and family.match in name:
                return family
        return cls.GENERIC

    def profile_path(self, home: Union[str, Path]) -> Path:
        return Path(home) / self.profile

    @property
    def marker_line(self) -> str:
        return f"{self.comment} {MARKER_COMMENT}"

    @property
    def no_newline_marker_line(self) -> str:
        return f"{self.marker_line} {NO_NEWLINE_SUFFIX}"


class ShellProfileSync:
    """Adds and removes the credential ``source`` line in a shell profile.

    Both directions hold an advisory lock for the whole read-modify-write and
    replace the profile by rename, so two ``th`` invocations cannot interleave
    their edits or leave a half-written profile.
    """

    def __init__(
        self,
        family: ShellFamily,
        profile_path: Union[str, Path],
        temp_dir: Union[str, Path] = "/tmp",
    ):
        self.family = family
        self.profile_path = Path(profile_path)
        self.source_prefix = f"source {Path(temp_dir) / ARTIFACT_PREFIX}"

    @classmethod
    def for_environment(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        temp_dir: Union[str, Path] = "/tmp",
    ) -> "ShellProfileSync":
        """Build a sync for the shell named in ``SHELL`` under ``HOME``."""
        environ = os.environ if environ is None else environ
        family = ShellFamily.detect(environ.get("SHELL"))
        home = environ.get("HOME") or str(Path.home())
        return cls(family, family.profile_path(home), temp_dir=temp_dir)

    def _is_source_line(self, line: str) -> bool:
        return line.lstrip().startswith(self.source_prefix)

    def _is_marker(self, line: str) -> bool:
        return line.strip() in (self.family.marker_line, self.family.no_newline_marker_line)

    def _is_tool_line(self, line: str) -> bool:
        return (
            self._is_marker(line)
            or self._is_source_line(line)
            or any(s in line for s in LEGACY_SUBSTRINGS)
        )

    def _read_lines(self) -> List[str]:
        try:
            with open(self.profile_path, 'r', newline='') as f:
                return f.read().splitlines(keepends=True)
        except FileNotFoundError:
            return []

    def _without(self, lines: List[str], drop) -> List[str]:
        """Filter out ``drop`` lines and undo the newline a sync added for them.

        The newline is only taken back when nothing the user wrote follows
        the removed block.
        """
        kept = []
        ended_by_sync = None
        for line in lines:
            if not drop(line):
                kept.append(line)
            elif kept and line.strip() == self.family.no_newline_marker_line:
                ended_by_sync = len(kept) - 1
        if ended_by_sync is not None and ended_by_sync == len(kept) - 1 and kept[-1].endswith("\n"):
            kept[-1] = kept[-1][:-1]
        return kept

    def _sync(self, artifact_path: Path) -> None:
        with locked(self.profile_path):
            lines = self._read_lines()
            kept = self._without(lines, lambda l: self._is_source_line(l) or self._is_marker(l))
            marker = self.family.marker_line
            if kept and not kept[-1].endswith(("\n", "\r")):
                kept[-1] += "\n"
                marker = self.family.no_newline_marker_line
            kept.append(f"{marker}\n")
            kept.append(f"source {artifact_path}\n")
            self.profile_path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(self.profile_path, "".join(kept))

    def _cleanup(self) -> int:
        with locked(self.profile_path):
            lines = self._read_lines()
            if not lines:
                return 0
            kept = self._without(lines, self._is_tool_line)
            removed = len(lines) - len(kept)
            if removed:
                atomic_write_text(self.profile_path, "".join(kept))
            return removed

    async def sync(self, artifact_path: Union[str, Path]) -> None:
        """Point the profile at ``artifact_path``, replacing earlier source lines.

        Raises:
            ProfileIOFailure: If the profile cannot be read or written
        """
        try:
            await asyncio.to_thread(self._sync, Path(artifact_path))
        except OSError as e:
            raise ProfileIOFailure(self.profile_path, str(e)) from e
        logger.info(f"Shell profile {self.profile_path} now sources {artifact_path}")

    async def cleanup(self) -> int:
        """Strip every line this tool added, leaving the rest untouched.

        Returns:
            Number of lines removed

        Raises:
            ProfileIOFailure: If the profile cannot be read or written
        """
        try:
            removed = await asyncio.to_thread(self._cleanup)
        except OSError as e:
            raise ProfileIOFailure(self.profile_path, str(e)) from e
        logger.info(f"Removed {removed} line(s) from {self.profile_path}")
        return removed

    def source_lines(self) -> List[Tuple[int, str]]:
        """List active credential source lines as (line number, text)."""
        return [
            (i, line.rstrip("\r\n"))
            for i, line in enumerate(self._read_lines(), start=1)
            if self._is_source_line(line)
        ]
