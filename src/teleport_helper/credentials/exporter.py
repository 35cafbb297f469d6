"""Turn a ready proxy log into a clean credential file and CredentialSet."""

import asyncio
import logging
from pathlib import Path
from typing import List, MutableMapping, Optional, Union

import aiofiles

from ..exceptions import ArtifactMissing, ExportParseError
from .files import atomic_write_text
from .models import CredentialSet, is_export_line, parse_export_line


logger = logging.getLogger(__name__)


US_ACCOUNT_PREFIX = "yl-us"
US_REGION = "us-east-2"
DEFAULT_REGION = "eu-west-1"


def region_for(target: str) -> str:
    """Pick the AWS region for an account by its naming convention."""
    if target.startswith(US_ACCOUNT_PREFIX):
        return US_REGION
    return DEFAULT_REGION


def filter_export_lines(content: str) -> List[str]:
    """Keep only export statements, dropping banners and warnings."""
    return [line for line in content.splitlines() if is_export_line(line)]


def derived_lines(target: str, role: str) -> List[str]:
    return [
        f"export ACCOUNT={target}",
        f"export ROLE={role}",
        f"export AWS_DEFAULT_REGION={region_for(target)}",
    ]


def parse_credentials(lines: List[str], strict: bool = False) -> CredentialSet:
    """Parse export lines into a CredentialSet.

    Args:
        lines: Export statements
        strict: Raise on a malformed line instead of skipping it

    Raises:
        ExportParseError: If ``strict`` and a line cannot be parsed
    """
    credentials = CredentialSet()
    for line in lines:
        parsed = parse_export_line(line)
        if parsed is None:
            if strict:
                raise ExportParseError(line)
            logger.warning(f"Skipping malformed export line: {line.strip()[:40]!r}")
            continue
        credentials.add(*parsed)
    return credentials


class CredentialExporter:
    """Filters, augments and parses the proxy's credential artifact."""

    def __init__(self, strict: bool = False):
        """Initialize the exporter.

        Args:
            strict: Treat malformed export lines as errors
        """
        self.strict = strict

    async def export(
        self,
        path: Union[str, Path],
        target: str,
        role: str,
        environ: Optional[MutableMapping[str, str]] = None,
    ) -> CredentialSet:
        """Rewrite the artifact and return its credentials.

        Args:
            path: Log artifact that the watcher reported as ready
            target: Teleport app (AWS account) name
            role: Assumed AWS role
            environ: Mapping to also set the credentials on, if given

        Returns:
            Parsed credentials, in file order

        Raises:
            ArtifactMissing: If the artifact no longer exists
            ExportParseError: In strict mode, for a malformed line
        """
        path = Path(path)
        try:
            async with aiofiles.open(path, 'r', errors='replace') as f:
                content = await f.read()
        except FileNotFoundError as e:
            raise ArtifactMissing(path) from e

        lines = filter_export_lines(content) + derived_lines(target, role)
        # Parse before rewriting so strict mode leaves the artifact untouched on error
        credentials = parse_credentials(lines, strict=self.strict)

        try:
            await asyncio.to_thread(atomic_write_text, path, "\n".join(lines) + "\n")
        except FileNotFoundError as e:
            raise ArtifactMissing(path) from e

        logger.info(f"Exported {len(credentials)} variables for {target} ({role}): {', '.join(credentials.keys())}")

        if environ is not None:
            credentials.apply_to(environ)
        return credentials
