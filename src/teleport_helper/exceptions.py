"""Exceptions raised by the Teleport helper."""

from pathlib import Path
from typing import Optional, Sequence


class ThError(Exception):
    """Base class for all errors surfaced to the operator."""
    pass


class ConfigError(ThError):
    """Configuration file could not be loaded or validated."""
    pass


class LaunchFailure(ThError):
    """A program could not be spawned."""

    def __init__(self, program: str, reason: str):
        self.program = program
        self.reason = reason
        super().__init__(f"Failed to launch '{program}': {reason}")


class ProcessFailure(ThError):
    """A program exited with a non-zero status."""

    def __init__(self, program: str, returncode: Optional[int], stderr: str = ""):
        self.program = program
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"Command '{program}' failed: {detail}")


class CommandTimeout(ThError):
    """Waiting for a program exceeded its wall-clock budget."""

    def __init__(self, program: str, timeout: float):
        self.program = program
        self.timeout = timeout
        super().__init__(f"Command '{program}' timed out after {timeout:g}s")


class CredentialTimeout(ThError):
    """The proxy never wrote credentials into its log artifact."""

    def __init__(self, path: Path, waited: float):
        self.path = Path(path)
        self.waited = waited
        super().__init__(
            f"Timed out waiting for AWS credentials after {waited:g}s "
            f"(proxy left running, see {self.path})"
        )


class ArtifactMissing(ThError):
    """The log artifact vanished after readiness was reported."""

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(f"Credential file {self.path} disappeared before export")


class ExportParseError(ThError):
    """An export line could not be split into a key and value."""

    def __init__(self, line: str):
        self.line = line
        super().__init__(f"Malformed export line: {line!r}")


class ProfileIOFailure(ThError):
    """The shell profile could not be read or written."""

    def __init__(self, path: Path, reason: str):
        self.path = Path(path)
        super().__init__(f"Could not update shell profile {self.path}: {reason}")


class ReapPartialFailure(ThError):
    """One or more logout cleanup steps failed.

    Never raised by the reaper itself; it describes the failures recorded
    in a ``ReapReport`` so callers can render them.
    """

    def __init__(self, failures: Sequence[str]):
        self.failures = list(failures)
        super().__init__("Cleanup incomplete: " + "; ".join(self.failures))


class AuthFailure(ThError):
    """Teleport authentication did not complete."""
    pass


class MissingTarget(ThError):
    """No AWS app was named for a proxy."""

    def __init__(self):
        super().__init__("No AWS app given. Run 'tsh apps login <app>' first.")
