"""Credential containers and the proxy output contract.

``tsh proxy aws`` prints its credentials as shell export statements, for
example::

    To avoid configuring AWS CLI manually, set the following variables:

      export AWS_ACCESS_KEY_ID=...
      export AWS_SECRET_ACCESS_KEY=...
      export AWS_CA_BUNDLE=/Users/me/.tsh/keys/...
      export HTTPS_PROXY=http://127.0.0.1:51234

The helper depends on exactly two things in that stream: the readiness
marker below and the ``export KEY=VALUE`` line grammar. If either changes
upstream, the watcher times out or the parsed set comes back empty.
"""

import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, MutableMapping, Optional, Tuple, Union


READINESS_MARKER = "  export AWS_ACCESS_KEY_ID="

EXPORT_LINE = re.compile(r"^\s*export ")

ARTIFACT_PREFIX = "tsh_proxy_"


def artifact_path(target: str, temp_dir: Union[str, Path] = "/tmp") -> Path:
    """Get the log artifact path for a proxy target."""
    return Path(temp_dir) / f"{ARTIFACT_PREFIX}{target}.log"


def is_export_line(line: str) -> bool:
    return EXPORT_LINE.match(line) is not None


def parse_export_line(line: str) -> Optional[Tuple[str, str]]:
    """Split an export statement into key and value.

    Args:
        line: A line such as ``  export AWS_REGION="eu-west-1"``

    Returns:
        (key, value) with surrounding quotes removed, or None if the line is
        not a well-formed export
    """
    stripped = line.strip()
    if not stripped.startswith("export "):
        return None

    body = stripped[len("export "):].strip()
    key, sep, value = body.partition("=")
    key = key.strip()
    if not sep or not key or any(c.isspace() for c in key):
        return None

    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return key, value


class CredentialSet:
    """Ordered (key, value) pairs parsed from a credential artifact.

    Order matters: when the artifact is sourced by a shell, a later export of
    the same key wins, and ``as_dict`` follows the same rule.
    """

    def __init__(self, pairs: Optional[Iterable[Tuple[str, str]]] = None):
        self._pairs: List[Tuple[str, str]] = list(pairs or [])

    def add(self, key: str, value: str) -> None:
        self._pairs.append((key, value))

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other) -> bool:
        if not isinstance(other, CredentialSet):
            return NotImplemented
        return self._pairs == other._pairs

    def __repr__(self) -> str:
        # Values are secrets, keep them out of reprs and logs
        return f"CredentialSet(keys={self.keys()!r})"

    def keys(self) -> List[str]:
        return [key for key, _ in self._pairs]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.as_dict().get(key, default)

    def as_dict(self) -> Dict[str, str]:
        """Collapse to a mapping, later keys shadowing earlier ones."""
        return dict(self._pairs)

    def as_env(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Build an explicit environment for a child process.

        Args:
            base: Environment to start from (nothing inherited if omitted)
        """
        env = dict(base or {})
        env.update(self.as_dict())
        return env

    def apply_to(self, environ: MutableMapping[str, str]) -> None:
        """Set every pair on ``environ`` in order."""
        for key, value in self._pairs:
            environ[key] = value

    def export_lines(self) -> List[str]:
        return [f"export {key}={value}" for key, value in self._pairs]
