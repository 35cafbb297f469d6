"""File helpers for artifacts and profiles shared with other processes."""

import fcntl
import logging
import os
import stat
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union


logger = logging.getLogger(__name__)


def atomic_write_text(path: Union[str, Path], content: str, mode: Optional[int] = None) -> None:
    """Replace a file's content so readers see either the old or new version.

    A symlinked ``path`` is followed: the link stays in place and its target
    gets the new content.

    Args:
        path: File to replace
        content: New content
        mode: Permission bits for the new file (keeps the current ones if omitted)
    """
    path = Path(os.path.realpath(path))
    if mode is None:
        try:
            mode = stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            mode = 0o600

    temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(temp_fd, "w", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


@contextmanager
def locked(path: Union[str, Path]) -> Iterator[Path]:
    """Hold an exclusive advisory lock on a sidecar file while the block runs.

    The lock lives beside ``path`` rather than on it because ``path`` itself
    gets replaced by rename during the block.
    """
    lock_path = Path(f"{os.path.realpath(path)}.th.lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        logger.debug(f"Acquired lock {lock_path}")
        yield lock_path
    finally:
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
