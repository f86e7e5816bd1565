"""
Atomic file writes shared by the state store, escalation queue and reports.
"""

import errno
import os
import tempfile
from pathlib import Path

from .exceptions import WorkflowError


def atomic_write_text(path: Path, text: str) -> Path:
    """
    Write text so readers only ever observe the old or the new content.

    The data goes to a uniquely named temp file in the target directory,
    is flushed and fsynced, then moved over the target with os.replace.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except PermissionError as e:
        _discard(tmp)
        raise WorkflowError(
            f"Permission denied writing {path}",
            context={"hint": f"Check write permissions on {path.parent}"},
        ) from e
    except OSError as e:
        _discard(tmp)
        if e.errno == errno.ENOSPC:
            raise WorkflowError(
                f"Disk full while writing {path}",
                context={"hint": "Free up disk space and resume the workflow"},
            ) from e
        raise
    return path


def _discard(tmp: str) -> None:
    try:
        os.unlink(tmp)
    except FileNotFoundError:
        pass
