"""Utility functions for multipass-run."""

import fcntl
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any

from multipass_run.constants import DEFAULT_NAME_COLUMN_WIDTH


def generate_instance_name() -> str:
    """Generate a fallback instance name of the form ``instance-<unix time>``.

    Returns
    -------
    str
        Instance name accepted by the launch name validator
    """
    return f"instance-{int(time.time())}"


def log_and_print_error(message: str, *args: Any) -> None:
    """Log error message and print to stderr.

    Parameters
    ----------
    message : str
        Error message with optional format placeholders
    *args : Any
        Format arguments for message
    """
    logging.error(message, *args)
    formatted_msg = message % args if args else message
    print(f"Error: {formatted_msg}", file=sys.stderr)


def truncate_name(name: str, max_width: int = DEFAULT_NAME_COLUMN_WIDTH) -> str:
    """Truncate name to fit in column width.

    Parameters
    ----------
    name : str
        Name to truncate
    max_width : int
        Maximum width for name (default: DEFAULT_NAME_COLUMN_WIDTH)

    Returns
    -------
    str
        Truncated name with ellipsis if exceeds max_width, otherwise original name
    """
    if len(name) > max_width:
        return name[: max_width - 3] + "..."

    return name


def read_text_or_empty(path: Path) -> str:
    """Return the file's text, or an empty string when it does not exist.

    Undecodable bytes are kept as surrogates so that ``atomic_file_write``
    writes them back unchanged.
    """
    try:
        return path.read_text(encoding="utf-8", errors="surrogateescape")
    except FileNotFoundError:
        return ""


def atomic_file_write(path: Path, content: str, mode: int = 0o600) -> None:
    """Write file atomically using temp file and rename with file locking.

    Uses exclusive file locking to prevent concurrent writers from
    interleaving. Writes to a temporary file created with ``mode`` and renames
    it over the target, so the target carries ``mode`` afterwards.

    Parameters
    ----------
    path : Path
        Target file path
    content : str
        File content to write
    mode : int
        Permission bits of the written file (default: 0o600)

    Raises
    ------
    OSError
        Propagated from the write after the temporary file is removed
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.tmp")
    lock_path = path.with_name(f".{path.name}.lock")

    try:
        with open(lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
                with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape") as f:
                    f.write(content)
                os.chmod(temp_path, mode)
                temp_path.replace(path)
            except OSError:
                if temp_path.exists():
                    temp_path.unlink()
                raise
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
    finally:
        try:
            lock_path.unlink()
        except OSError:
            pass
