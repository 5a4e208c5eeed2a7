"""
Module: utils
Purpose: Shared helper utilities for consld8.
"""

import errno
import os
import re
import urllib.parse
from typing import Tuple

from .exceptions import Consld8Error

COLOR_RESET = "\033[0m"
BOLD = "\033[1m"

REASON_NOT_FOUND = "not_found"
REASON_PERMISSION_DENIED = "permission_denied"
REASON_DISK_FULL = "disk_full"
REASON_IO_ERROR = "io_error"

_NOT_FOUND_ERRNOS = {errno.ENOENT, errno.ENOTDIR}
_PERMISSION_ERRNOS = {errno.EACCES, errno.EPERM, errno.EROFS}
_DISK_FULL_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}
_NATURAL_CHUNK = re.compile(r"(\d+)")


def color_256(code: int) -> str:
    return f"\033[38;5;{code}m"


def human_readable_size(bytes: int) -> str:
    """
    Convert byte size into human-readable string.

    Args:
        bytes: Number of bytes.

    Returns:
        Human-readable string representation.

    Raises:
        None
    """
    thresholds: Tuple[Tuple[str, int], ...] = (
        ("TB", 1024**4),
        ("GB", 1024**3),
        ("MB", 1024**2),
        ("KB", 1024),
    )
    for suffix, size in thresholds:
        if bytes >= size:
            value = bytes / size
            return f"{value:.2f} {suffix}"
    return f"{bytes} B"


def natural_key(name: str) -> list:
    """Sort key placing disk2 before disk10."""
    return [int(chunk) if chunk.isdigit() else chunk.lower() for chunk in _NATURAL_CHUNK.split(name)]


def classify_os_error(exc: OSError) -> str:
    """
    Map an OSError onto one of the reason codes reported per operation.
    """
    if isinstance(exc, FileNotFoundError) or exc.errno in _NOT_FOUND_ERRNOS:
        return REASON_NOT_FOUND
    if isinstance(exc, PermissionError) or exc.errno in _PERMISSION_ERRNOS:
        return REASON_PERMISSION_DENIED
    if exc.errno in _DISK_FULL_ERRNOS:
        return REASON_DISK_FULL
    return REASON_IO_ERROR


def ensure_directory(path: str):
    """
    Create directory if it does not exist.

    Args:
        path: Directory path to create.

    Returns:
        None

    Raises:
        Consld8Error: If the directory cannot be created.
    """
    normalized = os.path.abspath(path)
    try:
        os.makedirs(normalized, exist_ok=True)
    except OSError as exc:
        log_error(f"Failed to create directory: {normalized} ({exc})")
        raise Consld8Error(f"Unable to create directory: {normalized}") from exc


def existing_parent(path: str) -> str | None:
    """Return the nearest ancestor of path that exists, or None."""
    current = os.path.abspath(path)
    while True:
        if os.path.exists(current):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def path_violation_message(target: str, root: str, *, label: str) -> str | None:
    """
    Return a descriptive error message when `target` is outside `root`
    or when a symlink exists along the path. Returns None if the path is safe.
    """
    normalized_root = os.path.abspath(root)
    normalized_target = os.path.abspath(target)
    try:
        relative = os.path.relpath(normalized_target, normalized_root)
    except ValueError:
        return f"{label} '{normalized_target}' lives on a different device than '{normalized_root}'."
    if relative == os.pardir or relative.startswith(os.pardir + os.sep):
        return f"{label} '{normalized_target}' escapes '{normalized_root}'. Remove '..' segments."
    parts = [part for part in relative.split(os.sep) if part not in ("", ".")]
    current = normalized_root
    for part in parts:
        current = os.path.join(current, part)
        if os.path.islink(current):
            return (
                f"{label} '{current}' is a symlink under '{normalized_root}'. "
                "Symlinked folders are never consolidated."
            )
    return None


def log_error(message: str):
    """
    Log an error message.

    Args:
        message: Error message to log.

    Returns:
        None

    Raises:
        None
    """
    from . import reporting  # Local import to avoid circular dependency rules

    reporting.write_log([f"[ERROR] {message}"])


def log_warning(message: str):
    """
    Log a warning message.
    """
    from . import reporting  # Local import to avoid circular dependency rules

    reporting.write_log([f"[WARNING] {message}"])


def log_info(message: str):
    from . import reporting  # Local import to avoid circular dependency rules

    reporting.write_log([f"[INFO] {message}"])


def osc8_link(path: str, label: str | None = None) -> str:
    """
    Build an OSC-8 hyperlink escape for supported terminals.
    """
    abs_path = os.path.abspath(path)
    uri = "file://" + urllib.parse.quote(abs_path)
    display = label if label is not None else abs_path
    # OSC 8: ESC ] 8 ; ; URI BEL  label  ESC ] 8 ; ; BEL
    return f"\033]8;;{uri}\a{display}\033]8;;\a"
