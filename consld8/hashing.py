"""Hashing helpers for copy verification."""

import hashlib
import os

from .exceptions import HashingError
from .utils import log_error


def compute_sha256(path: str) -> str:
    """
    Compute SHA256 of a file.

    Args:
        path: Path to the file.

    Returns:
        Hexadecimal SHA256 digest.

    Raises:
        HashingError: If hashing fails.
    """
    try:
        normalized = os.path.abspath(path)
        sha = hashlib.sha256()
        with open(normalized, "rb") as handle:
            for chunk in iter(lambda: handle.read(1024 * 1024), b""):
                sha.update(chunk)
        return sha.hexdigest()
    except OSError as exc:
        log_error(f"Failed to compute SHA256 for {path}: {exc}")
        raise HashingError(f"Failed to compute SHA256 for {path}") from exc
