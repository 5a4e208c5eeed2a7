"""
Module: scanner
Purpose: Walk a share subfolder on one disk and collect its files.
"""

import os
from typing import List

from .exceptions import ScanError
from .models.disk import Disk
from .models.fileentry import FileEntry
from .utils import log_error, log_warning


def subfolder_path(disk: Disk, share: str, subfolder: str) -> str:
    return os.path.join(disk.share_root(share), subfolder)


def scan_subfolder(disk: Disk, share: str, subfolder: str) -> List[FileEntry]:
    """
    Recursively scan <disk>/<share>/<subfolder> and return FileEntry objects.

    Args:
        disk: Disk to scan.
        share: Share name.
        subfolder: Path relative to the share root.

    Returns:
        FileEntry list; empty when the subfolder is absent on this disk.

    Raises:
        ScanError: If the subfolder path exists but is not a directory.
    """
    results, _ = scan_subfolder_with_stats(disk, share, subfolder)
    return results


def scan_subfolder_with_stats(disk: Disk, share: str, subfolder: str) -> tuple[List[FileEntry], int]:
    """
    Same as scan_subfolder, also returning the number of skipped symlinks.
    """
    root = os.path.abspath(subfolder_path(disk, share, subfolder))
    if not os.path.lexists(root):
        return [], 0
    if os.path.islink(root):
        log_warning(f"Skipping symlinked subfolder: {root}")
        return [], 1
    if not os.path.isdir(root):
        log_error(f"Path is not a directory: {root}")
        raise ScanError(f"Path is not a directory: {root}")

    results: List[FileEntry] = []
    skipped_symlinks = 0

    def _on_walk_error(exc: OSError) -> None:
        log_error(f"Failed to list {exc.filename}: {exc}")

    for current, dirs, files in os.walk(root, topdown=True, followlinks=False, onerror=_on_walk_error):
        safe_dirs: List[str] = []
        for dirname in dirs:
            dir_path = os.path.join(current, dirname)
            if os.path.islink(dir_path):
                skipped_symlinks += 1
                log_warning(f"Skipping symlinked directory during scan: {dir_path}")
                continue
            safe_dirs.append(dirname)
        dirs[:] = sorted(safe_dirs)
        for name in sorted(files):
            file_path = os.path.join(current, name)
            if os.path.islink(file_path):
                skipped_symlinks += 1
                log_warning(f"Skipping symlinked file during scan: {file_path}")
                continue
            try:
                stat = os.stat(file_path)
            except OSError as exc:
                log_error(f"Failed to read file info for {file_path}: {exc}")
                continue
            results.append(
                FileEntry(
                    relative_path=os.path.relpath(file_path, root),
                    disk=disk.name,
                    path=file_path,
                    size=stat.st_size,
                    mtime=stat.st_mtime,
                )
            )

    return results, skipped_symlinks
