"""
Module: topology
Purpose: Enumerate array disks, user shares and where each share lives.
"""

import os
import re
import shutil
from typing import Dict, Iterable, List, Optional, Sequence

from .exceptions import ScanError
from .models.disk import Disk
from .models.share import FolderPresence, Share
from .utils import log_error, log_warning, natural_key

DEFAULT_MNT_ROOT = "/mnt"
DEFAULT_USER_ROOT = "/mnt/user"
RESERVED_PREFIXES = ("@", ".")
CACHE_DISK = "cache"
_DISK_NAME = re.compile(r"^disk[1-9][0-9]?$")


def is_array_disk_name(name: str) -> bool:
    return name == CACHE_DISK or bool(_DISK_NAME.match(name))


def available_space(path: str) -> int:
    """
    Space an unprivileged writer can use on the filesystem holding path.

    shutil.disk_usage().free is f_bavail * f_frsize, so root reservations
    are already excluded.
    """
    try:
        return shutil.disk_usage(path).free
    except OSError as exc:
        log_error(f"Failed to read free space for {path}: {exc}")
        raise ScanError(f"Unable to read free space for {path}") from exc


def _disk_order(name: str) -> tuple:
    # cache is listed after every array disk
    return (name == CACHE_DISK, natural_key(name))


def list_disks(mnt_root: str = DEFAULT_MNT_ROOT) -> List[Disk]:
    """
    Enumerate diskN and cache mounts under mnt_root with fresh free space.

    Args:
        mnt_root: Directory holding the per-disk mounts.

    Returns:
        Disks ordered disk1, disk2, ..., disk10, cache.

    Raises:
        ScanError: If mnt_root cannot be listed.
    """
    root = os.path.abspath(mnt_root)
    try:
        names = os.listdir(root)
    except OSError as exc:
        log_error(f"Cannot list disk mount root {root}: {exc}")
        raise ScanError(f"Cannot list disk mount root {root}") from exc

    disks: List[Disk] = []
    for name in sorted(names, key=_disk_order):
        mount_path = os.path.join(root, name)
        if not is_array_disk_name(name) or not os.path.isdir(mount_path):
            continue
        if os.path.islink(mount_path):
            log_warning(f"Skipping symlinked disk mount: {mount_path}")
            continue
        try:
            free = available_space(mount_path)
        except ScanError:
            log_warning(f"Skipping disk without readable free space: {mount_path}")
            continue
        disks.append(Disk(name=name, mount_path=mount_path, free_bytes=free))
    return disks


def refresh_disk(disk: Disk) -> Disk:
    """Return a copy of disk with free space re-read from the filesystem."""
    return Disk(name=disk.name, mount_path=disk.mount_path, free_bytes=available_space(disk.mount_path))


def find_disk(disks: Iterable[Disk], name: str) -> Optional[Disk]:
    for disk in disks:
        if disk.name == name:
            return disk
    return None


def list_shares(
    user_root: str = DEFAULT_USER_ROOT,
    reserved_prefixes: Sequence[str] = RESERVED_PREFIXES,
) -> List[str]:
    """
    Top-level share names under the union mount, skipping reserved names.

    Raises:
        ScanError: If user_root cannot be listed.
    """
    root = os.path.abspath(user_root)
    try:
        names = os.listdir(root)
    except OSError as exc:
        log_error(f"Cannot list user shares under {root}: {exc}")
        raise ScanError(f"Cannot list user shares under {root}") from exc
    shares = [
        name
        for name in names
        if not name.startswith(tuple(reserved_prefixes)) and os.path.isdir(os.path.join(root, name))
    ]
    return sorted(shares)


def list_share_roots(share: str, disks: Iterable[Disk]) -> Dict[str, Optional[str]]:
    """
    Map every disk to the share's root on it, or None when the disk
    does not carry the share.
    """
    roots: Dict[str, Optional[str]] = {}
    for disk in disks:
        root = disk.share_root(share)
        roots[disk.name] = root if os.path.isdir(root) and not os.path.islink(root) else None
    return roots


def load_share(name: str, disks: Iterable[Disk]) -> Share:
    return Share(name=name, roots=list_share_roots(name, disks))


def list_share_folders(share: str, disks: Iterable[Disk]) -> List[FolderPresence]:
    """
    Top-level folders of a share across all disks, with the disks
    currently holding each one.
    """
    presence: Dict[str, List[str]] = {}
    for disk_name, root in list_share_roots(share, disks).items():
        if root is None:
            continue
        try:
            entries = os.listdir(root)
        except OSError as exc:
            log_warning(f"Cannot list {root}: {exc}")
            continue
        for entry in entries:
            if entry.startswith(RESERVED_PREFIXES):
                continue
            path = os.path.join(root, entry)
            if os.path.isdir(path) and not os.path.islink(path):
                presence.setdefault(entry, []).append(disk_name)
    return [
        FolderPresence(name=name, disks=sorted(held_on, key=_disk_order))
        for name, held_on in sorted(presence.items(), key=lambda item: natural_key(item[0]))
    ]


def find_split_folders(share: str, disks: Iterable[Disk]) -> List[FolderPresence]:
    return [folder for folder in list_share_folders(share, disks) if folder.is_split]
