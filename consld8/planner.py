"""
Module: planner
Purpose: Build consolidation move plans with conflict and space checks.
"""

import os
import posixpath
from typing import Dict, Iterable, List, Sequence, Tuple

from .exceptions import Consld8Error, InvalidTargetError, NoDiskSpaceError, ScanError
from .models.actions import Conflict, MoveAction
from .models.disk import Disk
from .models.fileentry import FileEntry
from .models.moveplan import MovePlan
from .scanner import scan_subfolder, subfolder_path
from .topology import CACHE_DISK, find_disk, list_share_roots
from .utils import human_readable_size, log_error, log_info, log_warning


def normalize_subfolder(subfolder: str) -> str:
    """
    Validate a share-relative subfolder and return it in canonical form.

    Raises:
        InvalidTargetError: For empty paths or paths escaping the share.
    """
    candidate = (subfolder or "").strip().replace("\\", "/").strip("/")
    if not candidate:
        raise InvalidTargetError("Subfolder is required.")
    parts = candidate.split("/")
    if any(part == ".." for part in parts):
        raise InvalidTargetError(f"Subfolder '{subfolder}' must stay inside the share (no '..').")
    normalized = posixpath.normpath(candidate)
    if normalized in ("", "."):
        raise InvalidTargetError("Subfolder is required.")
    return normalized


def _resolve_destination(destination: Disk | str, disks: Sequence[Disk]) -> Disk:
    name = destination.name if isinstance(destination, Disk) else str(destination or "").strip()
    if not name:
        raise InvalidTargetError("Destination disk is required.")
    if isinstance(destination, Disk):
        return destination
    resolved = find_disk(disks, name)
    if resolved is None:
        raise InvalidTargetError(f"Destination disk '{name}' is not a known array disk.")
    return resolved


def build_plan(
    share: str,
    subfolder: str,
    destination: Disk | str,
    disks: Sequence[Disk],
    safety_margin: int = 0,
) -> MovePlan:
    """
    Compute the moves needed to consolidate share/subfolder onto destination.

    Args:
        share: Share name.
        subfolder: Path relative to the share root.
        destination: Destination disk (or its name, resolved against disks).
        disks: Current disk inventory.
        safety_margin: Bytes that must stay free on the destination.

    Returns:
        MovePlan with one action per file on another disk; same-path
        collisions between source disks are held back as conflicts.

    Raises:
        InvalidTargetError: Subfolder absent on every disk, or bad arguments.
        NoDiskSpaceError: Destination cannot hold the moves plus the margin.
    """
    if safety_margin < 0:
        raise InvalidTargetError("Safety margin cannot be negative.")
    relative = normalize_subfolder(subfolder)
    dest = _resolve_destination(destination, disks)
    try:
        return _build_plan(share, relative, dest, disks, safety_margin)
    except (InvalidTargetError, NoDiskSpaceError):
        raise
    except Exception as exc:
        log_error(f"Failed to build move plan: {exc}")
        raise Consld8Error("Failed to build move plan") from exc


def _build_plan(
    share: str,
    relative: str,
    dest: Disk,
    disks: Sequence[Disk],
    safety_margin: int,
) -> MovePlan:
    roots = list_share_roots(share, disks)
    present_on = [
        disk
        for disk in disks
        if roots.get(disk.name) is not None and os.path.isdir(subfolder_path(disk, share, relative))
    ]
    if dest.name not in roots and os.path.isdir(subfolder_path(dest, share, relative)):
        present_on.append(dest)
    if not present_on:
        log_error(f"Subfolder '{relative}' not found under share '{share}' on any disk")
        raise InvalidTargetError(f"Subfolder '{relative}' does not exist under share '{share}' on any disk.")

    try:
        by_path, source_roots = _collect_sources(share, relative, dest, present_on)
    except ScanError as exc:
        raise InvalidTargetError(str(exc)) from exc

    actions, conflicts = _create_actions(share, relative, dest, by_path, disks)
    required_space = sum(action.size for action in actions)

    if required_space + safety_margin > dest.free_bytes:
        log_error(
            f"Insufficient space on {dest.name} for {share}/{relative}: "
            f"required {required_space} + margin {safety_margin}, available {dest.free_bytes}"
        )
        raise NoDiskSpaceError(
            f"Insufficient space on {dest.name} "
            f"(required {human_readable_size(required_space)}"
            f"{' + margin ' + human_readable_size(safety_margin) if safety_margin else ''}, "
            f"available {human_readable_size(dest.free_bytes)})",
            required=required_space + safety_margin,
            available=dest.free_bytes,
        )

    for conflict in conflicts:
        log_warning(
            f"Conflict for '{conflict.relative_path}' on {', '.join(conflict.disks)}; held back from the plan"
        )
    log_info(
        f"Plan built for {share}/{relative} -> {dest.name}: {len(actions)} moves, "
        f"{len(conflicts)} conflicts, {human_readable_size(required_space)}"
    )
    return MovePlan(
        share=share,
        subfolder=relative,
        destination_disk=dest.name,
        destination_mount=dest.mount_path,
        actions=actions,
        conflicts=conflicts,
        required_space=required_space,
        destination_free=dest.free_bytes,
        safety_margin=safety_margin,
        source_roots=source_roots,
    )


def _collect_sources(
    share: str,
    relative: str,
    destination: Disk,
    present_on: Iterable[Disk],
) -> Tuple[Dict[str, List[FileEntry]], Dict[str, str]]:
    """Scan every disk except the destination, grouping entries by relative path."""
    by_path: Dict[str, List[FileEntry]] = {}
    source_roots: Dict[str, str] = {}
    for disk in present_on:
        if disk.name == destination.name:
            continue
        source_roots[disk.name] = os.path.abspath(subfolder_path(disk, share, relative))
        for entry in scan_subfolder(disk, share, relative):
            by_path.setdefault(entry.relative_path, []).append(entry)
    return by_path, source_roots


def _create_actions(
    share: str,
    relative: str,
    destination: Disk,
    by_path: Dict[str, List[FileEntry]],
    disks: Sequence[Disk],
) -> Tuple[List[MoveAction], List[Conflict]]:
    """Creates the move actions and conflicts for the plan."""
    order = {disk.name: index for index, disk in enumerate(disks)}
    dest_root = os.path.abspath(subfolder_path(destination, share, relative))
    actions: List[MoveAction] = []
    conflicts: List[Conflict] = []
    for rel_path in sorted(by_path):
        entries = by_path[rel_path]
        if len(entries) > 1:
            conflicts.append(
                Conflict(
                    relative_path=rel_path,
                    entries=sorted(entries, key=lambda e: order.get(e.disk, len(order))),
                )
            )
            continue
        entry = entries[0]
        if entry.disk == destination.name:
            continue
        actions.append(
            MoveAction(
                relative_path=rel_path,
                src=entry.path,
                dst=os.path.join(dest_root, rel_path),
                source_disk=entry.disk,
                destination_disk=destination.name,
                size=entry.size,
                mtime=entry.mtime,
            )
        )
    actions.sort(key=lambda a: (order.get(a.source_disk, len(order)), a.relative_path))
    return actions, conflicts


def exclude(plan: MovePlan, relative_paths: Iterable[str] | None = None) -> MovePlan:
    """
    Explicitly exclude conflicting entries so the plan may run.

    Args:
        plan: Plan to update in place.
        relative_paths: Conflict paths to exclude; None excludes every conflict.

    Raises:
        InvalidTargetError: When a path names no recorded conflict, or a
            single string is passed instead of a collection of paths.
    """
    if isinstance(relative_paths, str):
        raise InvalidTargetError(
            f"Pass a list of conflict paths, not a single string (got '{relative_paths}')."
        )
    known = {conflict.relative_path for conflict in plan.conflicts}
    requested = set(known if relative_paths is None else relative_paths)
    unknown = requested - known
    if unknown:
        raise InvalidTargetError(f"No conflict recorded for: {', '.join(sorted(unknown))}")
    plan.excluded.update(requested)
    if requested:
        log_info(f"Excluded {len(requested)} conflicting entries from {plan.share}/{plan.subfolder}")
    return plan


def subfolder_usage(share: str, subfolder: str, disks: Sequence[Disk]) -> Dict[str, int]:
    """Bytes of share/subfolder held on each disk that carries it."""
    relative = normalize_subfolder(subfolder)
    usage: Dict[str, int] = {}
    for disk in disks:
        if not os.path.isdir(subfolder_path(disk, share, relative)):
            continue
        usage[disk.name] = sum(entry.size for entry in scan_subfolder(disk, share, relative))
    return usage


def suggest_destination(
    share: str,
    subfolder: str,
    disks: Sequence[Disk],
    safety_margin: int = 0,
) -> Disk:
    """
    Pick the destination for automatic mode: the array disk already holding
    the most bytes of the subfolder among those with room for the rest.

    Raises:
        InvalidTargetError: Subfolder absent everywhere.
        NoDiskSpaceError: No disk can take the remaining bytes.
    """
    usage = subfolder_usage(share, subfolder, disks)
    if not usage:
        raise InvalidTargetError(f"Subfolder '{subfolder}' does not exist under share '{share}' on any disk.")
    total = sum(usage.values())
    candidates = []
    for index, disk in enumerate(disks):
        if disk.name == CACHE_DISK:
            continue
        held = usage.get(disk.name, 0)
        if total - held + safety_margin <= disk.free_bytes:
            candidates.append((-held, index, disk))
    if not candidates:
        log_error(f"No disk can hold {share}/{subfolder} ({human_readable_size(total)})")
        raise NoDiskSpaceError(
            f"No disk has room to consolidate {share}/{subfolder} ({human_readable_size(total)})",
            required=total,
            available=max((d.free_bytes for d in disks), default=0),
        )
    candidates.sort(key=lambda item: (item[0], item[1]))
    return candidates[0][2]

