"""
Module: executor
Purpose: Apply move plans in dry-run or force mode with per-file safety checks.
"""

import os
import shutil
import threading
from typing import Callable, Iterable, List, Optional, Set

from . import reporting
from .exceptions import (
    ConfigError,
    ConflictDetectedError,
    FatalIOError,
    HashingError,
    MoveFailedError,
    ScanError,
)
from .hashing import compute_sha256
from .models.actions import MoveAction
from .models.moveplan import MovePlan
from .models.result import ExecutionMode, ExecutionResult, OperationResult, Outcome
from .topology import available_space
from .utils import (
    REASON_IO_ERROR,
    REASON_PERMISSION_DENIED,
    classify_os_error,
    existing_parent,
    human_readable_size,
    log_error,
    log_info,
    log_warning,
    path_violation_message,
)

VERIFY_MODES = ("size", "checksum")
PARTIAL_SUFFIX = ".consld8-partial"

REASON_SIZE_CHANGED = "size_changed"
REASON_DESTINATION_EXISTS = "destination_exists"
REASON_NO_DISK_SPACE = "no_disk_space"
REASON_VERIFICATION_FAILED = "verification_failed"
REASON_UNSAFE_PATH = "unsafe_path"
REASON_CANCELLED = "cancelled"
REASON_ABORTED = "aborted"

ProgressCallback = Callable[[OperationResult], None]


def execute(
    plan: MovePlan,
    mode: ExecutionMode | str,
    *,
    cancel_event: Optional[threading.Event] = None,
    verify: str = "size",
    on_progress: Optional[ProgressCallback] = None,
) -> ExecutionResult:
    """
    Run a MovePlan sequentially.

    Dry run performs every read-side check of force mode and classifies each
    operation the same way, without touching the filesystem.

    Args:
        plan: Plan produced by planner.build_plan.
        mode: ExecutionMode.DRY_RUN or ExecutionMode.FORCE.
        cancel_event: Set to stop before the next operation.
        verify: "size" or "checksum" verification for cross-device copies.
        on_progress: Called with each OperationResult as it is recorded.

    Returns:
        ExecutionResult with one OperationResult per planned action.

    Raises:
        ConflictDetectedError: Plan still carries unresolved conflicts.
        ConfigError: Unknown verify mode.
    """
    mode = ExecutionMode(mode)
    if verify not in VERIFY_MODES:
        raise ConfigError(f"verify must be one of {', '.join(VERIFY_MODES)}")
    unresolved = plan.unresolved_conflicts
    if unresolved:
        paths = [conflict.relative_path for conflict in unresolved]
        log_error(f"Refusing to execute {plan.share}/{plan.subfolder}: {len(paths)} unresolved conflicts")
        raise ConflictDetectedError(
            f"{len(paths)} conflicting entries must be resolved or excluded before execution",
            paths=paths,
        )

    dry_run = mode == ExecutionMode.DRY_RUN
    result = ExecutionResult(mode=mode)
    label = "DRY RUN" if dry_run else "FORCE"
    log_info(
        f"{label} started for {plan.share}/{plan.subfolder} -> {plan.destination_disk} "
        f"({len(plan.actions)} operations, {human_readable_size(plan.required_space)})"
    )

    try:
        _check_destination(plan)
        budget = available_space(plan.destination_mount) - plan.safety_margin
    except (FatalIOError, ScanError) as exc:
        result.fatal_error = str(exc)
        _skip_remaining(result, plan.actions, REASON_ABORTED)
        reporting.log_result(result, plan)
        return result

    for index, action in enumerate(plan.actions):
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            _skip_remaining(result, plan.actions[index:], REASON_CANCELLED)
            break
        try:
            _check_destination(plan)
        except FatalIOError as exc:
            result.fatal_error = str(exc)
            _skip_remaining(result, plan.actions[index:], REASON_ABORTED)
            break
        operation = _run_action(action, plan, dry_run=dry_run, budget=budget, verify=verify)
        if operation.outcome == Outcome.MOVED:
            budget -= action.size
        result.operations.append(operation)
        if on_progress is not None:
            on_progress(operation)

    moved_sources = {op.action.src for op in result.operations if op.outcome == Outcome.MOVED}
    result.removed_dirs = prune_empty_dirs(plan.source_roots.values(), moved_sources, dry_run=dry_run)
    reporting.log_result(result, plan)
    return result


def _check_destination(plan: MovePlan) -> None:
    if not os.path.isdir(plan.destination_mount):
        log_error(f"Destination {plan.destination_disk} is no longer mounted at {plan.destination_mount}")
        raise FatalIOError(f"Destination disk {plan.destination_disk} is unavailable ({plan.destination_mount})")


def _skip_remaining(result: ExecutionResult, actions: Iterable[MoveAction], reason: str) -> None:
    for action in actions:
        result.operations.append(OperationResult(action=action, outcome=Outcome.SKIPPED, reason=reason))


def _run_action(
    action: MoveAction,
    plan: MovePlan,
    *,
    dry_run: bool,
    budget: int,
    verify: str,
) -> OperationResult:
    """Check, then (in force mode) move one file. Failures are recorded, not raised."""
    try:
        _verify_source(action)
        if os.path.lexists(action.dst):
            log_warning(f"Destination already holds {action.dst}; leaving {action.src} in place")
            return OperationResult(
                action=action,
                outcome=Outcome.SKIPPED,
                reason=REASON_DESTINATION_EXISTS,
                message=f"{action.dst} already exists",
            )
        violation = path_violation_message(action.dst, plan.destination_mount, label="Destination file")
        if violation:
            raise MoveFailedError(violation, REASON_UNSAFE_PATH)
        if action.size > budget:
            raise MoveFailedError(
                f"{human_readable_size(max(budget, 0))} left on {plan.destination_disk}, "
                f"{human_readable_size(action.size)} needed",
                REASON_NO_DISK_SPACE,
            )
        _prepare_parent(os.path.dirname(action.dst), dry_run=dry_run)
        if not dry_run:
            _move_file(action, verify)
            log_info(f"Moved {action.src} -> {action.dst}")
    except MoveFailedError as exc:
        log_warning(f"Move failed for {action.src}: {exc} ({exc.reason})")
        return OperationResult(action=action, outcome=Outcome.FAILED, reason=exc.reason, message=str(exc))
    return OperationResult(action=action, outcome=Outcome.MOVED)


def _verify_source(action: MoveAction) -> None:
    try:
        stat = os.stat(action.src)
    except OSError as exc:
        raise MoveFailedError(f"Source unavailable: {action.src}", classify_os_error(exc)) from exc
    if stat.st_size != action.size:
        raise MoveFailedError(
            f"Size changed since planning ({action.size} -> {stat.st_size})",
            REASON_SIZE_CHANGED,
        )


def _prepare_parent(parent: str, *, dry_run: bool) -> None:
    if dry_run:
        anchor = existing_parent(parent)
        if anchor is None or not os.path.isdir(anchor):
            raise MoveFailedError(f"Cannot create {parent}: {anchor} is not a directory", REASON_IO_ERROR)
        if not os.access(anchor, os.W_OK | os.X_OK):
            raise MoveFailedError(f"Cannot create {parent}: {anchor} is not writable", REASON_PERMISSION_DENIED)
        return
    try:
        os.makedirs(parent, exist_ok=True)
    except OSError as exc:
        raise MoveFailedError(f"Cannot create {parent}: {exc}", classify_os_error(exc)) from exc


def same_device(src: str, dst_dir: str) -> bool:
    """True when src and the destination directory share a filesystem."""
    anchor = existing_parent(dst_dir)
    if anchor is None:
        return False
    return os.stat(src).st_dev == os.stat(anchor).st_dev


def partial_path(dst: str) -> str:
    return os.path.join(os.path.dirname(dst), f".{os.path.basename(dst)}{PARTIAL_SUFFIX}")


def _move_file(action: MoveAction, verify: str) -> None:
    """
    Rename within a device; otherwise copy, verify, rename into place and
    delete the source. Any failure or interrupt leaves exactly one copy (the
    source) and removes the partial copy before propagating.
    """
    dst_dir = os.path.dirname(action.dst)
    try:
        rename_ok = same_device(action.src, dst_dir)
    except OSError as exc:
        raise MoveFailedError(f"Cannot stat {action.src}: {exc}", classify_os_error(exc)) from exc
    if rename_ok:
        try:
            os.replace(action.src, action.dst)
        except OSError as exc:
            raise MoveFailedError(f"Rename failed: {exc}", classify_os_error(exc)) from exc
        return

    partial = partial_path(action.dst)
    placed = False
    try:
        shutil.copy2(action.src, partial)
        _verify_copy(action, partial, verify)
        os.replace(partial, action.dst)
        placed = True
        os.remove(action.src)
    except MoveFailedError:
        _roll_back(action, partial, placed)
        raise
    except OSError as exc:
        _roll_back(action, partial, placed)
        step = "Cannot remove source after copy" if placed else "Copy failed"
        raise MoveFailedError(f"{step}: {exc}", classify_os_error(exc)) from exc
    except BaseException:
        log_warning(f"Interrupted while moving {action.src}; rolling back")
        _roll_back(action, partial, placed)
        raise


def _roll_back(action: MoveAction, partial: str, placed: bool) -> None:
    _discard(partial)
    if placed and os.path.lexists(action.src):
        # keep exactly one copy: the untouched source
        _discard(action.dst)


def _verify_copy(action: MoveAction, partial: str, verify: str) -> None:
    copied = os.path.getsize(partial)
    if copied != action.size:
        raise MoveFailedError(
            f"Copy size mismatch ({copied} != {action.size})",
            REASON_VERIFICATION_FAILED,
        )
    if verify != "checksum":
        return
    try:
        matches = compute_sha256(action.src) == compute_sha256(partial)
    except HashingError as exc:
        raise MoveFailedError(str(exc), REASON_IO_ERROR) from exc
    if not matches:
        raise MoveFailedError("Checksum mismatch after copy", REASON_VERIFICATION_FAILED)


def _discard(path: str) -> None:
    try:
        if os.path.lexists(path):
            os.remove(path)
    except OSError as exc:
        log_error(f"Failed to remove partial copy {path}: {exc}")


def prune_empty_dirs(roots: Iterable[str], moved_sources: Set[str], *, dry_run: bool) -> List[str]:
    """
    Remove directories emptied by the moves: those that held at least one
    moved file, and their ancestors up to (and including) each root once
    nothing else is left in them. Directories that were already empty, or
    still hold unmoved entries, stay. Dry run only reports them.

    Args:
        roots: Source subfolder roots.
        moved_sources: Absolute paths of files moved (or that would be).
        dry_run: Report without removing.

    Returns:
        Directories removed (or that would be), deepest first.
    """
    removed: List[str] = []
    if not moved_sources:
        return removed
    for root in roots:
        root = os.path.abspath(root)
        candidates = _emptied_candidates(root, moved_sources)
        emptied: Set[str] = set()
        for current in sorted(candidates, key=lambda path: (-path.count(os.sep), path)):
            try:
                names = os.listdir(current)
            except OSError as exc:
                log_warning(f"Directory left in place: {current} ({exc})")
                continue
            leftovers = [
                name
                for name in names
                if os.path.join(current, name) not in moved_sources and os.path.join(current, name) not in emptied
            ]
            if leftovers:
                continue
            if not dry_run:
                try:
                    os.rmdir(current)
                except OSError as exc:
                    log_warning(f"Directory left in place: {current} ({exc})")
                    continue
            emptied.add(current)
            removed.append(current)
    if removed:
        verb = "Would remove" if dry_run else "Removed"
        log_info(f"{verb} {len(removed)} emptied source directories")
    return removed


def _emptied_candidates(root: str, moved_sources: Set[str]) -> Set[str]:
    """Parents of moved files below root, with every ancestor up to root."""
    candidates: Set[str] = set()
    prefix = root + os.sep
    for source in moved_sources:
        parent = os.path.dirname(source)
        while parent == root or parent.startswith(prefix):
            if parent in candidates:
                break
            candidates.add(parent)
            if parent == root:
                break
            parent = os.path.dirname(parent)
    return candidates
