"""
Module: reporting
Purpose: Logging and report generation utilities.
"""

import json
import os
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List

from .models.moveplan import MovePlan
from .models.result import ExecutionResult
from .utils import ensure_directory, human_readable_size as humanize_bytes


ARTIFACTS_DIR = "artifacts"
LOG_FILE_NAME = os.path.join(ARTIFACTS_DIR, "consld8.log")
LOG_FILE_ENV = "CONSLD8_LOG_FILE"
SCHEMA_VERSION = "1.0"


def artifact_path(filename: str) -> str:
    return os.path.abspath(os.path.join(ARTIFACTS_DIR, filename))


def log_file_path() -> str:
    """Log destination: $CONSLD8_LOG_FILE when set, else artifacts/consld8.log."""
    return os.path.abspath(os.getenv(LOG_FILE_ENV) or LOG_FILE_NAME)


def ensure_log_initialized() -> str:
    """Ensure the consld8 log file exists and return its absolute path."""
    path = log_file_path()
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    with open(path, "a", encoding="utf-8"):
        pass
    return path


def write_log(entries: List[str], outfile: str | None = None):
    """
    Append entries to logfile.
    """
    target = outfile or log_file_path()
    directory = os.path.dirname(os.path.abspath(target)) or "."
    os.makedirs(directory, exist_ok=True)
    timestamp = datetime.now(timezone.utc).isoformat()
    with open(target, "a", encoding="utf-8") as handle:
        for entry in entries:
            normalized = entry if entry.startswith("[") else f"[INFO] {entry}"
            handle.write(f"[{timestamp}] {normalized}\n")


class EnhancedJSONEncoder(json.JSONEncoder):
    def default(self, o: Any) -> Any:
        if is_dataclass(o):
            return asdict(o)
        if isinstance(o, Enum):
            return o.value
        if isinstance(o, (set, frozenset)):
            return sorted(o)
        return super().default(o)


def write_json_report(payload: Any, outfile: str) -> str:
    """
    Save a JSON document atomically; readers never see a half-written file.
    """
    path = os.path.abspath(outfile)
    ensure_directory(os.path.dirname(path))
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, cls=EnhancedJSONEncoder)
    os.replace(tmp_path, path)
    return path


def read_json_report(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def conflict_entries(plan: MovePlan) -> list[dict[str, Any]]:
    return [
        {
            "relative_path": conflict.relative_path,
            "disks": conflict.disks,
            "sizes": [entry.size for entry in conflict.entries],
            "excluded": conflict.relative_path in plan.excluded,
        }
        for conflict in plan.conflicts
    ]


def plan_summary(plan: MovePlan) -> dict[str, Any]:
    """
    Structured plan overview for terminals, pipes and session reports.
    """
    per_disk: dict[str, int] = {}
    for action in plan.actions:
        per_disk[action.source_disk] = per_disk.get(action.source_disk, 0) + 1
    return {
        "schema_version": SCHEMA_VERSION,
        "share": plan.share,
        "subfolder": plan.subfolder,
        "destination": plan.destination_disk,
        "operations": len(plan.actions),
        "operations_per_disk": per_disk,
        "required_space": plan.required_space,
        "required_space_human": humanize_bytes(plan.required_space),
        "destination_free": plan.destination_free,
        "destination_free_human": humanize_bytes(plan.destination_free),
        "safety_margin": plan.safety_margin,
        "conflicts": conflict_entries(plan),
        "unresolved_conflicts": len(plan.unresolved_conflicts),
    }


def result_summary(result: ExecutionResult) -> dict[str, Any]:
    """
    Structured execution overview; counts plus one entry per operation.
    """
    return {
        "schema_version": SCHEMA_VERSION,
        "mode": result.mode.value,
        "moved": result.moved,
        "skipped": result.skipped,
        "failed": result.failed,
        "bytes_moved": result.bytes_moved,
        "bytes_moved_human": humanize_bytes(result.bytes_moved),
        "removed_dirs": list(result.removed_dirs),
        "cancelled": result.cancelled,
        "fatal_error": result.fatal_error,
        "operations": [
            {
                "relative_path": op.action.relative_path,
                "source_disk": op.action.source_disk,
                "destination_disk": op.action.destination_disk,
                "size": op.action.size,
                "outcome": op.outcome.value,
                "reason": op.reason,
                "message": op.message,
            }
            for op in result.operations
        ],
    }


def log_result(result: ExecutionResult, plan: MovePlan) -> None:
    label = "DRY RUN" if result.mode.value == "dry_run" else "FORCE"
    entries = [
        f"[INFO] {label} finished for {plan.share}/{plan.subfolder} -> {plan.destination_disk}: "
        f"moved={result.moved} skipped={result.skipped} failed={result.failed} "
        f"bytes={humanize_bytes(result.bytes_moved)}"
    ]
    for op in result.operations:
        if op.outcome.value != "moved":
            entries.append(
                f"[WARNING] {op.outcome.value.upper()} {op.action.src}: {op.reason} {op.message or ''}".rstrip()
            )
    if result.fatal_error:
        entries.append(f"[ERROR] Run aborted: {result.fatal_error}")
    if result.cancelled:
        entries.append("[WARNING] Run cancelled before completion")
    write_log(entries)
