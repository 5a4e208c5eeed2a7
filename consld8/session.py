"""
Module: session
Purpose: Two-step consolidation session, overlap registry and background runner.
"""

import os
import threading
import uuid
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from . import executor, planner, reporting, topology
from .config import ConsolidationConfig
from .exceptions import (
    ConflictDetectedError,
    Consld8Error,
    InvalidTargetError,
    SessionConflictError,
    SessionStateError,
)
from .models.disk import Disk
from .models.moveplan import MovePlan
from .models.result import ExecutionMode, ExecutionResult
from .models.share import ConsolidationTarget, FolderPresence
from .utils import log_error, log_info, log_warning


class SessionState(str, Enum):
    AWAITING_SHARE = "awaiting_share"
    AWAITING_TARGET_AND_DISK = "awaiting_target_and_disk"
    READY = "ready"
    EXECUTED = "executed"


def _overlaps(first: str, second: str) -> bool:
    return first == second or first.startswith(second + "/") or second.startswith(first + "/")


class SessionRegistry:
    """
    Tracks which (share, subfolder) pairs have an active session.
    Overlapping claims (same folder, ancestor or descendant) are rejected.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: Dict[str, tuple[str, str]] = {}

    def claim(self, session_id: str, share: str, subfolder: str) -> None:
        with self._lock:
            for other_id, (other_share, other_folder) in self._active.items():
                if other_id == session_id:
                    continue
                if other_share == share and _overlaps(other_folder, subfolder):
                    log_warning(
                        f"Session {session_id} rejected: {share}/{subfolder} overlaps "
                        f"{other_share}/{other_folder} held by session {other_id}"
                    )
                    raise SessionConflictError(
                        f"{share}/{subfolder} overlaps {other_share}/{other_folder}, "
                        f"already being consolidated by session {other_id}"
                    )
            self._active[session_id] = (share, subfolder)

    def release(self, session_id: str) -> None:
        with self._lock:
            self._active.pop(session_id, None)

    def active(self) -> Dict[str, tuple[str, str]]:
        with self._lock:
            return dict(self._active)


DEFAULT_REGISTRY = SessionRegistry()


class Session:
    """
    AWAITING_SHARE -> AWAITING_TARGET_AND_DISK -> READY -> EXECUTED.

    EXECUTED is terminal; a new consolidation needs a new Session.
    Use it as a context manager so an abandoned session releases its
    folder claim.
    """

    def __init__(
        self,
        mnt_root: str = topology.DEFAULT_MNT_ROOT,
        user_root: str | None = None,
        registry: SessionRegistry | None = None,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.mnt_root = mnt_root
        self.user_root = user_root or os.path.join(mnt_root, "user")
        self.registry = registry or DEFAULT_REGISTRY
        self.state = SessionState.AWAITING_SHARE
        self.share: Optional[str] = None
        self.target: Optional[ConsolidationTarget] = None
        self.plan: Optional[MovePlan] = None
        self.mode: Optional[ExecutionMode] = None
        self.result: Optional[ExecutionResult] = None

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            expected = " or ".join(state.value for state in states)
            raise SessionStateError(
                f"Session {self.session_id} is {self.state.value}; expected {expected}"
            )

    def available_shares(self) -> List[str]:
        return topology.list_shares(self.user_root)

    def available_disks(self) -> List[Disk]:
        return topology.list_disks(self.mnt_root)

    def available_folders(self) -> List[FolderPresence]:
        self._require(SessionState.AWAITING_TARGET_AND_DISK, SessionState.READY)
        return topology.list_share_folders(self.share, self.available_disks())

    def select_share(self, share: str) -> None:
        """
        Step 1. Accepts a bare share name or its path under the user root.
        Re-selecting before a target is chosen replaces the share.
        """
        self._require(SessionState.AWAITING_SHARE, SessionState.AWAITING_TARGET_AND_DISK)
        name = (share or "").strip()
        user_prefix = self.user_root.rstrip("/") + "/"
        if name.startswith(user_prefix):
            name = name[len(user_prefix):]
        name = name.strip("/")
        if not name:
            raise InvalidTargetError("Share is required.")
        if name not in self.available_shares():
            raise InvalidTargetError(f"Share '{name}' does not exist under {self.user_root}.")
        self.share = name
        self.state = SessionState.AWAITING_TARGET_AND_DISK
        log_info(f"Session {self.session_id}: share {name} selected")

    def select_target(self, subfolder: str, destination_disk: str, safety_margin: int = 0) -> MovePlan:
        """
        Step 2. Builds the plan; plan errors leave the session where it was.
        """
        self._require(SessionState.AWAITING_TARGET_AND_DISK)
        if not (subfolder or "").strip() or not (destination_disk or "").strip():
            raise InvalidTargetError("Both a subfolder and a destination disk are required.")
        disks = self.available_disks()
        destination = topology.find_disk(disks, destination_disk.strip())
        if destination is None:
            raise InvalidTargetError(f"Destination disk '{destination_disk.strip()}' is not a known array disk.")
        plan = planner.build_plan(self.share, subfolder, destination, disks, safety_margin=safety_margin)
        self.registry.claim(self.session_id, plan.share, plan.subfolder)
        self.target = ConsolidationTarget(share=plan.share, subfolder=plan.subfolder, destination=destination)
        self.plan = plan
        self.state = SessionState.READY
        log_info(
            f"Session {self.session_id}: ready to consolidate {plan.share}/{plan.subfolder} "
            f"onto {plan.destination_disk}"
        )
        return plan

    def exclude_conflicts(self, relative_paths: Iterable[str] | None = None) -> MovePlan:
        self._require(SessionState.READY)
        return planner.exclude(self.plan, relative_paths)

    def execute(
        self,
        mode: ExecutionMode | str = ExecutionMode.DRY_RUN,
        *,
        cancel_event: threading.Event | None = None,
        verify: str = "size",
        on_progress=None,
    ) -> ExecutionResult:
        """
        Run the plan. Refuses while conflicts are unresolved; otherwise the
        session becomes EXECUTED whatever the outcome.
        """
        self._require(SessionState.READY)
        unresolved = self.plan.unresolved_conflicts
        if unresolved:
            raise ConflictDetectedError(
                f"{len(unresolved)} conflicting entries must be excluded before execution",
                paths=[conflict.relative_path for conflict in unresolved],
            )
        self.mode = ExecutionMode(mode)
        try:
            self.result = executor.execute(
                self.plan,
                self.mode,
                cancel_event=cancel_event,
                verify=verify,
                on_progress=on_progress,
            )
        finally:
            self.registry.release(self.session_id)
            self.state = SessionState.EXECUTED
        return self.result

    def close(self) -> None:
        """Release the folder claim without executing."""
        self.registry.release(self.session_id)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def report(self) -> Dict[str, Any]:
        """
        Structured, presentation-free session report.
        """
        plan = self.plan
        result = self.result
        report: Dict[str, Any] = {
            "schema_version": reporting.SCHEMA_VERSION,
            "session_id": self.session_id,
            "state": self.state.value,
            "share": self.share,
            "subfolder": plan.subfolder if plan else None,
            "destination": plan.destination_disk if plan else None,
            "mode": self.mode.value if self.mode else None,
            "moved": result.moved if result else 0,
            "skipped": result.skipped if result else 0,
            "failed": result.failed if result else 0,
            "bytes_moved": result.bytes_moved if result else 0,
            "removed_dirs": list(result.removed_dirs) if result else [],
            "cancelled": result.cancelled if result else False,
            "fatal_error": result.fatal_error if result else None,
            "conflicts": reporting.conflict_entries(plan) if plan else [],
            "plan": reporting.plan_summary(plan) if plan else None,
            "result": reporting.result_summary(result) if result else None,
        }
        return report


@dataclass
class _Job:
    session: Session
    future: Future
    cancel_event: threading.Event = field(default_factory=threading.Event)


class SessionManager:
    """
    Background consolidation: submit() returns a session id at once; the
    report file <reports_dir>/<id>.json appears only when the run is over.
    A single worker keeps runs strictly sequential.
    """

    def __init__(self, reports_dir: str | None = None, registry: SessionRegistry | None = None) -> None:
        self.reports_dir = os.path.abspath(reports_dir or reporting.artifact_path("sessions"))
        self.registry = registry or DEFAULT_REGISTRY
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="consld8")
        self._jobs: Dict[str, _Job] = {}
        self._lock = threading.Lock()

    def report_path(self, session_id: str) -> str:
        return os.path.join(self.reports_dir, f"{session_id}.json")

    def submit(self, config: ConsolidationConfig) -> str:
        """
        Validate, claim the folder and queue the run.

        Raises:
            ConfigError: Invalid options.
            SessionConflictError: Another session holds an overlapping folder.
        """
        config.validate()
        self._reap()
        session = Session(mnt_root=config.mnt_root, user_root=config.user_root, registry=self.registry)
        self.registry.claim(session.session_id, config.share, planner.normalize_subfolder(config.subfolder))
        cancel_event = threading.Event()
        future = self._pool.submit(self._run, session, config, cancel_event)
        with self._lock:
            self._jobs[session.session_id] = _Job(session=session, future=future, cancel_event=cancel_event)
        log_info(
            f"Session {session.session_id} queued: {config.share}/{config.subfolder} -> "
            f"{config.destination_disk} ({config.mode.value})"
        )
        return session.session_id

    def _run(self, session: Session, config: ConsolidationConfig, cancel_event: threading.Event) -> Dict[str, Any]:
        error: Dict[str, str] | None = None
        with session:
            try:
                session.select_share(config.share)
                session.select_target(config.subfolder, config.destination_disk, config.safety_margin)
                if config.exclude_conflicts:
                    session.exclude_conflicts()
                session.execute(config.mode, cancel_event=cancel_event, verify=config.verify)
            except Consld8Error as exc:
                error = {"type": type(exc).__name__, "message": str(exc)}
                log_error(f"Session {session.session_id} stopped: {exc}")
            except Exception as exc:
                error = {"type": type(exc).__name__, "message": str(exc)}
                log_error(f"Session {session.session_id} crashed: {exc}")
        report = session.report()
        report["error"] = error
        reporting.write_json_report(report, self.report_path(session.session_id))
        return report

    def _reap(self) -> None:
        # finished runs are served from their report file from now on
        with self._lock:
            finished = [
                session_id
                for session_id, job in self._jobs.items()
                if job.future.done()
                and not job.future.cancelled()
                and os.path.exists(self.report_path(session_id))
            ]
            for session_id in finished:
                del self._jobs[session_id]

    def _job(self, session_id: str) -> Optional[_Job]:
        with self._lock:
            return self._jobs.get(session_id)

    def status(self, session_id: str) -> str:
        """pending, running, done, cancelled or unknown."""
        job = self._job(session_id)
        if job is None:
            return "done" if os.path.exists(self.report_path(session_id)) else "unknown"
        if job.future.cancelled():
            return "cancelled"
        if job.future.done():
            return "done"
        return "running" if job.future.running() else "pending"

    def result(self, session_id: str, timeout: float | None = None) -> Dict[str, Any]:
        """
        Block until the session finishes and return its report.

        Raises:
            SessionStateError: Unknown id, cancelled before start, or timeout.
        """
        job = self._job(session_id)
        if job is None:
            path = self.report_path(session_id)
            if os.path.exists(path):
                return reporting.read_json_report(path)
            raise SessionStateError(f"Unknown session {session_id}")
        try:
            return job.future.result(timeout=timeout)
        except CancelledError as exc:
            raise SessionStateError(f"Session {session_id} was cancelled before it started") from exc
        except FutureTimeoutError as exc:
            raise SessionStateError(f"Session {session_id} is still running") from exc

    def cancel(self, session_id: str) -> bool:
        """
        Stop a session at the next safe point. Queued sessions never start.
        """
        job = self._job(session_id)
        if job is None:
            return False
        job.cancel_event.set()
        if job.future.cancel():
            self.registry.release(session_id)
        log_info(f"Session {session_id} cancellation requested")
        return True

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
