import json
import threading

import pytest

from consld8 import executor
from consld8.config import ConsolidationConfig
from consld8.exceptions import (
    ConfigError,
    ConflictDetectedError,
    InvalidTargetError,
    NoDiskSpaceError,
    SessionConflictError,
    SessionStateError,
)
from consld8.models.result import ExecutionMode
from consld8.session import Session, SessionManager, SessionRegistry, SessionState


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def inception(put):
    put("disk1", "Movies/Inception/movie.mkv")
    put("disk2", "Movies/Inception/movie.srt")
    put("disk2", "Movies/Up/up.mkv")


def _session(mnt, registry, **kwargs):
    return Session(mnt_root=str(mnt), registry=registry, **kwargs)


def test_session_walks_through_states(mnt, inception, registry):
    session = _session(mnt, registry)
    assert session.state == SessionState.AWAITING_SHARE
    assert session.available_shares() == ["Movies"]

    session.select_share("Movies")
    assert session.state == SessionState.AWAITING_TARGET_AND_DISK
    assert [f.name for f in session.available_folders()] == ["Inception", "Up"]

    plan = session.select_target("Inception", "disk1")
    assert session.state == SessionState.READY
    assert len(plan.actions) == 1
    assert session.target.destination.name == "disk1"

    result = session.execute(ExecutionMode.FORCE)
    assert session.state == SessionState.EXECUTED
    assert result.moved == 1
    assert (mnt / "disk1" / "Movies" / "Inception" / "movie.srt").exists()
    assert registry.active() == {}


def test_operations_out_of_order_are_rejected(mnt, inception, registry):
    session = _session(mnt, registry)
    with pytest.raises(SessionStateError):
        session.select_target("Inception", "disk1")
    with pytest.raises(SessionStateError):
        session.execute()
    session.select_share("Movies")
    session.select_target("Inception", "disk1")
    session.execute()
    with pytest.raises(SessionStateError):
        session.execute()
    with pytest.raises(SessionStateError):
        session.select_share("Movies")


def test_select_share_accepts_union_path(mnt, inception, registry):
    session = _session(mnt, registry)
    session.select_share(f"{mnt}/user/Movies/")
    assert session.share == "Movies"


def test_select_share_rejects_unknown(mnt, inception, registry):
    session = _session(mnt, registry)
    with pytest.raises(InvalidTargetError):
        session.select_share("Music")
    with pytest.raises(InvalidTargetError):
        session.select_share("  ")
    assert session.state == SessionState.AWAITING_SHARE


def test_select_target_errors_leave_state_unchanged(mnt, inception, registry):
    session = _session(mnt, registry)
    session.select_share("Movies")
    with pytest.raises(InvalidTargetError):
        session.select_target("Missing", "disk1")
    with pytest.raises(InvalidTargetError):
        session.select_target("Inception", "")
    with pytest.raises(NoDiskSpaceError):
        session.select_target("Inception", "disk1", safety_margin=10**18)
    assert session.state == SessionState.AWAITING_TARGET_AND_DISK
    assert registry.active() == {}
    session.select_target("Inception", "disk1")
    assert session.state == SessionState.READY


def test_conflicts_must_be_excluded_before_execute(mnt, put, registry):
    put("disk2", "Movies/Inception/poster.jpg")
    put("disk3", "Movies/Inception/poster.jpg")
    session = _session(mnt, registry)
    session.select_share("Movies")
    session.select_target("Inception", "disk1")

    with pytest.raises(ConflictDetectedError):
        session.execute(ExecutionMode.FORCE)
    assert session.state == SessionState.READY

    session.exclude_conflicts()
    result = session.execute(ExecutionMode.FORCE)
    assert result.operations == []
    assert session.report()["conflicts"][0]["excluded"] is True


def test_overlapping_sessions_are_rejected(mnt, inception, registry):
    first = _session(mnt, registry)
    first.select_share("Movies")
    first.select_target("Inception", "disk1")

    second = _session(mnt, registry)
    second.select_share("Movies")
    with pytest.raises(SessionConflictError):
        second.select_target("Inception", "disk2")

    other = _session(mnt, registry)
    other.select_share("Movies")
    other.select_target("Up", "disk1")

    first.close()
    second.select_target("Inception", "disk2")


def test_registry_detects_nested_folders(registry):
    registry.claim("a", "Movies", "Series")
    with pytest.raises(SessionConflictError):
        registry.claim("b", "Movies", "Series/Season 1")
    registry.claim("c", "Movies", "Series 2")
    registry.claim("d", "TV", "Series")
    registry.release("a")
    registry.claim("b", "Movies", "Series/Season 1")
    assert set(registry.active()) == {"b", "c", "d"}


def test_report_is_structured(mnt, inception, registry):
    session = _session(mnt, registry, session_id="abc")
    session.select_share("Movies")
    session.select_target("Inception", "disk1")
    session.execute(ExecutionMode.DRY_RUN)

    report = session.report()
    assert report["session_id"] == "abc"
    assert report["state"] == "executed"
    assert report["mode"] == "dry_run"
    assert report["moved"] == 1
    assert report["destination"] == "disk1"
    assert report["result"]["operations"][0]["relative_path"] == "movie.srt"
    json.dumps(report)


def test_session_as_context_manager_releases_claim(mnt, inception, registry):
    with _session(mnt, registry) as session:
        session.select_share("Movies")
        session.select_target("Inception", "disk1")
        assert list(registry.active()) == [session.session_id]
    assert registry.active() == {}

    with pytest.raises(InvalidTargetError):
        with _session(mnt, registry) as session:
            session.select_share("Movies")
            session.select_target("Inception", "disk1")
            raise InvalidTargetError("abandoned")
    assert registry.active() == {}


def _config(mnt, subfolder="Inception", **kwargs):
    return ConsolidationConfig(
        share="Movies",
        subfolder=subfolder,
        destination_disk="disk1",
        mnt_root=str(mnt),
        user_root=str(mnt / "user"),
        **kwargs,
    )


def test_manager_runs_in_background_and_writes_report(mnt, inception, registry, tmp_path):
    manager = SessionManager(reports_dir=str(tmp_path / "reports"), registry=registry)
    try:
        session_id = manager.submit(_config(mnt, mode=ExecutionMode.FORCE))
        report = manager.result(session_id, timeout=30)
    finally:
        manager.shutdown()

    assert report["error"] is None
    assert report["moved"] == 1
    assert manager.status(session_id) == "done"
    with open(manager.report_path(session_id), encoding="utf-8") as handle:
        assert json.load(handle)["session_id"] == session_id
    assert registry.active() == {}


def test_manager_records_errors_in_report(mnt, inception, registry, tmp_path):
    manager = SessionManager(reports_dir=str(tmp_path / "reports"), registry=registry)
    try:
        session_id = manager.submit(_config(mnt, subfolder="Missing"))
        report = manager.result(session_id, timeout=30)
    finally:
        manager.shutdown()
    assert report["error"]["type"] == "InvalidTargetError"
    assert report["moved"] == 0


def test_manager_rejects_invalid_and_overlapping_requests(mnt, inception, registry, tmp_path):
    manager = SessionManager(reports_dir=str(tmp_path / "reports"), registry=registry)
    try:
        with pytest.raises(ConfigError):
            manager.submit(_config(mnt, subfolder="../etc"))
        registry.claim("busy", "Movies", "Inception")
        with pytest.raises(SessionConflictError):
            manager.submit(_config(mnt))
    finally:
        manager.shutdown()


def test_manager_cancels_queued_session(monkeypatch, mnt, inception, registry, tmp_path):
    gate = threading.Event()
    started = threading.Event()
    real_execute = executor.execute

    def slow_execute(*args, **kwargs):
        started.set()
        gate.wait(timeout=30)
        return real_execute(*args, **kwargs)

    monkeypatch.setattr(executor, "execute", slow_execute)
    manager = SessionManager(reports_dir=str(tmp_path / "reports"), registry=registry)
    try:
        first = manager.submit(_config(mnt))
        second = manager.submit(_config(mnt, subfolder="Up"))
        assert started.wait(timeout=30)
        assert manager.status(second) == "pending"
        assert manager.cancel(second)
        assert manager.status(second) == "cancelled"
        gate.set()
        assert manager.result(first, timeout=30)["error"] is None
        with pytest.raises(SessionStateError):
            manager.result(second, timeout=1)
    finally:
        gate.set()
        manager.shutdown()
    assert manager.status("nope") == "unknown"
    assert not manager.cancel("nope")


def test_manager_forgets_finished_jobs_but_keeps_their_reports(mnt, inception, registry, tmp_path):
    manager = SessionManager(reports_dir=str(tmp_path / "reports"), registry=registry)
    try:
        first = manager.submit(_config(mnt))
        manager.result(first, timeout=30)
        second = manager.submit(_config(mnt, subfolder="Up"))
        manager.result(second, timeout=30)
    finally:
        manager.shutdown()

    assert first not in manager._jobs
    assert second in manager._jobs
    assert manager.status(first) == "done"
    assert manager.result(first)["session_id"] == first
