import os

import pytest

from consld8 import scanner
from consld8.exceptions import ScanError
from consld8.models.disk import Disk


def _disk(mnt, name="disk1"):
    return Disk(name=name, mount_path=str(mnt / name), free_bytes=10**12)


def test_scan_subfolder_collects_nested_files(mnt, put):
    put("disk1", "Movies/Inception/movie.mkv", b"12345")
    put("disk1", "Movies/Inception/extras/behind.mkv", b"12")
    put("disk1", "Movies/Other/skip.mkv")

    entries = scanner.scan_subfolder(_disk(mnt), "Movies", "Inception")

    assert [e.relative_path for e in entries] == ["movie.mkv", os.path.join("extras", "behind.mkv")]
    by_name = {e.relative_path: e for e in entries}
    assert by_name["movie.mkv"].size == 5
    assert by_name["movie.mkv"].disk == "disk1"
    assert by_name["movie.mkv"].path == str(mnt / "disk1" / "Movies" / "Inception" / "movie.mkv")


def test_scan_subfolder_absent_returns_empty(mnt):
    assert scanner.scan_subfolder(_disk(mnt), "Movies", "Nope") == []


def test_scan_subfolder_skips_symlinks(mnt, put, tmp_path):
    put("disk1", "Movies/Inception/movie.mkv")
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "leak.mkv").write_bytes(b"x")
    base = mnt / "disk1" / "Movies" / "Inception"
    os.symlink(outside, base / "linked_dir")
    os.symlink(outside / "leak.mkv", base / "linked.mkv")

    entries, skipped = scanner.scan_subfolder_with_stats(_disk(mnt), "Movies", "Inception")

    assert [e.relative_path for e in entries] == ["movie.mkv"]
    assert skipped == 2


def test_scan_subfolder_symlinked_root_is_skipped(mnt, put, tmp_path):
    target = tmp_path / "real"
    target.mkdir()
    (target / "a.mkv").write_bytes(b"x")
    (mnt / "disk1" / "Movies").mkdir()
    os.symlink(target, mnt / "disk1" / "Movies" / "Inception")

    entries, skipped = scanner.scan_subfolder_with_stats(_disk(mnt), "Movies", "Inception")
    assert entries == []
    assert skipped == 1


def test_scan_subfolder_rejects_file_target(mnt, put):
    put("disk1", "Movies/Inception")
    with pytest.raises(ScanError):
        scanner.scan_subfolder(_disk(mnt), "Movies", "Inception")


def test_scan_subfolder_skips_unreadable_files(monkeypatch, mnt, put):
    put("disk1", "Movies/Inception/good.mkv")
    put("disk1", "Movies/Inception/bad.mkv")
    original_stat = scanner.os.stat

    def fake_stat(path, *args, **kwargs):
        if str(path).endswith("bad.mkv"):
            raise OSError("boom")
        return original_stat(path, *args, **kwargs)

    logged: list[str] = []
    monkeypatch.setattr(scanner, "log_error", logged.append)
    monkeypatch.setattr(scanner.os, "stat", fake_stat)

    entries = scanner.scan_subfolder(_disk(mnt), "Movies", "Inception")

    assert [e.relative_path for e in entries] == ["good.mkv"]
    assert any("bad.mkv" in entry for entry in logged)
