import os

import pytest

from consld8 import topology
from consld8.exceptions import ScanError
from consld8.models.disk import Disk


def test_is_array_disk_name():
    assert topology.is_array_disk_name("disk1")
    assert topology.is_array_disk_name("disk28")
    assert topology.is_array_disk_name("cache")
    assert not topology.is_array_disk_name("disk0")
    assert not topology.is_array_disk_name("user")
    assert not topology.is_array_disk_name("disks")
    assert not topology.is_array_disk_name("disk1x")


def test_list_disks_orders_naturally_with_cache_last(mnt):
    (mnt / "disk10").mkdir()
    (mnt / "remotes").mkdir()
    (mnt / "user0").mkdir()
    disks = topology.list_disks(str(mnt))
    assert [d.name for d in disks] == ["disk1", "disk2", "disk3", "disk10", "cache"]
    assert all(d.free_bytes > 0 for d in disks)
    assert disks[0].mount_path == os.path.join(str(mnt), "disk1")


def test_list_disks_skips_symlinked_mounts(mnt, tmp_path):
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    os.symlink(elsewhere, mnt / "disk4")
    assert "disk4" not in [d.name for d in topology.list_disks(str(mnt))]


def test_list_disks_missing_root_raises(tmp_path):
    with pytest.raises(ScanError):
        topology.list_disks(str(tmp_path / "missing"))


def test_available_space_missing_path_raises(tmp_path):
    with pytest.raises(ScanError):
        topology.available_space(str(tmp_path / "missing"))


def test_list_shares_skips_reserved_names_and_files(mnt):
    for name in ("Movies", "TV", "@eaDir", ".Recycle.Bin"):
        (mnt / "user" / name).mkdir()
    (mnt / "user" / "readme.txt").write_text("not a share")
    assert topology.list_shares(str(mnt / "user")) == ["Movies", "TV"]


def test_list_shares_custom_reserved_prefixes(mnt):
    for name in ("Movies", "_tmp"):
        (mnt / "user" / name).mkdir()
    assert topology.list_shares(str(mnt / "user"), reserved_prefixes=("_",)) == ["Movies"]


def test_list_share_roots_marks_disks_without_share(mnt, put):
    put("disk1", "Movies/Inception/a.mkv")
    put("disk3", "Movies/Up/b.mkv")
    disks = topology.list_disks(str(mnt))
    roots = topology.list_share_roots("Movies", disks)
    assert roots["disk1"] == os.path.join(str(mnt), "disk1", "Movies")
    assert roots["disk2"] is None
    assert roots["cache"] is None
    share = topology.load_share("Movies", disks)
    assert share.hosting_disks == ["disk1", "disk3"]


def test_list_share_folders_and_split_detection(mnt, put):
    put("disk1", "Movies/Inception/a.mkv")
    put("disk2", "Movies/Inception/b.srt")
    put("disk2", "Movies/Up/c.mkv")
    put("disk3", "Movies/.hidden/d.mkv")
    disks = topology.list_disks(str(mnt))

    folders = topology.list_share_folders("Movies", disks)
    assert [(f.name, f.disks) for f in folders] == [
        ("Inception", ["disk1", "disk2"]),
        ("Up", ["disk2"]),
    ]
    split = topology.find_split_folders("Movies", disks)
    assert [f.name for f in split] == ["Inception"]


def test_refresh_disk_rereads_free_space(mnt):
    stale = Disk(name="disk1", mount_path=str(mnt / "disk1"), free_bytes=1)
    fresh = topology.refresh_disk(stale)
    assert fresh.name == "disk1"
    assert fresh.free_bytes > 1


def test_find_disk():
    disks = [Disk("disk1", "/mnt/disk1", 1), Disk("disk2", "/mnt/disk2", 2)]
    assert topology.find_disk(disks, "disk2").free_bytes == 2
    assert topology.find_disk(disks, "disk9") is None
