import os

import pytest

from consld8 import reporting


@pytest.fixture(autouse=True)
def isolated_log(tmp_path_factory, monkeypatch):
    log_dir = tmp_path_factory.mktemp("logs")
    log_path = log_dir / "consld8.log"
    monkeypatch.setenv(reporting.LOG_FILE_ENV, str(log_path))
    for name in ("CONSLD8_MNT_ROOT", "CONSLD8_USER_ROOT", "CONSLD8_SAFETY_MARGIN", "NO_COLOR", "CONSLD8_PLAIN"):
        monkeypatch.delenv(name, raising=False)
    return log_path


@pytest.fixture
def mnt(tmp_path):
    """Fake /mnt holding disk1..disk3, cache and the user union root."""
    root = tmp_path / "mnt"
    for name in ("disk1", "disk2", "disk3", "cache", "user"):
        (root / name).mkdir(parents=True)
    return root


@pytest.fixture
def put(mnt):
    """Create <mnt>/<disk>/<relpath> and register its share under <mnt>/user."""

    def _put(disk: str, relpath: str, data: bytes = b"x"):
        path = mnt / disk / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        share = relpath.split("/", 1)[0]
        (mnt / "user" / share).mkdir(exist_ok=True)
        return path

    return _put


def snapshot(root) -> dict:
    """Every path below root with size and mtime, for no-mutation checks."""
    state = {}
    for current, dirs, files in os.walk(root):
        for name in dirs + files:
            path = os.path.join(current, name)
            stat = os.lstat(path)
            state[os.path.relpath(path, root)] = (stat.st_size, stat.st_mtime_ns)
    return state
