import pytest

from consld8 import config
from consld8.config import ConsolidationConfig
from consld8.exceptions import ConfigError
from consld8.models.result import ExecutionMode


def test_parse_size_units():
    assert config.parse_size("500") == 500
    assert config.parse_size("10K") == 10 * 1024
    assert config.parse_size("50G") == 50 * 1024**3
    assert config.parse_size("1.5T") == int(1.5 * 1024**4)
    assert config.parse_size("200MiB") == 200 * 1024**2
    assert config.parse_size("2gb") == 2 * 1024**3
    assert config.parse_size(42) == 42


@pytest.mark.parametrize("value", ["", "abc", "-5G", "5X", -1])
def test_parse_size_rejects_garbage(value):
    with pytest.raises(ConfigError):
        config.parse_size(value)


def test_resolve_roots_precedence(monkeypatch):
    assert config.resolve_mnt_root() == "/mnt"
    assert config.resolve_user_root() == "/mnt/user"
    monkeypatch.setenv(config.MNT_ROOT_ENV, "/srv/array")
    assert config.resolve_mnt_root() == "/srv/array"
    assert config.resolve_mnt_root("/cli") == "/cli"
    assert config.resolve_user_root(mnt_root="/srv/array") == "/srv/array/user"
    monkeypatch.setenv(config.USER_ROOT_ENV, "/srv/union")
    assert config.resolve_user_root(mnt_root="/srv/array") == "/srv/union"
    assert config.resolve_user_root("/cli/user") == "/cli/user"


def test_resolve_safety_margin_precedence(monkeypatch):
    assert config.resolve_safety_margin() == (0, "default")
    monkeypatch.setenv(config.SAFETY_MARGIN_ENV, "1G")
    assert config.resolve_safety_margin() == (1024**3, "env")
    assert config.resolve_safety_margin("2K") == (2048, "cli")
    monkeypatch.setenv(config.SAFETY_MARGIN_ENV, "lots")
    assert config.resolve_safety_margin() == (0, "default")


def _config(**overrides):
    values = dict(share="Movies", subfolder="Inception", destination_disk="disk1")
    values.update(overrides)
    return ConsolidationConfig(**values)


def test_validate_normalizes_fields():
    cfg = _config(share="/Movies/", subfolder="/Inception/", destination_disk=" disk2 ", mode="force").validate()
    assert cfg.share == "Movies"
    assert cfg.subfolder == "Inception"
    assert cfg.destination_disk == "disk2"
    assert cfg.mode == ExecutionMode.FORCE
    assert not cfg.dry_run
    assert _config().validate().dry_run


@pytest.mark.parametrize(
    "overrides",
    [
        {"share": ""},
        {"share": "a/b"},
        {"share": "@eaDir"},
        {"subfolder": ""},
        {"subfolder": "../etc"},
        {"destination_disk": ""},
        {"destination_disk": "user"},
        {"mode": "later"},
        {"safety_margin": -1},
        {"verify": "md5"},
    ],
)
def test_validate_rejects_bad_options(overrides):
    with pytest.raises(ConfigError):
        _config(**overrides).validate()
