"""
Module: config
Purpose: Typed consolidation options, validated before any filesystem access.
"""

import os
import re
from dataclasses import dataclass

from .exceptions import ConfigError
from .models.result import ExecutionMode
from .topology import DEFAULT_MNT_ROOT, DEFAULT_USER_ROOT, is_array_disk_name
from .utils import log_warning

MNT_ROOT_ENV = "CONSLD8_MNT_ROOT"
USER_ROOT_ENV = "CONSLD8_USER_ROOT"
SAFETY_MARGIN_ENV = "CONSLD8_SAFETY_MARGIN"

_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?)(?:I?B)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3, "T": 1024**4}


def parse_size(value: str | int) -> int:
    """
    Parse "500", "10G", "1.5T" or "200MiB" into bytes (binary units).

    Raises:
        ConfigError: For malformed or negative sizes.
    """
    if isinstance(value, int):
        if value < 0:
            raise ConfigError("Size cannot be negative.")
        return value
    match = _SIZE_PATTERN.match(str(value))
    if not match:
        raise ConfigError(f"Invalid size '{value}'. Use bytes or a K/M/G/T suffix, e.g. 50G.")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[unit.upper()])


def resolve_mnt_root(cli_value: str | None = None) -> str:
    return cli_value or os.getenv(MNT_ROOT_ENV) or DEFAULT_MNT_ROOT


def resolve_user_root(cli_value: str | None = None, mnt_root: str | None = None) -> str:
    if cli_value:
        return cli_value
    env_value = os.getenv(USER_ROOT_ENV)
    if env_value:
        return env_value
    if mnt_root:
        return os.path.join(mnt_root, "user")
    return DEFAULT_USER_ROOT


def resolve_safety_margin(cli_value: str | int | None = None) -> tuple[int, str]:
    """
    Determine the safety margin.
    Preference order: CLI override > environment variable > default (0).
    Returns tuple of (bytes, source).
    """
    if cli_value is not None:
        return parse_size(cli_value), "cli"
    env_value = os.getenv(SAFETY_MARGIN_ENV)
    if env_value:
        try:
            return parse_size(env_value), "env"
        except ConfigError:
            log_warning(f"Ignoring invalid {SAFETY_MARGIN_ENV} value '{env_value}'.")
    return 0, "default"


@dataclass
class ConsolidationConfig:
    """
    Everything one consolidation run needs, replacing the script flags
    (-t/-f for mode, positional share/folder/disk).
    """

    share: str
    subfolder: str
    destination_disk: str
    mode: ExecutionMode = ExecutionMode.DRY_RUN
    safety_margin: int = 0
    mnt_root: str = DEFAULT_MNT_ROOT
    user_root: str = DEFAULT_USER_ROOT
    verify: str = "size"
    exclude_conflicts: bool = False

    def validate(self) -> "ConsolidationConfig":
        """
        Reject malformed options without touching the filesystem.

        Raises:
            ConfigError: On the first invalid option.
        """
        share = (self.share or "").strip().strip("/")
        if not share:
            raise ConfigError("Share is required.")
        if "/" in share or share in (".", "..") or share.startswith(("@", ".")):
            raise ConfigError(f"Invalid share name '{self.share}'.")
        subfolder = (self.subfolder or "").strip()
        if not subfolder.strip("/"):
            raise ConfigError("Subfolder is required.")
        if ".." in subfolder.replace("\\", "/").split("/"):
            raise ConfigError(f"Subfolder '{self.subfolder}' must stay inside the share.")
        disk = (self.destination_disk or "").strip()
        if not disk:
            raise ConfigError("Destination disk is required.")
        if not is_array_disk_name(disk):
            raise ConfigError(f"Destination '{disk}' is not a disk name (expected diskN or cache).")
        try:
            self.mode = ExecutionMode(self.mode)
        except ValueError as exc:
            raise ConfigError(f"Unknown mode '{self.mode}'. Use dry_run or force.") from exc
        if self.safety_margin < 0:
            raise ConfigError("Safety margin cannot be negative.")
        if self.verify not in ("size", "checksum"):
            raise ConfigError("verify must be 'size' or 'checksum'.")
        self.share = share
        self.subfolder = subfolder.strip("/")
        self.destination_disk = disk
        return self

    @property
    def dry_run(self) -> bool:
        return self.mode == ExecutionMode.DRY_RUN
