"""
Module: disk
Purpose: Physical disk dataclass.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Disk:
    """
    One physical array member (diskN or cache) with the space
    available to unprivileged writers at scan time.
    """

    name: str
    mount_path: str
    free_bytes: int

    def share_root(self, share: str) -> str:
        return f"{self.mount_path.rstrip('/')}/{share}"
