"""
Module: actions
Purpose: Defines the data structures for move plan actions.
"""

from dataclasses import dataclass, field
from typing import List

from .fileentry import FileEntry


@dataclass
class MoveAction:
    """Move one file from a source disk to the destination disk."""

    relative_path: str
    src: str
    dst: str
    source_disk: str
    destination_disk: str
    size: int
    mtime: float
    type: str = field(default="MOVE", init=False)


@dataclass
class Conflict:
    """The same relative path exists on more than one source disk."""

    relative_path: str
    entries: List[FileEntry]
    type: str = field(default="CONFLICT", init=False)

    @property
    def disks(self) -> List[str]:
        return [entry.disk for entry in self.entries]
