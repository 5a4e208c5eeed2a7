"""
Module: fileentry
Purpose: Dataclass representing a file found under a consolidation target.
"""

from dataclasses import dataclass


@dataclass
class FileEntry:
    """
    A single file below the target subfolder on one disk.
    """

    relative_path: str
    disk: str
    path: str
    size: int
    mtime: float

    def __hash__(self):
        return hash(self.path)

    def __eq__(self, other):
        if not isinstance(other, FileEntry):
            return NotImplemented
        return self.path == other.path
