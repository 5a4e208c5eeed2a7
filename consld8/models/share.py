"""
Module: share
Purpose: User share and consolidation target dataclasses.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .disk import Disk


@dataclass
class Share:
    """
    Logical share name plus its root on every disk.

    A disk that does not carry the share maps to None.
    """

    name: str
    roots: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def hosting_disks(self) -> List[str]:
        return [name for name, root in self.roots.items() if root is not None]


@dataclass(frozen=True)
class ConsolidationTarget:
    share: str
    subfolder: str
    destination: Disk


@dataclass
class FolderPresence:
    """Top-level share folder and the disks it currently lives on."""

    name: str
    disks: List[str]

    @property
    def is_split(self) -> bool:
        return len(self.disks) > 1
