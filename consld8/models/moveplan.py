"""
Module: moveplan
Purpose: Move plan dataclass definition.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Set

from .actions import Conflict, MoveAction


@dataclass
class MovePlan:
    """
    Represents the full consolidation plan including required space,
    all move actions and any conflicts held back from them.
    """

    share: str
    subfolder: str
    destination_disk: str
    destination_mount: str
    actions: List[MoveAction]
    conflicts: List[Conflict]
    required_space: int
    destination_free: int
    safety_margin: int = 0
    source_roots: Dict[str, str] = field(default_factory=dict)
    excluded: Set[str] = field(default_factory=set)

    @property
    def unresolved_conflicts(self) -> List[Conflict]:
        return [c for c in self.conflicts if c.relative_path not in self.excluded]

    @property
    def is_empty(self) -> bool:
        return not self.actions and not self.conflicts
