"""
Module: result
Purpose: Execution mode and per-operation outcome dataclasses.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .actions import MoveAction


class ExecutionMode(str, Enum):
    DRY_RUN = "dry_run"
    FORCE = "force"


class Outcome(str, Enum):
    MOVED = "moved"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class OperationResult:
    action: MoveAction
    outcome: Outcome
    reason: Optional[str] = None
    message: Optional[str] = None


@dataclass
class ExecutionResult:
    """
    Outcome of running a MovePlan. In dry-run mode MOVED means
    "would be moved" and removed_dirs lists directories that would go.
    """

    mode: ExecutionMode
    operations: List[OperationResult] = field(default_factory=list)
    removed_dirs: List[str] = field(default_factory=list)
    cancelled: bool = False
    fatal_error: Optional[str] = None

    def _count(self, outcome: Outcome) -> int:
        return sum(1 for op in self.operations if op.outcome == outcome)

    @property
    def moved(self) -> int:
        return self._count(Outcome.MOVED)

    @property
    def skipped(self) -> int:
        return self._count(Outcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(Outcome.FAILED)

    @property
    def bytes_moved(self) -> int:
        return sum(op.action.size for op in self.operations if op.outcome == Outcome.MOVED)

    @property
    def succeeded(self) -> bool:
        return self.failed == 0 and not self.cancelled and self.fatal_error is None
