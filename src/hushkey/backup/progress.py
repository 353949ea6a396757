"""Backup progress events.

Exports emit a stream of BackupProgress values. Stages only move forward;
plain CSV exports skip COMPRESSING.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class BackupStage(str, Enum):
    PREPARING = "preparing"
    ENCRYPTING = "encrypting"
    COMPRESSING = "compressing"
    FINALIZING = "finalizing"

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]

    def __lt__(self, other):
        if not isinstance(other, BackupStage):
            return NotImplemented
        return self.order < other.order

    def __le__(self, other):
        if not isinstance(other, BackupStage):
            return NotImplemented
        return self.order <= other.order


_STAGE_ORDER = {
    BackupStage.PREPARING: 0,
    BackupStage.ENCRYPTING: 1,
    BackupStage.COMPRESSING: 2,
    BackupStage.FINALIZING: 3,
}


@dataclass(frozen=True)
class BackupProgress:
    """One progress event. `progress` is a percentage in [0, 100]."""

    stage: BackupStage
    progress: int
    current_item: Optional[str] = None
    current: Optional[int] = None
    total: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "progress": self.progress,
            "currentItem": self.current_item,
            "current": self.current,
            "total": self.total,
        }
