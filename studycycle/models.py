"""
Subjects, blocks and cycles.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple

MIN_BLOCK_MINUTES = 5
MAX_BLOCK_MINUTES = 480
DEFAULT_BLOCK_MINUTES = 60
MAX_CYCLE_NAME_LENGTH = 100


def clamp_minutes(value: object) -> int:
    """
    Coerce ``value`` into a block duration within the allowed range.

    Non-numeric input becomes the minimum duration.
    """

    if isinstance(value, bool):
        return MIN_BLOCK_MINUTES
    try:
        numeric = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        try:
            as_float = float(str(value).strip())
        except (TypeError, ValueError):
            return MIN_BLOCK_MINUTES
        if not math.isfinite(as_float):
            return MIN_BLOCK_MINUTES
        numeric = int(as_float)
    if numeric <= 0:
        return MIN_BLOCK_MINUTES
    return max(MIN_BLOCK_MINUTES, min(MAX_BLOCK_MINUTES, numeric))


def format_duration(minutes: int) -> str:
    hours, mins = divmod(max(0, int(minutes)), 60)
    if hours and mins:
        return f"{hours}h {mins}min"
    if hours:
        return f"{hours}h"
    return f"{mins}min"


def format_clock(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Subject:
    id: str
    name: str
    color: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "color": self.color}


@dataclass(frozen=True, slots=True)
class Block:
    id: str
    subject_id: str
    allocated_minutes: int
    order: int

    @property
    def allocated_seconds(self) -> int:
        return int(self.allocated_minutes) * 60

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subjectId": self.subject_id,
            "allocatedMinutes": int(self.allocated_minutes),
            "order": int(self.order),
        }


@dataclass(frozen=True, slots=True)
class Cycle:
    """
    A named, ordered list of study blocks.

    ``blocks`` is always sorted by ``order`` and the ranks are dense.
    """

    id: str
    owner_id: str
    name: str
    blocks: Tuple[Block, ...] = ()
    is_active: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def total_minutes(self) -> int:
        return sum(int(block.allocated_minutes) for block in self.blocks)

    def block_at(self, index: int) -> Block:
        return self.blocks[index]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "name": self.name,
            "isActive": bool(self.is_active),
            "createdAt": self.created_at.isoformat(),
            "totalMinutes": self.total_minutes,
            "blocks": [block.to_dict() for block in self.blocks],
        }
