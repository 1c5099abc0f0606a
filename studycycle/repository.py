"""
Subject catalog and cycle store collaborators.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple

from .errors import CycleNotFound, DuplicateSubjectError
from .models import Block, Cycle, Subject, clamp_minutes

LOG = logging.getLogger(__name__)

BlockSpec = Tuple[str, int]


class SubjectCatalog:
    """
    Read-only view over the user's subjects.
    """

    def __init__(self, subjects: Iterable[Subject] = ()) -> None:
        self._subjects: Tuple[Subject, ...] = tuple(subjects)
        self._by_id: Dict[str, Subject] = {subject.id: subject for subject in self._subjects}

    @classmethod
    def from_dicts(cls, payload: Iterable[dict]) -> "SubjectCatalog":
        subjects = []
        for entry in payload or ():
            subject_id = str(entry.get("id") or "").strip()
            name = str(entry.get("name") or "").strip()
            if not subject_id or not name:
                LOG.warning("Ignoring subject entry without id or name: %r", entry)
                continue
            subjects.append(Subject(id=subject_id, name=name, color=entry.get("color")))
        return cls(subjects)

    def get(self, subject_id: str) -> Optional[Subject]:
        return self._by_id.get(subject_id)

    def name_of(self, subject_id: str, default: str = "Block") -> str:
        subject = self._by_id.get(subject_id)
        return subject.name if subject else default

    def __contains__(self, subject_id: object) -> bool:
        return subject_id in self._by_id

    def __iter__(self) -> Iterator[Subject]:
        return iter(self._subjects)

    def __len__(self) -> int:
        return len(self._subjects)

    def to_list(self) -> List[dict]:
        return [subject.to_dict() for subject in self._subjects]


class CycleRepository(Protocol):
    """Persistence contract for cycles. Every call may raise ``PersistenceError``."""

    def create(self, owner_id: str, name: str, blocks: Sequence[BlockSpec]) -> Cycle: ...

    def update(self, cycle_id: str, name: str, blocks: Sequence[BlockSpec]) -> None: ...

    def delete(self, cycle_id: str) -> None: ...

    def set_active(self, cycle_id: str, active: bool) -> None: ...

    def list(self, owner_id: str) -> List[Cycle]: ...

    def get(self, cycle_id: str) -> Cycle: ...


def build_blocks(blocks: Sequence[BlockSpec], *, id_factory: Callable[[], str]) -> Tuple[Block, ...]:
    """Assign fresh ids and dense ranks to ``(subject_id, minutes)`` pairs."""

    seen = set()
    built = []
    for index, (subject_id, minutes) in enumerate(blocks):
        if subject_id in seen:
            raise DuplicateSubjectError(f"Subject '{subject_id}' appears more than once in the cycle.")
        seen.add(subject_id)
        built.append(
            Block(id=id_factory(), subject_id=subject_id, allocated_minutes=clamp_minutes(minutes), order=index)
        )
    return tuple(built)


class InMemoryCycleRepository:
    """
    Process-local cycle store.

    Saving replaces the whole block list; deleting a cycle drops its blocks.
    ``fail_with`` makes every subsequent call raise the given exception, which
    is how callers exercise storage failures.
    """

    def __init__(self, *, id_factory: Optional[Callable[[], str]] = None) -> None:
        self._lock = threading.RLock()
        self._cycles: Dict[str, Cycle] = {}
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self.fail_with: Optional[BaseException] = None

    def _check_failure(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _get_locked(self, cycle_id: str) -> Cycle:
        cycle = self._cycles.get(cycle_id)
        if cycle is None:
            raise CycleNotFound(f"cycle '{cycle_id}' not found")
        return cycle

    def create(self, owner_id: str, name: str, blocks: Sequence[BlockSpec]) -> Cycle:
        with self._lock:
            self._check_failure()
            cycle = Cycle(
                id=self._id_factory(),
                owner_id=str(owner_id),
                name=name,
                blocks=build_blocks(blocks, id_factory=self._id_factory),
            )
            self._cycles[cycle.id] = cycle
        LOG.info("Created cycle %s with %d block(s)", cycle.id, len(cycle.blocks))
        return cycle

    def update(self, cycle_id: str, name: str, blocks: Sequence[BlockSpec]) -> None:
        with self._lock:
            self._check_failure()
            current = self._get_locked(cycle_id)
            self._cycles[cycle_id] = replace(
                current,
                name=name,
                blocks=build_blocks(blocks, id_factory=self._id_factory),
            )
        LOG.info("Replaced blocks of cycle %s", cycle_id)

    def delete(self, cycle_id: str) -> None:
        with self._lock:
            self._check_failure()
            self._get_locked(cycle_id)
            del self._cycles[cycle_id]
        LOG.info("Deleted cycle %s", cycle_id)

    def set_active(self, cycle_id: str, active: bool) -> None:
        with self._lock:
            self._check_failure()
            current = self._get_locked(cycle_id)
            self._cycles[cycle_id] = replace(current, is_active=bool(active))

    def list(self, owner_id: str) -> List[Cycle]:
        with self._lock:
            self._check_failure()
            owned = [cycle for cycle in self._cycles.values() if cycle.owner_id == str(owner_id)]
        # newest first; insertion order breaks ties between equal timestamps
        indexed = list(enumerate(owned))
        indexed.sort(key=lambda item: (item[1].created_at, item[0]), reverse=True)
        return [cycle for _, cycle in indexed]

    def get(self, cycle_id: str) -> Cycle:
        with self._lock:
            self._check_failure()
            return self._get_locked(cycle_id)


__all__ = [
    "BlockSpec",
    "CycleRepository",
    "InMemoryCycleRepository",
    "SubjectCatalog",
    "build_blocks",
]
