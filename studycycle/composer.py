"""
Composition editor for study cycles.

The editor owns an ordered list of draft rows while the user builds or edits
a cycle. Rows are only validated when the cycle is saved; until then a row may
have no subject selected. Ordering is derived from list position alone, so a
drag gesture reduces to :func:`move_element` followed by :func:`rerank`.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from .errors import DuplicateSubjectError, PersistenceError, ValidationError
from .models import (
    DEFAULT_BLOCK_MINUTES,
    MAX_CYCLE_NAME_LENGTH,
    Cycle,
    Subject,
    clamp_minutes,
    format_duration,
)
from .repository import BlockSpec, CycleRepository, SubjectCatalog

LOG = logging.getLogger(__name__)

T = TypeVar("T")

EDITABLE_FIELDS = ("subject_id", "allocated_minutes")


def move_element(items: Sequence[T], from_index: int, to_index: int) -> List[T]:
    """
    Return a copy of ``items`` with the element at ``from_index`` moved to
    ``to_index``; every other element keeps its relative position.
    """

    result = list(items)
    size = len(result)
    if not 0 <= from_index < size or not 0 <= to_index < size:
        raise IndexError(f"cannot move {from_index} -> {to_index} in a list of {size}")
    element = result.pop(from_index)
    result.insert(to_index, element)
    return result


@dataclass
class DraftBlock:
    id: str
    subject_id: str = ""
    allocated_minutes: int = DEFAULT_BLOCK_MINUTES
    order: int = 0

    @property
    def has_subject(self) -> bool:
        return bool(self.subject_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subjectId": self.subject_id,
            "allocatedMinutes": int(self.allocated_minutes),
            "order": int(self.order),
        }


@dataclass(frozen=True, slots=True)
class SubjectOption:
    subject: Subject
    disabled: bool = False

    def to_dict(self) -> dict:
        payload = self.subject.to_dict()
        payload["disabled"] = bool(self.disabled)
        return payload


def rerank(blocks: Sequence[DraftBlock]) -> List[DraftBlock]:
    for index, block in enumerate(blocks):
        block.order = index
    return list(blocks)


def _subject_of(block: object) -> str:
    if isinstance(block, dict):
        raw = block.get("subject_id", block.get("subjectId", block.get("subject")))
    else:
        raw = getattr(block, "subject_id", "")
    return str(raw or "").strip()


def _minutes_of(block: object) -> int:
    if isinstance(block, dict):
        raw = block.get("allocated_minutes", block.get("allocatedMinutes", block.get("minutes")))
    else:
        raw = getattr(block, "allocated_minutes", None)
    return clamp_minutes(DEFAULT_BLOCK_MINUTES if raw is None else raw)


def validate_draft(name: Optional[str], blocks: Sequence[object]) -> Tuple[str, List[BlockSpec]]:
    """
    Check a draft and return the trimmed name plus the ``(subject_id, minutes)``
    pairs that will be persisted, in order.

    ``blocks`` may hold :class:`DraftBlock` rows, :class:`Block` instances or
    plain mappings. Rows without a subject are dropped.
    """

    clean_name = str(name or "").strip()
    if not clean_name:
        raise ValidationError("Give your cycle a name.")
    if len(clean_name) > MAX_CYCLE_NAME_LENGTH:
        raise ValidationError(f"Cycle name must be at most {MAX_CYCLE_NAME_LENGTH} characters.")

    specs: List[BlockSpec] = []
    seen = set()
    for block in blocks or ():
        subject_id = _subject_of(block)
        if not subject_id:
            continue
        if subject_id in seen:
            raise DuplicateSubjectError(f"Subject '{subject_id}' appears more than once in the cycle.")
        seen.add(subject_id)
        specs.append((subject_id, _minutes_of(block)))

    if not specs:
        raise ValidationError("Add at least one subject to the cycle.")
    return clean_name, specs


class CompositionEditor:
    """
    Editable block list for a new or existing cycle.
    """

    def __init__(
        self,
        catalog: SubjectCatalog,
        repository: Optional[CycleRepository] = None,
        *,
        owner_id: Optional[str] = None,
        cycle: Optional[Cycle] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self.catalog = catalog
        self.repository = repository
        self.cycle_id: Optional[str] = cycle.id if cycle is not None else None
        self.owner_id = owner_id if owner_id is not None else (cycle.owner_id if cycle else None)
        self.name = cycle.name if cycle is not None else ""
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex[:8])
        if cycle is not None and cycle.blocks:
            self._blocks = [
                DraftBlock(
                    id=block.id,
                    subject_id=block.subject_id,
                    allocated_minutes=clamp_minutes(block.allocated_minutes),
                )
                for block in sorted(cycle.blocks, key=lambda b: b.order)
            ]
        else:
            self._blocks = [DraftBlock(id=self._id_factory())]
        rerank(self._blocks)

    @classmethod
    def from_cycle(
        cls,
        cycle: Cycle,
        catalog: SubjectCatalog,
        repository: Optional[CycleRepository] = None,
        **kwargs,
    ) -> "CompositionEditor":
        return cls(catalog, repository, cycle=cycle, **kwargs)

    # ------------------------------------------------------------------ rows

    @property
    def blocks(self) -> List[DraftBlock]:
        return list(self._blocks)

    @property
    def is_new(self) -> bool:
        return self.cycle_id is None

    def _index_of(self, block_id: str) -> int:
        for index, block in enumerate(self._blocks):
            if block.id == block_id:
                return index
        raise KeyError(block_id)

    def add_block(self) -> DraftBlock:
        block = DraftBlock(id=self._id_factory(), order=len(self._blocks))
        self._blocks.append(block)
        return block

    def remove_block(self, block_id: str) -> None:
        index = self._index_of(block_id)
        if len(self._blocks) <= 1:
            raise ValidationError("A cycle keeps at least one row to edit.")
        del self._blocks[index]
        rerank(self._blocks)

    def update_block(self, block_id: str, field: str, value: object) -> DraftBlock:
        block = self._blocks[self._index_of(block_id)]
        if field in {"allocated_minutes", "allocatedMinutes", "minutes"}:
            block.allocated_minutes = clamp_minutes(value)
        elif field in {"subject_id", "subjectId", "subject"}:
            subject_id = str(value or "").strip()
            if subject_id:
                if subject_id not in self.catalog:
                    raise ValidationError(f"Unknown subject '{subject_id}'.")
                if subject_id in self.used_subject_ids(exclude=block_id):
                    raise DuplicateSubjectError(f"Subject '{subject_id}' is already in this cycle.")
            block.subject_id = subject_id
        else:
            raise ValidationError(f"Field '{field}' cannot be edited; expected one of {EDITABLE_FIELDS}.")
        return block

    def reorder(self, from_index: int, to_index: int) -> List[DraftBlock]:
        self._blocks = rerank(move_element(self._blocks, from_index, to_index))
        return self.blocks

    # ------------------------------------------------------------- derived

    def used_subject_ids(self, *, exclude: Optional[str] = None) -> set:
        return {block.subject_id for block in self._blocks if block.subject_id and block.id != exclude}

    def subject_options(self, block_id: str) -> List[SubjectOption]:
        """
        Catalog entries for one row's subject picker. Subjects held by other
        rows are disabled, never hidden; the row's own pick stays enabled.
        """

        self._index_of(block_id)
        taken = self.used_subject_ids(exclude=block_id)
        return [SubjectOption(subject=subject, disabled=subject.id in taken) for subject in self.catalog]

    @property
    def valid_blocks(self) -> List[DraftBlock]:
        return [block for block in self._blocks if block.has_subject]

    @property
    def total_minutes(self) -> int:
        return sum(block.allocated_minutes for block in self.valid_blocks)

    @property
    def duration_label(self) -> str:
        return format_duration(self.total_minutes)

    def summary(self) -> dict:
        return {
            "subjects": len(self.valid_blocks),
            "totalMinutes": self.total_minutes,
            "label": self.duration_label,
        }

    # ---------------------------------------------------------------- save

    def save(self, name: Optional[str] = None, blocks: Optional[Sequence[object]] = None) -> Cycle:
        """
        Validate and persist the draft, returning the stored cycle.

        Raises :class:`ValidationError` for an unusable draft and
        :class:`PersistenceError` when the store fails. Neither clears the
        rows being edited.
        """

        candidate_name = self.name if name is None else name
        clean_name, specs = validate_draft(candidate_name, self._blocks if blocks is None else blocks)
        unknown = [subject_id for subject_id, _ in specs if subject_id not in self.catalog]
        if unknown:
            raise ValidationError(f"Unknown subject(s): {', '.join(unknown)}.")
        if self.repository is None:
            raise PersistenceError("No cycle store configured.")

        try:
            if self.cycle_id is None:
                if not self.owner_id:
                    raise ValidationError("A new cycle needs an owner.")
                stored = self.repository.create(self.owner_id, clean_name, specs)
            else:
                self.repository.update(self.cycle_id, clean_name, specs)
                stored = self.repository.get(self.cycle_id)
        except (ValidationError, PersistenceError):
            raise
        except Exception as exc:
            LOG.warning("Saving cycle '%s' failed: %s", clean_name, exc)
            raise PersistenceError(f"Could not save cycle: {exc}") from exc

        self.cycle_id = stored.id
        self.name = stored.name
        LOG.info("Saved cycle %s (%s, %s)", stored.id, clean_name, format_duration(stored.total_minutes))
        return stored


__all__ = [
    "CompositionEditor",
    "DraftBlock",
    "SubjectOption",
    "move_element",
    "rerank",
    "validate_draft",
]
