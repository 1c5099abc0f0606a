"""Tests covering cycle composition: ordering, uniqueness and save validation."""

from __future__ import annotations

import random
from collections import Counter

import pytest

from studycycle.composer import CompositionEditor, DraftBlock, move_element, validate_draft
from studycycle.errors import DuplicateSubjectError, PersistenceError, ValidationError
from studycycle.models import Subject
from studycycle.repository import InMemoryCycleRepository, SubjectCatalog

CATALOG = SubjectCatalog(
    [
        Subject(id="math", name="Math", color="#3b82f6"),
        Subject(id="physics", name="Physics", color="#f97316"),
        Subject(id="chemistry", name="Chemistry"),
    ]
)


def make_editor(repository=None) -> CompositionEditor:
    counter = iter(range(1000))
    return CompositionEditor(
        CATALOG,
        repository if repository is not None else InMemoryCycleRepository(),
        owner_id="user-1",
        id_factory=lambda: f"row-{next(counter)}",
    )


def test_new_editor_starts_with_placeholder_row() -> None:
    editor = make_editor()

    assert len(editor.blocks) == 1
    row = editor.blocks[0]
    assert row.subject_id == ""
    assert row.allocated_minutes == 60
    assert row.order == 0

    added = editor.add_block()
    assert added.order == 1
    assert added.allocated_minutes == 60
    assert added.has_subject is False


def test_last_row_cannot_be_removed() -> None:
    editor = make_editor()
    extra = editor.add_block()

    editor.remove_block(extra.id)
    with pytest.raises(ValidationError):
        editor.remove_block(editor.blocks[0].id)
    with pytest.raises(KeyError):
        editor.remove_block("missing")


def test_remove_rederives_order() -> None:
    editor = make_editor()
    editor.add_block()
    editor.add_block()

    editor.remove_block(editor.blocks[0].id)

    assert [row.order for row in editor.blocks] == [0, 1]


@pytest.mark.parametrize(
    ("value", "expected"),
    [("abc", 5), ("", 5), (None, 5), ("3", 5), (-20, 5), (1000, 480), ("45", 45), (12.7, 12), ("90.5", 90)],
)
def test_duration_is_clamped_on_every_update(value, expected: int) -> None:
    editor = make_editor()
    row = editor.blocks[0]

    editor.update_block(row.id, "allocated_minutes", value)

    assert editor.blocks[0].allocated_minutes == expected


def test_subject_options_disable_but_never_hide() -> None:
    editor = make_editor()
    first = editor.blocks[0]
    second = editor.add_block()
    editor.update_block(first.id, "subject_id", "math")

    other_row = {option.subject.id: option.disabled for option in editor.subject_options(second.id)}
    own_row = {option.subject.id: option.disabled for option in editor.subject_options(first.id)}

    assert other_row == {"math": True, "physics": False, "chemistry": False}
    assert own_row == {"math": False, "physics": False, "chemistry": False}


def test_selecting_used_subject_is_rejected() -> None:
    editor = make_editor()
    first = editor.blocks[0]
    second = editor.add_block()
    editor.update_block(first.id, "subject_id", "math")

    with pytest.raises(DuplicateSubjectError):
        editor.update_block(second.id, "subject_id", "math")
    with pytest.raises(ValidationError):
        editor.update_block(second.id, "subject_id", "astronomy")
    with pytest.raises(ValidationError):
        editor.update_block(second.id, "order", 3)

    # re-selecting its own subject and clearing are always allowed
    editor.update_block(first.id, "subject_id", "math")
    editor.update_block(first.id, "subject_id", "")
    editor.update_block(second.id, "subject_id", "math")
    assert editor.blocks[1].subject_id == "math"


def test_move_element_is_stable() -> None:
    assert move_element(["a", "b", "c", "d"], 0, 2) == ["b", "c", "a", "d"]
    assert move_element(["a", "b", "c", "d"], 3, 0) == ["d", "a", "b", "c"]
    assert move_element(["a", "b"], 1, 1) == ["a", "b"]
    with pytest.raises(IndexError):
        move_element(["a"], 0, 1)


def test_reorder_is_a_pure_permutation() -> None:
    editor = make_editor()
    for _ in range(5):
        editor.add_block()
    original = Counter(row.id for row in editor.blocks)
    rng = random.Random(7)

    for _ in range(50):
        size = len(editor.blocks)
        editor.reorder(rng.randrange(size), rng.randrange(size))
        assert Counter(row.id for row in editor.blocks) == original
        assert [row.order for row in editor.blocks] == list(range(size))


def test_validate_draft_rejections() -> None:
    rows = [DraftBlock(id="r1", subject_id="math", allocated_minutes=60)]

    with pytest.raises(ValidationError):
        validate_draft("", rows)
    with pytest.raises(ValidationError):
        validate_draft("   ", rows)
    with pytest.raises(ValidationError):
        validate_draft("Valid", [])
    with pytest.raises(ValidationError):
        validate_draft("Valid", [{"subject_id": "", "allocated_minutes": 60}])
    with pytest.raises(ValidationError):
        validate_draft("x" * 101, rows)
    with pytest.raises(DuplicateSubjectError):
        validate_draft("Valid", rows + [DraftBlock(id="r2", subject_id="math")])


def test_failed_save_keeps_edits() -> None:
    editor = make_editor()
    row = editor.blocks[0]
    editor.update_block(row.id, "allocated_minutes", 45)

    with pytest.raises(ValidationError):
        editor.save("Morning")
    with pytest.raises(ValidationError):
        editor.save("  ")

    assert editor.blocks[0].allocated_minutes == 45
    assert editor.is_new is True


def test_save_sends_only_rows_with_subjects() -> None:
    repository = InMemoryCycleRepository()
    editor = make_editor(repository)
    first = editor.blocks[0]
    editor.add_block()
    third = editor.add_block()
    editor.update_block(first.id, "subject_id", "physics")
    editor.update_block(first.id, "allocated_minutes", 30)
    editor.update_block(third.id, "subject_id", "math")

    assert editor.total_minutes == 90
    assert editor.duration_label == "1h 30min"

    cycle = editor.save("  Morning  ")

    assert cycle.name == "Morning"
    assert [(block.subject_id, block.allocated_minutes, block.order) for block in cycle.blocks] == [
        ("physics", 30, 0),
        ("math", 60, 1),
    ]
    assert repository.list("user-1") == [cycle]
    assert editor.is_new is False


def test_editing_replaces_all_blocks() -> None:
    repository = InMemoryCycleRepository()
    created = repository.create("user-1", "Morning", [("math", 60), ("physics", 30)])

    editor = CompositionEditor.from_cycle(created, CATALOG, repository)
    assert [row.subject_id for row in editor.blocks] == ["math", "physics"]

    editor.reorder(1, 0)
    editor.update_block(editor.blocks[1].id, "subject_id", "chemistry")
    updated = editor.save("Evening")

    assert updated.id == created.id
    assert updated.name == "Evening"
    assert [(block.subject_id, block.order) for block in updated.blocks] == [("physics", 0), ("chemistry", 1)]
    assert {block.id for block in updated.blocks}.isdisjoint({block.id for block in created.blocks})


def test_persistence_failures_surface_distinctly() -> None:
    repository = InMemoryCycleRepository()
    editor = make_editor(repository)
    editor.update_block(editor.blocks[0].id, "subject_id", "math")

    repository.fail_with = PersistenceError("storage offline")
    with pytest.raises(PersistenceError):
        editor.save("Morning")

    repository.fail_with = OSError("socket closed")
    with pytest.raises(PersistenceError) as excinfo:
        editor.save("Morning")
    assert isinstance(excinfo.value.__cause__, OSError)

    assert editor.blocks[0].subject_id == "math"
    repository.fail_with = None
    assert editor.save("Morning").name == "Morning"


def test_save_rejects_subjects_outside_catalog() -> None:
    editor = make_editor()
    with pytest.raises(ValidationError):
        editor.save("Morning", [{"subject_id": "astronomy", "allocated_minutes": 30}])
