"""Tests for the file-backed task store."""

from __future__ import annotations

import re
from pathlib import Path

import pytest
from filelock import FileLock

from taskcraft.errors import (
    IntegrityError,
    NotFoundError,
    ParseError,
    PartialWriteError,
    ValidationError,
)
from taskcraft.task_layout import OVERVIEW_FILENAME
from taskcraft.task_model import Task
from taskcraft.task_schema import TaskStatus, TaskType, WorkflowState
from taskcraft.task_storage import TaskStore
from taskcraft.templates import initialize_templates


def _names(directory: Path) -> list[str]:
    return sorted(p.name for p in directory.iterdir() if not p.name.startswith("."))


@pytest.fixture
def parent(store: TaskStore) -> tuple[str, list[str]]:
    """A parent task with three sequential subtasks."""
    task = store.create("Release pipeline")
    aggregate = store.promote_to_parent(task.id, subtasks=["Alpha step", "Beta step", "Gamma"])
    return aggregate.id, aggregate.subtask_ids


# =============================================================================
# Create / get
# =============================================================================


def test_create_writes_task_file(store: TaskStore) -> None:
    task = store.create("Implement user authentication")

    assert re.fullmatch(r"impl-user-auth-\d{2}A", task.id)
    assert task.path == store.tasks_root / "backlog" / f"{task.id}.task.md"
    assert task.path.is_file()

    loaded = store.get(task.id)
    assert loaded.title == "Implement user authentication"
    assert loaded.type is TaskType.FEATURE
    assert loaded.status is TaskStatus.TODO
    assert loaded.workflow_state is WorkflowState.BACKLOG
    assert loaded.created == task.created
    assert "Task created" in loaded.sections["log"]
    assert set(loaded.sections) >= {"instruction", "tasks", "deliverable", "log"}


def test_create_normalizes_aliases_and_keeps_custom_content(store: TaskStore) -> None:
    task = store.create(
        "Fix login crash",
        type="🐛",
        status="wip",
        priority="urgent",
        tags=["auth", "auth", "mobile"],
        workflow_state="Current",
        instruction="Reproduce on Android first.",
        tasks=["Reproduce", "Patch"],
        custom_sections={"Risks": "Session loss."},
        custom_metadata={"reviewer": "sam"},
    )

    loaded = store.get(task.id)
    assert loaded.type is TaskType.BUG
    assert loaded.status is TaskStatus.IN_PROGRESS
    assert loaded.priority.value == "highest"
    assert loaded.tags == ["auth", "mobile"]
    assert loaded.workflow_state is WorkflowState.CURRENT
    assert loaded.sections["instruction"] == "Reproduce on Android first."
    assert [item.text for item in loaded.document.checklist] == ["Reproduce", "Patch"]
    assert loaded.sections["risks"] == "Session loss."
    assert loaded.metadata == {"reviewer": "sam"}


def test_create_rejects_bad_input_without_writing(store: TaskStore) -> None:
    with pytest.raises(ValidationError, match="Valid options are"):
        store.create("Anything", status="sleeping")
    with pytest.raises(ValidationError, match="title"):
        store.create("   ")
    assert not (store.tasks_root / "backlog").exists()


def test_create_from_template(store: TaskStore) -> None:
    initialize_templates(store.config.context)

    task = store.create(
        "Login fails on Safari", template="bug", instruction="Users on Safari 17 see a 500."
    )

    loaded = store.get(task.id)
    assert loaded.type is TaskType.BUG
    assert loaded.document.get_section("Instruction") == "Users on Safari 17 see a 500."
    assert "steps to reproduce" in loaded.document.sections
    assert [i.text for i in loaded.document.checklist][0] == "Reproduce the bug"
    assert "Task created" in loaded.document.sections["log"]

    chore = store.create("Bump deps", template="maintenance", type="spike")
    assert chore.type is TaskType.SPIKE
    assert chore.document.get_section("instruction") == "Bump deps"


def test_create_with_unknown_template_writes_nothing(store: TaskStore) -> None:
    initialize_templates(store.config.context)
    with pytest.raises(NotFoundError, match="Template not found") as exc:
        store.create("Anything", template="nonexistent")
    assert "feature" in exc.value.candidates
    assert not (store.tasks_root / "backlog").exists()


def test_get_by_prefix_and_ambiguity(store: TaskStore) -> None:
    first = store.create("Fix login bug")
    second = store.create("Fix login bug")
    other = store.create("Write release notes")

    assert first.id != second.id
    assert store.get(other.id[:8]).id == other.id

    with pytest.raises(NotFoundError) as exc:
        store.get("fix-login")
    assert exc.value.candidates == sorted([first.id, second.id])

    with pytest.raises(NotFoundError, match="Task not found"):
        store.get("nothing-here")
    with pytest.raises(ValidationError):
        store.get("")


def test_same_title_gets_distinct_ids(store: TaskStore) -> None:
    """Past the 26 letter suffixes the store still hands out unique IDs."""
    ids = [store.create("Fix bug").id for _ in range(30)]
    assert len(set(ids)) == 30
    assert all(store.exists(task_id) for task_id in ids)


def test_lock_timeout_is_an_integrity_error(store: TaskStore) -> None:
    store.tasks_root.mkdir(parents=True, exist_ok=True)
    store._lock.timeout = 0.1
    other = FileLock(store.tasks_root / ".lock")
    with other:
        with pytest.raises(IntegrityError, match="store lock"):
            store.create("Blocked task")


# =============================================================================
# Update
# =============================================================================


def test_update_patches_fields_in_place(store: TaskStore) -> None:
    task = store.create("Tune cache", custom_metadata={"reviewer": "sam", "ticket": "T-1"})

    updated = store.update(
        task.id,
        title="Tune cache eviction",
        status="blocked",
        metadata={"ticket": None, "estimate": 3},
        sections={"Instruction": "Measure first."},
    )

    assert updated.path == task.path
    loaded = store.get(task.id)
    assert loaded.title == "Tune cache eviction"
    assert loaded.document.title == "Tune cache eviction"
    assert loaded.status is TaskStatus.BLOCKED
    assert loaded.metadata == {"reviewer": "sam", "estimate": 3}
    assert loaded.sections["instruction"] == "Measure first."
    assert "Task created" in loaded.sections["log"]


def test_update_rejects_bad_values(store: TaskStore) -> None:
    task = store.create("Tune cache")
    with pytest.raises(ValidationError):
        store.update(task.id, priority="whenever")
    with pytest.raises(ValidationError, match="empty"):
        store.update(task.id, title=" ")
    with pytest.raises(NotFoundError):
        store.update("ghost-01A", status="done")


def test_update_section_and_append_log(store: TaskStore) -> None:
    task = store.create("Tune cache")
    store.update_section(task.id, "deliverable", "A benchmark report.")
    store.append_log(task.id, "Ran the first benchmark")

    loaded = store.get(task.id)
    assert loaded.sections["deliverable"] == "A benchmark report."
    last = loaded.sections["log"].splitlines()[-1]
    assert last.endswith(": Ran the first benchmark")


# =============================================================================
# Moves
# =============================================================================


def test_move_keeps_identity_and_updates_status(store: TaskStore) -> None:
    task = store.create("Ship dark mode", instruction="Toggle in settings.")
    old_path = task.path

    moved = store.move(task.id, "current")

    assert not old_path.exists()
    assert moved.path == store.tasks_root / "current" / f"{task.id}.task.md"
    loaded = store.get(task.id)
    assert loaded.id == task.id
    assert loaded.created == task.created
    assert loaded.status is TaskStatus.IN_PROGRESS
    assert loaded.workflow_state is WorkflowState.CURRENT
    assert loaded.sections["instruction"] == "Toggle in settings."


def test_move_to_archive_uses_month_bucket(store: TaskStore) -> None:
    task = store.create("Old cleanup")
    moved = store.move(task.id, WorkflowState.ARCHIVE, bucket="2025-05")

    assert moved.path == store.tasks_root / "archive" / "2025-05" / f"{task.id}.task.md"
    assert store.get(task.id).status is TaskStatus.DONE
    assert str(store.get(task.id).location) == "archive/2025-05"


def test_move_without_status_update(store: TaskStore) -> None:
    task = store.create("Ship dark mode", status="blocked")
    store.move(task.id, "current", update_status=False)
    assert store.get(task.id).status is TaskStatus.BLOCKED


def test_move_to_same_state_changes_nothing(store: TaskStore) -> None:
    task = store.create("Ship dark mode")
    before = task.path.read_text()

    store.move(task.id, "backlog")

    assert task.path.read_text() == before


def test_move_rejects_bad_targets(store: TaskStore) -> None:
    task = store.create("Ship dark mode")
    with pytest.raises(ValidationError):
        store.move(task.id, "limbo")
    with pytest.raises(ValidationError, match="archive bucket"):
        store.move(task.id, "archive", bucket="May 2025")
    assert task.path.exists()


def test_duplicate_id_on_disk_is_an_integrity_error(store: TaskStore) -> None:
    """A copy of a task file in another state makes its ID ambiguous."""
    task = store.create("Ship dark mode")
    clash = store.tasks_root / "current" / f"{task.id}.task.md"
    clash.parent.mkdir(parents=True)
    clash.write_text(task.path.read_text())

    with pytest.raises(IntegrityError, match="more than once"):
        store.move(task.id, "current")
    with pytest.raises(IntegrityError):
        store.get(task.id)


def test_failed_unlink_reports_partial_write(
    store: TaskStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    task = store.create("Ship dark mode")

    def refuse(self: Path, missing_ok: bool = False) -> None:
        raise PermissionError("read-only directory")

    monkeypatch.setattr(Path, "unlink", refuse)
    with pytest.raises(PartialWriteError) as exc:
        store.move(task.id, "current")

    new_path = store.tasks_root / "current" / f"{task.id}.task.md"
    assert exc.value.changed_paths == [new_path]
    assert new_path.exists()
    assert task.path.exists()


# =============================================================================
# Listing
# =============================================================================


def test_list_filters_and_order(store: TaskStore) -> None:
    feature = store.create("Add search", tags=["ui"], area="frontend")
    bug = store.create("Fix search crash", type="bug", workflow_state="current", assignee="kim")
    done = store.create("Old search")
    store.move(done.id, "archive")

    assert [t.id for t in store.list()] == [bug.id, feature.id]
    assert len(store.list(include_archived=True)) == 3
    assert [t.id for t in store.list(workflow_states=["archive"])] == [done.id]

    assert [t.id for t in store.list(type="bugs")] == [bug.id]
    assert [t.id for t in store.list(tags=["UI", "other"])] == [feature.id]
    assert [t.id for t in store.list(area="Frontend")] == [feature.id]
    assert [t.id for t in store.list(assignee="kim")] == [bug.id]
    assert [t.id for t in store.list(status="done", include_archived=True)] == [done.id]


def test_list_skips_unreadable_files(store: TaskStore, caplog: pytest.LogCaptureFixture) -> None:
    task = store.create("Add search")
    broken = store.tasks_root / "backlog" / "broken-05A.task.md"
    broken.write_text("no header here\n")

    assert [t.id for t in store.list()] == [task.id]
    assert "broken-05A" in caplog.text


@pytest.mark.parametrize("bad_tags", ["5", "true", "{a: b}"])
def test_scalar_tags_in_header_do_not_break_listing(store: TaskStore, bad_tags: str) -> None:
    """A hand-edited non-list tags value is dropped; the other tasks still list."""
    edited = store.create("Add search", tags=["ui"])
    other = store.create("Fix search crash")
    edited.path.write_text(
        edited.path.read_text().replace("tags:\n- ui\n", f"tags: {bad_tags}\n")
    )

    listed = {t.id: t for t in store.list()}
    assert set(listed) == {edited.id, other.id}
    assert listed[edited.id].tags == []
    assert store.get(edited.id).tags == []


def test_bad_sequence_in_header_is_a_parse_error(store: TaskStore) -> None:
    task = store.create("Add search")
    good = store.create("Fix search crash")
    task.path.write_text(
        task.path.read_text().replace("area: general\n", "area: general\nsequence: first\n")
    )

    with pytest.raises(ParseError, match="sequence"):
        store.get(task.id)
    assert [t.id for t in store.list()] == [good.id]


# =============================================================================
# Parent tasks and subtasks
# =============================================================================


def test_promote_to_parent_creates_directory(store: TaskStore, parent) -> None:
    parent_id, sub_ids = parent
    directory = store.tasks_root / "backlog" / parent_id

    assert not (store.tasks_root / "backlog" / f"{parent_id}.task.md").exists()
    assert _names(directory) == [
        OVERVIEW_FILENAME,
        f"01_{sub_ids[0]}.task.md",
        f"02_{sub_ids[1]}.task.md",
        f"03_{sub_ids[2]}.task.md",
    ]

    overview = store.get(parent_id)
    assert overview.is_parent
    subtask = store.get(sub_ids[1])
    assert subtask.parent == parent_id
    assert subtask.sequence == "02"
    assert [t.id for t in store.list(parent_id=parent_id)] == sub_ids


def test_promote_rejects_parents_and_subtasks(store: TaskStore, parent) -> None:
    parent_id, sub_ids = parent
    with pytest.raises(ValidationError, match="already a parent"):
        store.promote_to_parent(parent_id)
    with pytest.raises(ValidationError, match="cannot be promoted"):
        store.promote_to_parent(sub_ids[0])


def test_list_can_hide_parents_or_subtasks(store: TaskStore, parent) -> None:
    parent_id, sub_ids = parent
    assert [t.id for t in store.list(include_subtasks=False)] == [parent_id]
    assert [t.id for t in store.list(include_parent_tasks=False)] == sub_ids


def test_parallel_then_insert_after(store: TaskStore, parent) -> None:
    """A01 B02 C03 -> parallel(B, C) -> new D after A -> D02 B03 C03."""
    parent_id, (a, b, c) = parent
    directory = store.tasks_root / "backlog" / parent_id

    store.make_tasks_parallel([b, c])
    assert store.get_parent(parent_id).parallel_groups() == {"01": [a], "02": [b, c]}
    assert store.get_next_sequence_number(parent_id) == "03"

    d = store.add_subtask(parent_id, "Delta step", after=a)
    assert d.sequence == "02"
    assert _names(directory) == sorted(
        [
            OVERVIEW_FILENAME,
            f"01_{a}.task.md",
            f"02_{d.id}.task.md",
            f"03_{b}.task.md",
            f"03_{c}.task.md",
        ]
    )
    assert store.get(b).sequence == "03"
    assert store.is_valid_sequence(parent_id)

    store.insert_task_after(parent_id, d.id, c)
    groups = store.get_parent(parent_id).parallel_groups()
    assert groups == {"01": [a], "02": [d.id], "03": [c], "04": [b]}
    assert store.is_valid_sequence(parent_id)


def test_add_subtask_appends_by_default(store: TaskStore, parent) -> None:
    parent_id, sub_ids = parent
    task = store.add_subtask(parent_id, "Final check", priority="high")
    assert task.sequence == "04"
    assert task.parent == parent_id
    assert store.get_parent(parent_id).subtask_ids == [*sub_ids, task.id]


def test_add_subtask_needs_a_parent(store: TaskStore) -> None:
    simple = store.create("Lonely task")
    with pytest.raises(ValidationError, match="not a parent"):
        store.add_subtask(simple.id, "Child")


def test_reorder_subtasks(store: TaskStore, parent) -> None:
    parent_id, (a, b, c) = parent
    store.reorder_subtasks(parent_id, {a: 3, c: 1})
    assert store.get_parent(parent_id).subtask_ids == [c, b, a]
    assert store.is_valid_sequence(parent_id)


def test_make_tasks_parallel_needs_siblings(store: TaskStore, parent) -> None:
    parent_id, sub_ids = parent
    loose = store.create("Loose task")
    with pytest.raises(ValidationError, match="Not subtasks"):
        store.make_tasks_parallel([sub_ids[0], loose.id])


def test_hand_edited_header_breaks_sequence(store: TaskStore, parent) -> None:
    parent_id, sub_ids = parent
    path = store.get(sub_ids[0]).path
    path.write_text(path.read_text().replace("sequence: '01'", "sequence: '05'"))
    assert not store.is_valid_sequence(parent_id)


def test_subtask_cannot_move_alone(store: TaskStore, parent) -> None:
    _, sub_ids = parent
    with pytest.raises(ValidationError, match="move its parent"):
        store.move(sub_ids[0], "current")


def test_moving_parent_moves_its_subtasks(store: TaskStore, parent) -> None:
    parent_id, sub_ids = parent
    store.move(parent_id, "current")

    assert not (store.tasks_root / "backlog" / parent_id).exists()
    assert store.get(parent_id).status is TaskStatus.IN_PROGRESS
    for sub_id in sub_ids:
        assert store.get(sub_id).workflow_state is WorkflowState.CURRENT
    assert store.is_valid_sequence(parent_id)


# =============================================================================
# Delete
# =============================================================================


def test_delete_simple_task(store: TaskStore) -> None:
    task = store.create("Throwaway")
    assert store.delete(task.id) == [task.id]
    assert not store.exists(task.id)
    with pytest.raises(NotFoundError):
        store.delete(task.id)


def test_delete_parent_releases_subtasks(store: TaskStore, parent) -> None:
    parent_id, sub_ids = parent
    assert store.delete(parent_id) == [parent_id]

    assert not (store.tasks_root / "backlog" / parent_id).exists()
    for sub_id in sub_ids:
        released = store.get(sub_id)
        assert released.parent is None
        assert released.sequence is None
        assert released.path == store.tasks_root / "backlog" / f"{sub_id}.task.md"
        assert "parent" not in Task.from_file(released.path).to_frontmatter()


def test_delete_parent_keeps_supporting_files(store: TaskStore, parent) -> None:
    """Without cascade a parent holding other files is left untouched."""
    parent_id, sub_ids = parent
    directory = store.tasks_root / "backlog" / parent_id
    notes = directory / "design-notes.md"
    notes.write_text("Keep me.")
    before = _names(directory)

    with pytest.raises(IntegrityError, match="design-notes.md"):
        store.delete(parent_id)

    assert notes.read_text() == "Keep me."
    assert _names(directory) == before
    assert store.get(sub_ids[0]).parent == parent_id


def test_delete_parent_with_cascade_removes_supporting_files(
    store: TaskStore, parent
) -> None:
    parent_id, sub_ids = parent
    directory = store.tasks_root / "backlog" / parent_id
    (directory / "design-notes.md").write_text("Going too.")

    assert store.delete(parent_id, cascade=True) == [parent_id, *sub_ids]
    assert not directory.exists()


def test_delete_parent_with_cascade(store: TaskStore, parent) -> None:
    parent_id, sub_ids = parent
    assert store.delete(parent_id, cascade=True) == [parent_id, *sub_ids]
    assert store.list() == []
