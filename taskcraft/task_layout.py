"""On-disk layout of a task store.

    {tasks root}/
        .lock
        backlog/
            fix-login-05A.task.md
            impl-auth-05B/                  # parent task
                00_overview.task.md
                01_db-schema-05C.task.md
                02_api-05D.task.md
                02_ui-05E.task.md           # parallel with 02_api
        current/
        archive/
            2025-05/
                old-task-04A.task.md

File and directory names carry the task ID, so IDs can be enumerated without
parsing any file. A task's workflow location is whatever directory it is in.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from taskcraft.errors import ValidationError
from taskcraft.task_model import WorkflowLocation
from taskcraft.task_schema import WorkflowState

TASK_SUFFIX = ".task.md"
OVERVIEW_SEQUENCE = "00"
OVERVIEW_FILENAME = f"{OVERVIEW_SEQUENCE}_overview{TASK_SUFFIX}"
LOCK_FILENAME = ".lock"

ARCHIVE_BUCKET_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
_SUBTASK_FILE_RE = re.compile(r"^(\d{2})_(.+)\.task\.md$")

# Enumeration order for listings
WORKFLOW_ORDER = (WorkflowState.CURRENT, WorkflowState.BACKLOG, WorkflowState.ARCHIVE)


@dataclass(frozen=True)
class TaskEntry:
    """One task found on disk.

    For a parent task ``path`` is the overview file and ``directory`` the
    parent directory; for a subtask ``directory`` is its parent's directory.
    """

    task_id: str
    path: Path
    location: WorkflowLocation
    is_parent: bool = False
    parent_id: str | None = None
    sequence: str | None = None
    directory: Path | None = None


def archive_bucket(when: datetime | None = None) -> str:
    """YYYY-MM bucket name for an archive move."""
    return f"{(when or datetime.now()):%Y-%m}"


def workflow_dir(tasks_root: Path, location: WorkflowLocation) -> Path:
    """Directory holding tasks at a workflow location."""
    base = tasks_root / location.workflow_state.value
    if location.workflow_state is WorkflowState.ARCHIVE and location.archive_bucket:
        if not ARCHIVE_BUCKET_RE.match(location.archive_bucket):
            raise ValidationError(
                f"Invalid archive bucket: {location.archive_bucket}. Expected YYYY-MM",
                field="archive_bucket",
            )
        return base / location.archive_bucket
    return base


def task_filename(task_id: str) -> str:
    return f"{task_id}{TASK_SUFFIX}"


def subtask_filename(sequence: str, task_id: str) -> str:
    return f"{sequence}_{task_id}{TASK_SUFFIX}"


def parse_subtask_filename(name: str) -> tuple[str, str] | None:
    """(sequence, task_id) for a subtask filename; None for anything else."""
    if name == OVERVIEW_FILENAME:
        return None
    match = _SUBTASK_FILE_RE.match(name)
    if not match:
        return None
    return match.group(1), match.group(2)


def is_parent_dir(path: Path) -> bool:
    return path.is_dir() and (path / OVERVIEW_FILENAME).is_file()


def _visible(path: Path) -> bool:
    return not path.name.startswith(".")


def iter_workflow_dirs(
    tasks_root: Path, states: Iterable[WorkflowState] | None = None
) -> Iterator[tuple[Path, WorkflowLocation]]:
    """Existing directories that hold tasks, in listing order.

    Archive yields its bucket directories (newest first) and then the archive
    root itself for tasks that were archived without a bucket.
    """
    wanted = set(states) if states is not None else set(WORKFLOW_ORDER)
    for state in WORKFLOW_ORDER:
        if state not in wanted:
            continue
        base = tasks_root / state.value
        if not base.is_dir():
            continue
        if state is WorkflowState.ARCHIVE:
            buckets = sorted(
                (p for p in base.iterdir() if p.is_dir() and ARCHIVE_BUCKET_RE.match(p.name)),
                reverse=True,
            )
            for bucket in buckets:
                yield bucket, WorkflowLocation(state, bucket.name)
        yield base, WorkflowLocation(state)


def iter_subtask_files(parent_dir: Path) -> list[tuple[str, str, Path]]:
    """(sequence, task_id, path) for each subtask file, in filename order."""
    found = []
    for path in sorted(parent_dir.iterdir()):
        if not path.is_file() or not _visible(path):
            continue
        parsed = parse_subtask_filename(path.name)
        if parsed:
            found.append((parsed[0], parsed[1], path))
    return found


def iter_task_entries(
    tasks_root: Path,
    states: Iterable[WorkflowState] | None = None,
    *,
    include_subtasks: bool = True,
) -> Iterator[TaskEntry]:
    """Every simple task, parent task and (optionally) subtask under the root."""
    for directory, location in iter_workflow_dirs(tasks_root, states):
        for path in sorted(directory.iterdir()):
            if not _visible(path):
                continue
            if path.is_file() and path.name.endswith(TASK_SUFFIX):
                task_id = path.name[: -len(TASK_SUFFIX)]
                yield TaskEntry(task_id=task_id, path=path, location=location)
            elif is_parent_dir(path):
                yield TaskEntry(
                    task_id=path.name,
                    path=path / OVERVIEW_FILENAME,
                    location=location,
                    is_parent=True,
                    directory=path,
                )
                if include_subtasks:
                    for sequence, task_id, sub_path in iter_subtask_files(path):
                        yield TaskEntry(
                            task_id=task_id,
                            path=sub_path,
                            location=location,
                            parent_id=path.name,
                            sequence=sequence,
                            directory=path,
                        )
