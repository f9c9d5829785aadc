"""Workflow state store: CRUD, workflow moves and parent/subtask operations.

Tasks live under the centralized tasks directory of the project (see
taskcraft.paths), laid out as described in taskcraft.task_layout. A task's
workflow location is its directory; every mutating operation keeps file
placement, header fields and parent/subtask references in step.

Single-file writes are atomic (temp file in the same directory, then
rename). Operations that touch several files stop at the first failure and
raise PartialWriteError naming the files already changed; nothing is rolled
back. ID generation and the write of the new file happen under one advisory
store lock, so two processes cannot hand out the same ID.

Usage:
    from taskcraft.config import StoreConfig
    from taskcraft.task_storage import TaskStore

    store = TaskStore(StoreConfig.load())
    task = store.create("Implement user authentication", type="feature")
    store.move(task.id, "current")
    parent = store.promote_to_parent(task.id, subtasks=["DB schema", "API"])
    store.list(status="in progress")
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

from taskcraft.config import ProjectOptions, StoreConfig
from taskcraft.errors import (
    IntegrityError,
    NotFoundError,
    PartialWriteError,
    ValidationError,
)
from taskcraft.paths import get_tasks_path
from taskcraft.subtask_sequencing import (
    get_next_sequence_number,
    insert_task_after,
    make_tasks_parallel,
    reorder_subtasks,
    sequence_problems,
)
from taskcraft.task_document import (
    ChecklistItem,
    TaskDocument,
    add_log_entry,
    ensure_required_sections,
)
from taskcraft.task_ids import generate_task_id, list_task_ids
from taskcraft.task_layout import (
    LOCK_FILENAME,
    OVERVIEW_FILENAME,
    WORKFLOW_ORDER,
    TaskEntry,
    archive_bucket,
    iter_subtask_files,
    iter_task_entries,
    subtask_filename,
    task_filename,
    workflow_dir,
)
from taskcraft.task_model import (
    ParentTask,
    SubtaskRef,
    Task,
    WorkflowLocation,
)
from taskcraft.task_schema import (
    TaskPriority,
    TaskStatus,
    TaskType,
    WorkflowState,
    normalize,
)
from taskcraft.templates import apply_template, find_template, list_templates

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 10

# Status a task takes on when moved into a workflow state
STATUS_FOR_WORKFLOW: dict[WorkflowState, TaskStatus] = {
    WorkflowState.BACKLOG: TaskStatus.TODO,
    WorkflowState.CURRENT: TaskStatus.IN_PROGRESS,
    WorkflowState.ARCHIVE: TaskStatus.DONE,
}


def _now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def _atomic_write(path: Path, content: str) -> None:
    """Write a file through a hidden temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(suffix=".tmp", prefix=f".{path.name}_", dir=path.parent)
    temp = Path(temp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        temp.replace(path)
    except BaseException:
        temp.unlink(missing_ok=True)
        raise


def _normalize_state(value: WorkflowState | str) -> WorkflowState:
    return WorkflowState(normalize("workflow_state", value))


class TaskStore:
    """Task store for one project.

    Args:
        config: Resolved project configuration; the tasks directory is taken
            from its path context
    """

    def __init__(self, config: StoreConfig):
        self.config = config
        self.tasks_root = get_tasks_path(config.context)
        self._lock = FileLock(self.tasks_root / LOCK_FILENAME, timeout=LOCK_TIMEOUT)

    @property
    def options(self) -> ProjectOptions:
        return self.config.options

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the store lock; reentrant within this store."""
        self.tasks_root.mkdir(parents=True, exist_ok=True)
        try:
            self._lock.acquire()
        except Timeout as e:
            raise IntegrityError(
                f"Timed out after {LOCK_TIMEOUT}s waiting for the store lock {e.lock_file}"
            ) from e
        try:
            yield
        finally:
            self._lock.release()

    # =========================================================================
    # Lookup
    # =========================================================================

    def _entries(self, states: Iterable[WorkflowState] | None = None) -> list[TaskEntry]:
        return list(iter_task_entries(self.tasks_root, states))

    def _find_entry(self, task_id: str) -> TaskEntry:
        """Resolve an ID (exact, else unambiguous prefix) to its entry.

        Raises:
            ValidationError: Empty ID
            NotFoundError: No match, or several prefix matches
            IntegrityError: The same ID exists in more than one place
        """
        if not task_id or not task_id.strip():
            raise ValidationError("Task ID is required", field="task_id")
        task_id = task_id.strip()
        entries = self._entries()

        exact = [e for e in entries if e.task_id == task_id]
        if len(exact) == 1:
            return exact[0]
        if len(exact) > 1:
            places = ", ".join(str(e.path) for e in exact)
            raise IntegrityError(f"Task ID {task_id} exists more than once: {places}")

        matches = [e for e in entries if e.task_id.startswith(task_id)]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise NotFoundError(f"Task not found: {task_id}")
        candidates = sorted(e.task_id for e in matches)
        raise NotFoundError(
            f"Task ID {task_id} is ambiguous, matches: {', '.join(candidates)}",
            candidates=candidates,
        )

    def _load(self, entry: TaskEntry) -> Task:
        task = Task.from_file(entry.path)
        if task.id != entry.task_id:
            logger.warning(
                "Task file %s has id '%s' in its header, expected '%s'",
                entry.path,
                task.id,
                entry.task_id,
            )
        task.location = entry.location
        task.is_parent = entry.is_parent
        if entry.parent_id:
            task.parent = entry.parent_id
        return task

    def _write(self, task: Task, path: Path) -> None:
        _atomic_write(path, task.to_markdown())
        task.path = path

    def get(self, task_id: str) -> Task:
        """Load a task by ID or unambiguous ID prefix.

        Raises:
            NotFoundError: No task, or an ambiguous prefix
            ParseError: The task file cannot be parsed
        """
        return self._load(self._find_entry(task_id))

    def exists(self, task_id: str) -> bool:
        return task_id in list_task_ids(self.tasks_root)

    # =========================================================================
    # Create / update
    # =========================================================================

    def _new_task(
        self,
        task_id: str,
        title: str,
        fields: dict[str, Any],
        *,
        instruction: str | None,
        tasks: list[str] | None,
        deliverable: str | None,
        custom_sections: Mapping[str, str] | None,
        custom_metadata: Mapping[str, Any] | None,
        parent: str | None = None,
        sequence: str | None = None,
        template: str | None = None,
    ) -> Task:
        if template is not None:
            document = apply_template(
                template,
                title,
                instruction=instruction,
                tasks=tasks,
                deliverable=deliverable,
                custom_sections=custom_sections,
            )
        else:
            document = ensure_required_sections(TaskDocument(title=title))
            if instruction:
                document.set_section("instruction", instruction)
            if tasks:
                document.set_checklist([ChecklistItem(done=False, text=t) for t in tasks])
            if deliverable:
                document.set_section("deliverable", deliverable)
            for name, content in (custom_sections or {}).items():
                document.set_section(name, content)
        add_log_entry(document, "Task created")

        now = _now()
        return Task(
            id=task_id,
            title=title,
            parent=parent,
            sequence=sequence,
            created=now,
            updated=now,
            metadata=dict(custom_metadata or {}),
            document=document,
            **fields,
        )

    def _normalized_fields(
        self,
        *,
        type: TaskType | str | None = None,
        status: TaskStatus | str | None = None,
        priority: TaskPriority | str | None = None,
        area: str | None = None,
        tags: Iterable[str] | None = None,
        assignee: str | None = None,
        partial: bool = False,
    ) -> dict[str, Any]:
        """Normalize caller input; with ``partial`` only given fields are returned."""
        fields: dict[str, Any] = {}
        if type is not None or not partial:
            fields["type"] = TaskType(normalize("type", type))
        if status is not None or not partial:
            fields["status"] = TaskStatus(normalize("status", status))
        if priority is not None or not partial:
            fields["priority"] = TaskPriority(normalize("priority", priority))
        if area is not None:
            fields["area"] = area.strip() or "general"
        if tags is not None:
            fields["tags"] = list(dict.fromkeys(t.strip() for t in tags if t.strip()))
        if assignee is not None:
            fields["assignee"] = assignee.strip() or None
        return fields

    def create(
        self,
        title: str,
        *,
        type: TaskType | str | None = None,
        status: TaskStatus | str | None = None,
        priority: TaskPriority | str | None = None,
        area: str | None = None,
        tags: Iterable[str] | None = None,
        assignee: str | None = None,
        workflow_state: WorkflowState | str | None = None,
        instruction: str | None = None,
        tasks: list[str] | None = None,
        deliverable: str | None = None,
        custom_sections: Mapping[str, str] | None = None,
        custom_metadata: Mapping[str, Any] | None = None,
        template: str | None = None,
    ) -> Task:
        """Create a task with a fresh ID.

        Args:
            title: Task title (also the source of the ID)
            type: Task type; any alias accepted (default feature)
            status: Status; any alias accepted (default todo)
            priority: Priority; any alias accepted (default medium)
            area: Free-text grouping
            tags: Tags (duplicates dropped)
            assignee: Who owns the task
            workflow_state: Where to create it (default from project options)
            instruction: Initial Instruction section
            tasks: Initial checklist items
            deliverable: Initial Deliverable section
            custom_sections: Additional sections, in order
            custom_metadata: Additional header keys
            template: Template to start from (id or type alias, see
                taskcraft.templates); its type is the default type

        Returns:
            The written task

        Raises:
            ValidationError: Empty title or an illegal enum value
            NotFoundError: Unknown template
        """
        if not title or not title.strip():
            raise ValidationError("Task title is required", field="title")
        title = title.strip()
        template_content = None
        if template is not None:
            info = find_template(self.config.context, template)
            if info is None:
                raise NotFoundError(
                    f"Template not found: {template}",
                    candidates=[t.id for t in list_templates(self.config.context)],
                )
            template_content = info.path.read_text(encoding="utf-8")
            if type is None and info.type is not None:
                type = info.type
        fields = self._normalized_fields(
            type=type, status=status, priority=priority, area=area, tags=tags, assignee=assignee
        )
        state = _normalize_state(workflow_state or self.options.default_workflow_state)
        location = WorkflowLocation(
            state, archive_bucket() if state is WorkflowState.ARCHIVE else None
        )

        with self._locked():
            task_id = generate_task_id(title, list_task_ids(self.tasks_root), options=self.options)
            task = self._new_task(
                task_id,
                title,
                fields,
                instruction=instruction,
                tasks=tasks,
                deliverable=deliverable,
                custom_sections=custom_sections,
                custom_metadata=custom_metadata,
                template=template_content,
            )
            task.location = location
            self._write(task, workflow_dir(self.tasks_root, location) / task_filename(task_id))

        logger.info("Created task %s in %s", task_id, location)
        return task

    def update(
        self,
        task_id: str,
        *,
        title: str | None = None,
        type: TaskType | str | None = None,
        status: TaskStatus | str | None = None,
        priority: TaskPriority | str | None = None,
        area: str | None = None,
        tags: Iterable[str] | None = None,
        assignee: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        sections: Mapping[str, str] | None = None,
    ) -> Task:
        """Patch header fields and/or replace sections. The file stays where it is.

        ``metadata`` is merged into the custom header keys; a None value
        removes that key. Sections not named in ``sections`` are kept.

        Raises:
            NotFoundError: Unknown ID
            ValidationError: Empty title or an illegal enum value
        """
        fields = self._normalized_fields(
            type=type,
            status=status,
            priority=priority,
            area=area,
            tags=tags,
            assignee=assignee,
            partial=True,
        )
        if title is not None:
            if not title.strip():
                raise ValidationError("Task title cannot be empty", field="title")
            fields["title"] = title.strip()

        entry = self._find_entry(task_id)
        task = self._load(entry)
        old_status = task.status
        for name, value in fields.items():
            setattr(task, name, value)
        for key, value in (metadata or {}).items():
            if value is None:
                task.metadata.pop(key, None)
            else:
                task.metadata[key] = value
        for name, content in (sections or {}).items():
            task.document.set_section(name, content)
        task.updated = _now()

        self._write(task, entry.path)
        if task.status != old_status:
            logger.info("Task %s status %s -> %s", task.id, old_status.value, task.status.value)
        return task

    def update_section(self, task_id: str, name: str, content: str) -> Task:
        return self.update(task_id, sections={name: content})

    def append_log(self, task_id: str, message: str) -> Task:
        """Add a timestamped line to the task's Log section."""
        entry = self._find_entry(task_id)
        task = self._load(entry)
        add_log_entry(task.document, message)
        task.updated = _now()
        self._write(task, entry.path)
        return task

    # =========================================================================
    # Workflow moves
    # =========================================================================

    def move(
        self,
        task_id: str,
        target: WorkflowState | str,
        *,
        update_status: bool | None = None,
        bucket: str | None = None,
    ) -> Task:
        """Move a task (or a whole parent directory) to another workflow state.

        Moving to archive files the task under a YYYY-MM bucket. Unless
        ``update_status`` is False (default from project options), the status
        follows the target: backlog -> todo, current -> in_progress,
        archive -> done. Moving to the state the task is already in changes
        nothing.

        Raises:
            NotFoundError: Unknown ID
            ValidationError: Unknown target state, or the task is a subtask
            IntegrityError: The destination already exists
            PartialWriteError: The new file was written but the old one remains
        """
        state = _normalize_state(target)
        entry = self._find_entry(task_id)
        if entry.parent_id:
            raise ValidationError(
                f"Subtask {entry.task_id} cannot be moved on its own; "
                f"move its parent {entry.parent_id} instead",
                field="task_id",
            )

        task = self._load(entry)
        if entry.location.workflow_state is state:
            logger.debug("Task %s already in %s", entry.task_id, state.value)
            return task

        location = WorkflowLocation(
            state, (bucket or archive_bucket()) if state is WorkflowState.ARCHIVE else None
        )
        if update_status is None:
            update_status = self.options.auto_status_update
        if update_status:
            task.status = STATUS_FOR_WORKFLOW[state]
        task.updated = _now()
        task.location = location

        target_dir = workflow_dir(self.tasks_root, location)
        if entry.is_parent:
            self._move_parent_dir(task, entry, target_dir)
        else:
            new_path = target_dir / task_filename(entry.task_id)
            if new_path.exists():
                raise IntegrityError(f"Cannot move {entry.task_id}: {new_path} already exists")
            self._write(task, new_path)
            try:
                entry.path.unlink()
            except OSError as e:
                raise PartialWriteError(
                    f"Moved {entry.task_id} but could not remove {entry.path}: {e}", [new_path]
                ) from e

        logger.info("Moved task %s: %s -> %s", entry.task_id, entry.location, location)
        return task

    def _move_parent_dir(self, task: Task, entry: TaskEntry, target_dir: Path) -> None:
        new_dir = target_dir / entry.task_id
        if new_dir.exists():
            raise IntegrityError(f"Cannot move {entry.task_id}: {new_dir} already exists")
        target_dir.mkdir(parents=True, exist_ok=True)
        entry.directory.rename(new_dir)
        try:
            self._write(task, new_dir / OVERVIEW_FILENAME)
        except OSError as e:
            raise PartialWriteError(
                f"Moved {entry.task_id} but could not update its overview: {e}", [new_dir]
            ) from e

    # =========================================================================
    # Listing
    # =========================================================================

    def list(
        self,
        *,
        workflow_states: Iterable[WorkflowState | str] | None = None,
        include_archived: bool = False,
        type: TaskType | str | None = None,
        status: TaskStatus | str | None = None,
        priority: TaskPriority | str | None = None,
        area: str | None = None,
        tags: Iterable[str] | None = None,
        assignee: str | None = None,
        parent_id: str | None = None,
        include_parent_tasks: bool = True,
        include_subtasks: bool = True,
    ) -> list[Task]:
        """List tasks matching every given filter.

        Without ``workflow_states`` backlog and current are listed, plus
        archive with ``include_archived``. Filter values accept the same
        aliases as input. Tags match if the task has any of them. Files that
        cannot be parsed are skipped with a warning.

        Returns:
            Tasks ordered current, backlog, archive, then by path
        """
        if workflow_states is not None:
            states = {_normalize_state(s) for s in workflow_states}
        else:
            states = {WorkflowState.BACKLOG, WorkflowState.CURRENT}
            if include_archived:
                states.add(WorkflowState.ARCHIVE)

        want_type = TaskType(normalize("type", type)) if type else None
        want_status = TaskStatus(normalize("status", status)) if status else None
        want_priority = TaskPriority(normalize("priority", priority)) if priority else None
        want_tags = {t.lower() for t in tags} if tags else None
        want_area = area.lower() if area else None

        results = []
        for entry in iter_task_entries(self.tasks_root, states):
            if entry.is_parent and not include_parent_tasks:
                continue
            if entry.parent_id and not include_subtasks:
                continue
            if parent_id is not None and entry.parent_id != parent_id:
                continue
            try:
                task = self._load(entry)
            except (ValidationError, UnicodeDecodeError) as e:
                logger.warning("Skipping unreadable task file %s: %s", entry.path, e)
                continue

            if want_type and task.type is not want_type:
                continue
            if want_status and task.status is not want_status:
                continue
            if want_priority and task.priority is not want_priority:
                continue
            if want_area and task.area.lower() != want_area:
                continue
            if want_tags and not want_tags & {t.lower() for t in task.tags}:
                continue
            if assignee is not None and task.assignee != assignee:
                continue
            results.append(task)

        results.sort(key=lambda t: (WORKFLOW_ORDER.index(t.workflow_state), str(t.path)))
        return results

    # =========================================================================
    # Delete
    # =========================================================================

    def delete(self, task_id: str, *, cascade: bool = False) -> list[str]:
        """Delete a task.

        A parent deleted without ``cascade`` first releases its subtasks as
        standalone tasks in the same workflow directory; this is refused while
        the directory holds anything besides task files. With ``cascade`` the
        whole directory goes, supporting files included.

        Returns:
            IDs of the tasks that no longer exist

        Raises:
            NotFoundError: Unknown ID
            IntegrityError: A released subtask would collide with an existing
                file, or the parent directory holds non-task files
            PartialWriteError: Some subtasks were released before a failure
        """
        entry = self._find_entry(task_id)
        if not entry.is_parent:
            entry.path.unlink()
            logger.info("Deleted task %s", entry.task_id)
            return [entry.task_id]

        directory = entry.directory
        subtasks = iter_subtask_files(directory)
        if cascade:
            shutil.rmtree(directory)
            deleted = [entry.task_id, *(sub_id for _, sub_id, _ in subtasks)]
            logger.info("Deleted parent task %s with %d subtasks", entry.task_id, len(subtasks))
            return deleted

        task_files = {entry.path, *(sub_path for _, _, sub_path in subtasks)}
        others = sorted(p.name for p in directory.iterdir() if p not in task_files)
        if others:
            raise IntegrityError(
                f"Cannot delete parent {entry.task_id} without cascade: "
                f"{directory} also holds {', '.join(others)}"
            )
        for _, sub_id, _ in subtasks:
            target = directory.parent / task_filename(sub_id)
            if target.exists():
                raise IntegrityError(f"Cannot release subtask {sub_id}: {target} already exists")

        changed: list[Path] = []
        try:
            for _, sub_id, sub_path in subtasks:
                task = Task.from_file(sub_path)
                task.parent = None
                task.sequence = None
                task.updated = _now()
                target = directory.parent / task_filename(sub_id)
                self._write(task, target)
                changed.append(target)
                sub_path.unlink()
                changed.append(sub_path)
            entry.path.unlink()
            changed.append(entry.path)
            directory.rmdir()
        except OSError as e:
            raise PartialWriteError(
                f"Deleting parent {entry.task_id} stopped: {e}", changed
            ) from e

        logger.info(
            "Deleted parent task %s, released %d subtasks", entry.task_id, len(subtasks)
        )
        return [entry.task_id]

    # =========================================================================
    # Parent tasks
    # =========================================================================

    def _parent_entry(self, parent_id: str) -> TaskEntry:
        entry = self._find_entry(parent_id)
        if not entry.is_parent:
            raise ValidationError(f"Task {entry.task_id} is not a parent task", field="parent_id")
        return entry

    def _build_parent(self, entry: TaskEntry) -> ParentTask:
        overview = self._load(entry)
        refs = []
        for file_sequence, sub_id, path in iter_subtask_files(entry.directory):
            recorded = Task.from_file(path).sequence or file_sequence
            refs.append(SubtaskRef(sequence=recorded, task_id=sub_id, path=path))
        task_files = {ref.path for ref in refs}
        supporting = sorted(
            p
            for p in entry.directory.iterdir()
            if not p.name.startswith(".") and p.name != OVERVIEW_FILENAME and p not in task_files
        )
        return ParentTask(
            id=entry.task_id,
            overview=overview,
            subtasks=refs,
            path=entry.directory,
            supporting_files=supporting,
        )

    def get_parent(self, parent_id: str) -> ParentTask:
        """Load a parent task as an aggregate of overview and ordered subtasks.

        Raises:
            NotFoundError: Unknown ID
            ValidationError: The task is not a parent
        """
        return self._build_parent(self._parent_entry(parent_id))

    def _write_sequences(self, parent: ParentTask) -> list[Path]:
        """Write every subtask whose file or header disagrees with the aggregate."""
        problems = sequence_problems(parent, check_files=False)
        if problems:
            raise ValidationError(
                f"Invalid sequence for {parent.id}: {'; '.join(problems)}", field="sequence"
            )

        changed: list[Path] = []
        try:
            for ref in parent.subtasks:
                target = parent.path / subtask_filename(ref.sequence, ref.task_id)
                task = Task.from_file(ref.path)
                if task.sequence == ref.sequence and ref.path == target:
                    continue
                task.parent = parent.id
                task.sequence = ref.sequence
                task.updated = _now()
                self._write(task, target)
                changed.append(target)
                if ref.path != target:
                    ref.path.unlink()
                    changed.append(ref.path)
                ref.path = target
        except OSError as e:
            raise PartialWriteError(f"Resequencing {parent.id} stopped: {e}", changed) from e

        if changed:
            logger.info("Resequenced %s: %s", parent.id, parent.parallel_groups())
        return changed

    def promote_to_parent(self, task_id: str, subtasks: list[str] | None = None) -> ParentTask:
        """Turn a simple task into a parent directory with the same ID.

        The task's document becomes the overview (sequence 00). Titles in
        ``subtasks`` are created as sequential subtasks.

        Raises:
            NotFoundError: Unknown ID
            ValidationError: The task is already a parent, or is a subtask
            IntegrityError: The parent directory already exists
            PartialWriteError: The directory was created but a later step failed
        """
        entry = self._find_entry(task_id)
        if entry.is_parent:
            raise ValidationError(f"Task {entry.task_id} is already a parent task")
        if entry.parent_id:
            raise ValidationError(f"Subtask {entry.task_id} cannot be promoted to a parent")

        task = self._load(entry)
        directory = entry.path.parent / entry.task_id
        if directory.exists():
            raise IntegrityError(f"Cannot promote {entry.task_id}: {directory} already exists")

        with self._locked():
            overview_path = directory / OVERVIEW_FILENAME
            task.updated = _now()
            self._write(task, overview_path)
            changed = [overview_path]
            try:
                entry.path.unlink()
                changed.append(entry.path)
                for title in subtasks or []:
                    created = self.add_subtask(entry.task_id, title)
                    changed.append(created.path)
            except (OSError, ValidationError) as e:
                raise PartialWriteError(f"Promoting {entry.task_id} stopped: {e}", changed) from e

        logger.info(
            "Promoted task %s to parent with %d subtasks", entry.task_id, len(subtasks or [])
        )
        return self.get_parent(entry.task_id)

    def add_subtask(
        self,
        parent_id: str,
        title: str,
        *,
        after: str | None = None,
        type: TaskType | str | None = None,
        status: TaskStatus | str | None = None,
        priority: TaskPriority | str | None = None,
        area: str | None = None,
        tags: Iterable[str] | None = None,
        assignee: str | None = None,
        instruction: str | None = None,
        tasks: list[str] | None = None,
        deliverable: str | None = None,
        custom_sections: Mapping[str, str] | None = None,
        custom_metadata: Mapping[str, Any] | None = None,
    ) -> Task:
        """Create a subtask inside a parent.

        The subtask takes the next sequence number, or with ``after`` the
        slot right after that subtask's group (later groups shift up).

        Raises:
            NotFoundError: Unknown parent, or ``after`` is not one of its subtasks
            ValidationError: Empty title, illegal enum value, or no free sequence
        """
        if not title or not title.strip():
            raise ValidationError("Task title is required", field="title")
        title = title.strip()
        fields = self._normalized_fields(
            type=type, status=status, priority=priority, area=area, tags=tags, assignee=assignee
        )

        with self._locked():
            parent = self.get_parent(parent_id)
            anchor = self._subtask_id(parent, after) if after else None
            sequence = get_next_sequence_number(parent)
            task_id = generate_task_id(title, list_task_ids(self.tasks_root), options=self.options)
            task = self._new_task(
                task_id,
                title,
                fields,
                instruction=instruction,
                tasks=tasks,
                deliverable=deliverable,
                custom_sections=custom_sections,
                custom_metadata=custom_metadata,
                parent=parent.id,
                sequence=sequence,
            )
            task.location = parent.overview.location
            path = parent.path / subtask_filename(sequence, task_id)
            self._write(task, path)
            logger.info("Added subtask %s to %s at %s", task_id, parent.id, sequence)

            if anchor:
                parent.subtasks.append(SubtaskRef(sequence=sequence, task_id=task_id, path=path))
                insert_task_after(parent, anchor, task_id)
                self._write_sequences(parent)
                return self.get(task_id)
        return task

    def _subtask_id(self, parent: ParentTask, task_id: str) -> str:
        """Resolve an ID or prefix among one parent's subtasks."""
        if parent.find(task_id):
            return task_id
        matches = [i for i in parent.subtask_ids if i.startswith(task_id)]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise NotFoundError(f"Task {task_id} is not a subtask of {parent.id}")
        raise NotFoundError(
            f"Task ID {task_id} is ambiguous, matches: {', '.join(matches)}", candidates=matches
        )

    def reorder_subtasks(
        self, parent_id: str, sequence_map: Mapping[str, str | int]
    ) -> ParentTask:
        """Assign explicit sequence numbers to subtasks of a parent."""
        parent = self.get_parent(parent_id)
        resolved = {self._subtask_id(parent, k): v for k, v in sequence_map.items()}
        reorder_subtasks(parent, resolved)
        self._write_sequences(parent)
        return parent

    def parallelize(self, parent_id: str, task_ids: Iterable[str]) -> ParentTask:
        """Give the listed subtasks of one parent a shared sequence number."""
        parent = self.get_parent(parent_id)
        make_tasks_parallel(parent, [self._subtask_id(parent, t) for t in task_ids])
        self._write_sequences(parent)
        return parent

    def make_tasks_parallel(self, task_ids: Iterable[str]) -> ParentTask:
        """Like parallelize, with the parent found from the subtasks themselves.

        Raises:
            ValidationError: An ID is not a subtask, or they have different parents
        """
        entries = [self._find_entry(t) for t in task_ids]
        parents = {e.parent_id for e in entries}
        if None in parents:
            loose = [e.task_id for e in entries if e.parent_id is None]
            raise ValidationError(f"Not subtasks: {', '.join(loose)}", field="task_ids")
        if len(parents) > 1:
            raise ValidationError(
                f"Subtasks belong to different parents: {', '.join(sorted(parents))}",
                field="task_ids",
            )
        return self.parallelize(parents.pop(), [e.task_id for e in entries])

    def insert_task_after(self, parent_id: str, after_id: str, new_id: str) -> ParentTask:
        """Move subtask ``new_id`` into its own group right after ``after_id``'s group."""
        parent = self.get_parent(parent_id)
        insert_task_after(
            parent, self._subtask_id(parent, after_id), self._subtask_id(parent, new_id)
        )
        self._write_sequences(parent)
        return parent

    def get_next_sequence_number(self, parent_id: str) -> str:
        return get_next_sequence_number(self.get_parent(parent_id))

    def is_valid_sequence(self, parent_id: str) -> bool:
        """True if the parent's subtask files are in order and match their headers."""
        problems = sequence_problems(self.get_parent(parent_id))
        for problem in problems:
            logger.debug("Sequence problem in %s: %s", parent_id, problem)
        return not problems
