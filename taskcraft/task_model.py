"""Task value objects and their markdown round-trip.

A Task is the structured view of one task file: typed header fields plus the
TaskDocument that holds its sections. Where the task lives (workflow state,
archive bucket, parent directory) is derived from its path by the store and
carried in ``location``; it is never written into the header.

A ParentTask is the in-memory aggregate for a parent directory: its overview
task plus an ordered list of subtask references. Sequencing operations mutate
the aggregate first and the store writes the affected files afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

from taskcraft.errors import NotFoundError, ParseError, ValidationError
from taskcraft.task_document import (
    TaskDocument,
    ensure_required_sections,
    parse_document,
    serialize_document,
)
from taskcraft.task_schema import (
    TaskPriority,
    TaskStatus,
    TaskType,
    WorkflowState,
    normalize,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

DEFAULT_AREA = "general"

# Header keys owned by Task fields; everything else is custom metadata
KNOWN_HEADER_KEYS = (
    "id",
    "title",
    "type",
    "status",
    "priority",
    "area",
    "tags",
    "assignee",
    "parent",
    "sequence",
    "created",
    "updated",
)


def _safe_parse_enum(
    value: Any,
    enum_cls: type[E],
    default: E,
    field_name: str,
    task_id: str | None = None,
) -> E:
    """Parse a header value through the normalizer, coercing bad values to default with warning."""
    if value is None:
        return default
    try:
        return enum_cls(normalize(field_name, str(value)))
    except ValidationError:
        task_ref = f" (task: {task_id})" if task_id else ""
        logger.warning(
            "Invalid %s '%s'%s, coercing to '%s'",
            field_name,
            value,
            task_ref,
            default.value,
        )
        return default


def _safe_parse_tags(value: Any, task_id: str | None = None) -> list[str]:
    """Tags from a header: a list, or a comma-separated string.

    Any other value (a number, a mapping) is dropped with a warning, like a
    bad enum value, so one hand-edited header cannot break a listing.
    """
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [t.strip() for t in value.split(",") if t.strip()]
    if isinstance(value, list):
        return [str(t) for t in value if t is not None and not isinstance(t, (dict, list))]
    task_ref = f" (task: {task_id})" if task_id else ""
    logger.warning("Invalid tags %r%s, expected a list; ignoring", value, task_ref)
    return []


def _optional_str(value: Any) -> str | None:
    if value is None or value == "" or isinstance(value, (dict, list)):
        return None
    return str(value)


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        logger.warning("Unparseable timestamp '%s', ignoring", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def format_sequence(value: Any) -> str | None:
    """Two-digit form of a sequence number ("2" and 2 both become "02")."""
    if value is None or value == "":
        return None
    try:
        number = int(str(value))
    except ValueError:
        raise ValidationError(f"Invalid sequence number: {value!r}", field="sequence") from None
    return f"{number:02d}"


@dataclass(frozen=True)
class WorkflowLocation:
    """Where a task sits in the workflow, as read from its path."""

    workflow_state: WorkflowState
    archive_bucket: str | None = None  # YYYY-MM, archive only

    def __str__(self) -> str:
        if self.archive_bucket:
            return f"{self.workflow_state.value}/{self.archive_bucket}"
        return self.workflow_state.value


@dataclass
class Task:
    """One task: header fields, document sections and (when loaded) location."""

    id: str
    title: str

    type: TaskType = TaskType.FEATURE
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    area: str = DEFAULT_AREA
    tags: list[str] = field(default_factory=list)
    assignee: str | None = None

    # Subtasks only
    parent: str | None = None
    sequence: str | None = None

    created: datetime | None = None
    updated: datetime | None = None

    # Unknown header keys, preserved verbatim
    metadata: dict[str, Any] = field(default_factory=dict)

    document: TaskDocument | None = None

    # Filled in by the store, never serialized
    location: WorkflowLocation | None = None
    path: Path | None = None
    is_parent: bool = False

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("Task id is required", field="id")
        if not self.title or not self.title.strip():
            raise ValidationError("Task title is required", field="title")
        if self.document is None:
            self.document = ensure_required_sections(TaskDocument(title=self.title))

    @property
    def is_subtask(self) -> bool:
        return self.parent is not None

    @property
    def workflow_state(self) -> WorkflowState | None:
        return self.location.workflow_state if self.location else None

    @property
    def sections(self) -> dict[str, str]:
        return self.document.sections

    def to_frontmatter(self) -> dict[str, Any]:
        """Header mapping in stable key order; custom keys follow known ones."""
        fm: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "status": self.status.value,
            "priority": self.priority.value,
            "area": self.area,
        }
        if self.tags:
            fm["tags"] = list(self.tags)
        if self.assignee:
            fm["assignee"] = self.assignee
        if self.parent:
            fm["parent"] = self.parent
        if self.sequence:
            fm["sequence"] = self.sequence
        if self.created:
            fm["created"] = self.created.isoformat()
        if self.updated:
            fm["updated"] = self.updated.isoformat()
        for key, value in self.metadata.items():
            if key not in fm:
                fm[key] = value
        return fm

    @classmethod
    def from_frontmatter(cls, fm: dict[str, Any], document: TaskDocument) -> Task:
        """Build a Task from a parsed header and its document.

        Raises:
            ParseError: If the header has no id
        """
        task_id = fm.get("id")
        if not task_id:
            raise ParseError("Task header missing required field: id")
        task_id = str(task_id)
        title = str(fm.get("title") or document.title)

        try:
            sequence = format_sequence(fm.get("sequence"))
        except ValidationError as e:
            raise ParseError(str(e)) from e

        return cls(
            id=task_id,
            title=title,
            type=_safe_parse_enum(fm.get("type"), TaskType, TaskType.FEATURE, "type", task_id),
            status=_safe_parse_enum(
                fm.get("status"), TaskStatus, TaskStatus.TODO, "status", task_id
            ),
            priority=_safe_parse_enum(
                fm.get("priority"), TaskPriority, TaskPriority.MEDIUM, "priority", task_id
            ),
            area=str(fm.get("area") or DEFAULT_AREA),
            tags=_safe_parse_tags(fm.get("tags"), task_id),
            assignee=_optional_str(fm.get("assignee")),
            parent=_optional_str(fm.get("parent")),
            sequence=sequence,
            created=_parse_timestamp(fm.get("created")),
            updated=_parse_timestamp(fm.get("updated")),
            metadata={k: v for k, v in fm.items() if k not in KNOWN_HEADER_KEYS},
            document=document,
        )

    def to_document(self) -> TaskDocument:
        """The document as it should be written: header and title synced from fields."""
        return TaskDocument(
            title=self.title,
            header=self.to_frontmatter(),
            sections=dict(self.document.sections),
            headings=dict(self.document.headings),
            preamble=self.document.preamble,
        )

    def to_markdown(self) -> str:
        return serialize_document(self.to_document())

    @classmethod
    def from_markdown(cls, content: str, path: Path | None = None) -> Task:
        """Parse task file content.

        Raises:
            ParseError: Malformed header, missing title or missing id
        """
        document = parse_document(content, path=path)
        try:
            task = cls.from_frontmatter(document.header, document)
        except ParseError as e:
            if path is None:
                raise
            raise ParseError(str(e), path=path) from e
        task.path = path
        return task

    @classmethod
    def from_file(cls, path: Path) -> Task:
        return cls.from_markdown(path.read_text(encoding="utf-8"), path=path)

    def __repr__(self) -> str:
        return f"Task(id={self.id!r}, title={self.title!r}, status={self.status.value})"


@dataclass
class SubtaskRef:
    """Position of one subtask inside its parent directory."""

    sequence: str
    task_id: str
    path: Path | None = None

    @property
    def number(self) -> int:
        return int(self.sequence)


@dataclass
class ParentTask:
    """A parent directory: overview task plus subtasks in filename order.

    ``subtasks`` is the source of truth while an operation is in progress;
    filenames are only a serialization of it.
    """

    id: str
    overview: Task
    subtasks: list[SubtaskRef] = field(default_factory=list)
    path: Path | None = None
    supporting_files: list[Path] = field(default_factory=list)

    @property
    def subtask_ids(self) -> list[str]:
        return [ref.task_id for ref in self.subtasks]

    def find(self, task_id: str) -> SubtaskRef | None:
        for ref in self.subtasks:
            if ref.task_id == task_id:
                return ref
        return None

    def require(self, task_id: str) -> SubtaskRef:
        """Like find, but raises for a task that is not a subtask of this parent."""
        ref = self.find(task_id)
        if ref is None:
            raise NotFoundError(f"Task {task_id} is not a subtask of {self.id}")
        return ref

    def sort(self) -> None:
        """Order subtasks by sequence, keeping the existing order inside a group."""
        self.subtasks.sort(key=lambda ref: ref.number)

    def parallel_groups(self) -> dict[str, list[str]]:
        """Sequence -> subtask IDs sharing it, in sequence order."""
        groups: dict[str, list[str]] = {}
        for ref in sorted(self.subtasks, key=lambda r: r.number):
            groups.setdefault(ref.sequence, []).append(ref.task_id)
        return groups
