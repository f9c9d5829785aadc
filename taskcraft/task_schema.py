"""Metadata schema: enumerable task fields and input normalization.

Each enum value owns a canonical name, a display label, an optional emoji and
a list of input aliases. Lookup tables are built once at import time and map
every one of those spellings (case-insensitive) to the canonical name.

Usage:
    from taskcraft.task_schema import normalize

    normalize("status", "wip")       # -> "in_progress"
    normalize("type", "🐛")          # -> "bug"
    normalize("priority", None)      # -> "medium" (absent input gets the default)
    normalize("status", "nonsense")  # raises ValidationError
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from taskcraft.errors import ValidationError


class TaskStatus(Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"
    ARCHIVED = "archived"


class TaskType(Enum):
    FEATURE = "feature"
    BUG = "bug"
    CHORE = "chore"
    DOCUMENTATION = "documentation"
    TEST = "test"
    SPIKE = "spike"
    IDEA = "idea"


class TaskPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    HIGHEST = "highest"


class WorkflowState(Enum):
    """Coarse lifecycle stage; mirrored by the task's containing directory."""

    BACKLOG = "backlog"
    CURRENT = "current"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class EnumValue:
    """Display and input metadata for one enum value."""

    name: str
    label: str
    emoji: str | None = None
    aliases: tuple[str, ...] = field(default_factory=tuple)


STATUS_VALUES: dict[TaskStatus, EnumValue] = {
    TaskStatus.TODO: EnumValue("todo", "To Do", "🟡", ("new", "open", "pending", "not started")),
    TaskStatus.IN_PROGRESS: EnumValue(
        "in_progress", "In Progress", "🔵", ("in-progress", "wip", "doing", "active", "started")
    ),
    TaskStatus.BLOCKED: EnumValue("blocked", "Blocked", "🔴", ("stuck", "waiting", "on hold")),
    TaskStatus.DONE: EnumValue(
        "done", "Done", "🟢", ("complete", "completed", "finished", "closed", "resolved")
    ),
    TaskStatus.ARCHIVED: EnumValue("archived", "Archived", "⚪", ("archive", "shelved")),
}

TYPE_VALUES: dict[TaskType, EnumValue] = {
    TaskType.FEATURE: EnumValue("feature", "Feature", "🌟", ("feat", "enhancement", "story")),
    TaskType.BUG: EnumValue("bug", "Bug", "🐛", ("fix", "defect", "issue")),
    TaskType.CHORE: EnumValue("chore", "Chore", "🔧", ("maintenance", "refactor", "cleanup")),
    TaskType.DOCUMENTATION: EnumValue("documentation", "Documentation", "📝", ("docs", "doc")),
    TaskType.TEST: EnumValue("test", "Test", "🧪", ("tests", "testing", "qa")),
    TaskType.SPIKE: EnumValue("spike", "Spike", "💡", ("research", "investigation", "poc")),
    TaskType.IDEA: EnumValue("idea", "Idea", "💭", ("proposal", "brainstorm")),
}

PRIORITY_VALUES: dict[TaskPriority, EnumValue] = {
    TaskPriority.LOW: EnumValue("low", "Low", "🔽", ("minor", "trivial", "someday")),
    TaskPriority.MEDIUM: EnumValue("medium", "Medium", "▶️", ("normal", "default", "med")),
    TaskPriority.HIGH: EnumValue("high", "High", "🔼", ("important", "major")),
    TaskPriority.HIGHEST: EnumValue("highest", "Highest", "🔥", ("critical", "urgent", "blocker")),
}

WORKFLOW_STATE_VALUES: dict[WorkflowState, EnumValue] = {
    WorkflowState.BACKLOG: EnumValue("backlog", "Backlog", "📋", ("todo-list", "later", "icebox")),
    WorkflowState.CURRENT: EnumValue("current", "Current", "🚧", ("now", "in-flight", "working")),
    WorkflowState.ARCHIVE: EnumValue("archive", "Archive", "📦", ("archived", "completed")),
}

# Sort rank for priorities (higher = more urgent)
PRIORITY_ORDER: dict[str, int] = {"highest": 4, "high": 3, "medium": 2, "low": 1}


class FieldNormalizer:
    """Case-insensitive lookup from any spelling of an enum value to its name.

    Args:
        field_name: Field name used in error messages
        values: Enum metadata in canonical order
        default: Canonical name returned for absent input
    """

    def __init__(self, field_name: str, values: list[EnumValue], default: str):
        self.field_name = field_name
        self.values = values
        self.default = default
        self.allowed = [v.name for v in values]
        self._lookup: dict[str, str] = {}
        for value in values:
            spellings = [value.name, value.label, *value.aliases]
            if value.emoji:
                spellings.append(value.emoji)
            for spelling in spellings:
                self._lookup.setdefault(spelling.lower(), value.name)

    def __call__(self, raw: str | Enum | None) -> str:
        if isinstance(raw, Enum):
            raw = raw.value
        if raw is None or not str(raw).strip():
            return self.default

        needle = str(raw).strip().lower()
        exact = self._lookup.get(needle)
        if exact is not None:
            return exact

        # Containment either way, e.g. "feat" in "feature", "done!" contains "done"
        for key, name in self._lookup.items():
            if needle in key or key in needle:
                return name

        raise ValidationError(
            f'Invalid {self.field_name} "{raw}". Valid options are: {", ".join(self.allowed)}',
            field=self.field_name,
            allowed_values=self.allowed,
        )


NORMALIZERS: dict[str, FieldNormalizer] = {
    "status": FieldNormalizer("status", list(STATUS_VALUES.values()), TaskStatus.TODO.value),
    "type": FieldNormalizer("type", list(TYPE_VALUES.values()), TaskType.FEATURE.value),
    "priority": FieldNormalizer(
        "priority", list(PRIORITY_VALUES.values()), TaskPriority.MEDIUM.value
    ),
    "workflow_state": FieldNormalizer(
        "workflow state", list(WORKFLOW_STATE_VALUES.values()), WorkflowState.BACKLOG.value
    ),
}

_FIELD_ALIASES = {"workflowstate": "workflow_state", "workflow": "workflow_state"}


def _normalizer(field_name: str) -> FieldNormalizer:
    key = field_name.strip().lower()
    key = _FIELD_ALIASES.get(key, key)
    try:
        return NORMALIZERS[key]
    except KeyError:
        raise ValidationError(
            f"Unknown metadata field '{field_name}'. Valid fields are: {', '.join(NORMALIZERS)}",
            field=field_name,
            allowed_values=list(NORMALIZERS),
        ) from None


def normalize(field_name: str, raw: str | Enum | None) -> str:
    """Normalize user input for an enumerable field to its canonical name.

    Exact matches (name, label, emoji, alias) win; otherwise the first
    containment match in table order is used.

    Raises:
        ValidationError: If nothing matches; lists every canonical value
    """
    return _normalizer(field_name)(raw)


def allowed_values(field_name: str) -> list[str]:
    """Canonical values accepted for a field, in schema order."""
    return list(_normalizer(field_name).allowed)


def default_value(field_name: str) -> str:
    return _normalizer(field_name).default


def get_label(field_name: str, name: str) -> str:
    """Display label for a canonical name (the name itself if unknown)."""
    for value in _normalizer(field_name).values:
        if value.name == name:
            return value.label
    return name


def get_emoji(field_name: str, name: str) -> str | None:
    for value in _normalizer(field_name).values:
        if value.name == name:
            return value.emoji
    return None
