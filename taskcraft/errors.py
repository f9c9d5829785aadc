"""Error taxonomy for the task store.

Every failure the store reports to its callers is one of these classes.
Filesystem failures are not wrapped: ``OSError`` propagates unchanged.

Usage:
    from taskcraft.errors import NotFoundError, ValidationError

    try:
        task = store.get("impl-auth-05A")
    except NotFoundError as e:
        print(e)
"""

from __future__ import annotations

from pathlib import Path


class TaskStoreError(Exception):
    """Base class for all task store errors."""


class ValidationError(TaskStoreError, ValueError):
    """Illegal input: unknown enum value, malformed document, invalid sequence.

    Attributes:
        field: Name of the offending field, if any
        allowed_values: Canonical values the field accepts, if it is an enum
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        allowed_values: list[str] | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.allowed_values = allowed_values or []


class ParseError(ValidationError):
    """A task file could not be parsed (bad header block or missing title)."""

    def __init__(self, message: str, *, path: Path | None = None):
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)
        self.path = path


class NotFoundError(TaskStoreError, LookupError):
    """An ID, parent or subtask could not be resolved (or matched ambiguously)."""

    def __init__(self, message: str, *, candidates: list[str] | None = None):
        super().__init__(message)
        self.candidates = candidates or []


class IntegrityError(TaskStoreError):
    """A store invariant would be broken (duplicate ID, dangling parent)."""


class PartialWriteError(IntegrityError):
    """A multi-file operation stopped part way through.

    Attributes:
        changed_paths: Files already written before the failure, in order
    """

    def __init__(self, message: str, changed_paths: list[Path]):
        if changed_paths:
            listed = ", ".join(str(p) for p in changed_paths)
            message = f"{message} (already changed: {listed})"
        else:
            message = f"{message} (no files were changed)"
        super().__init__(message)
        self.changed_paths = list(changed_paths)


class ConfigurationError(TaskStoreError):
    """No usable project root or configuration for the current operation."""

    def __init__(self, message: str, *, source: str | None = None, path: Path | None = None):
        super().__init__(message)
        self.source = source
        self.path = path
