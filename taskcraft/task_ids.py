"""Task ID generation and validation.

IDs look like ``{abbreviated-name}-{MM}{suffix}``:

    impl-user-auth-05A     date style: creation month + letter A..Z
    impl-user-auth-05k3    random style: creation month + 2 lowercase alphanumerics
    impl-user-auth-05x8q2m1  fallback once the short suffixes are used up

Uniqueness is checked against every ID in the store (all workflow states,
archive buckets, parent directories and subtasks). The check is only as good
as the moment it runs; TaskStore holds the store lock across generation and
the write of the new file.
"""

from __future__ import annotations

import logging
import random
import re
import string
from collections.abc import Callable, Collection
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from taskcraft.abbreviations import abbreviate_title
from taskcraft.config import ProjectOptions
from taskcraft.errors import IntegrityError
from taskcraft.task_layout import iter_task_entries

logger = logging.getLogger(__name__)

LETTER_SUFFIXES = string.ascii_uppercase
RANDOM_ALPHABET = string.ascii_lowercase + string.digits
RANDOM_SUFFIX_LENGTH = 2
FALLBACK_SUFFIX_LENGTH = 6
FALLBACK_ATTEMPTS = 100

_TASK_ID_RE = re.compile(
    r"^(?P<name>[a-z0-9][a-z0-9-]*)-(?P<month>\d{2})"
    r"(?P<suffix>[A-Z]|[a-z0-9]{2}|[a-z0-9]{6})$"
)


@dataclass(frozen=True)
class TaskIdParts:
    name: str
    month: str
    suffix: str


def parse_task_id(task_id: str) -> TaskIdParts | None:
    """Split an ID into name, month and suffix; None if it is not in ID form."""
    match = _TASK_ID_RE.match(task_id)
    if not match:
        return None
    return TaskIdParts(match.group("name"), match.group("month"), match.group("suffix"))


def is_valid_task_id(task_id: str, max_name_length: int = 30) -> bool:
    parts = parse_task_id(task_id)
    if parts is None:
        return False
    if not 1 <= int(parts.month) <= 12:
        return False
    return len(parts.name) <= max_name_length


def list_task_ids(tasks_root: Path) -> set[str]:
    """Every task ID present in the store, from file and directory names."""
    return {entry.task_id for entry in iter_task_entries(tasks_root)}


def task_id_exists(tasks_root: Path, task_id: str) -> bool:
    return task_id in list_task_ids(tasks_root)


def _random_suffix(rng: random.Random, length: int) -> str:
    return "".join(rng.choice(RANDOM_ALPHABET) for _ in range(length))


def generate_task_id(
    title: str,
    existing: Collection[str] | Callable[[str], bool],
    *,
    options: ProjectOptions | None = None,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> str:
    """Generate an ID for a title that is not in ``existing``.

    Args:
        title: Human title of the task
        existing: IDs already taken, or a predicate answering "is this taken?"
        options: Project options (stop words, lengths, style, attempt bound)
        now: Creation time, for the month code
        rng: Random source, for reproducible tests

    Raises:
        IntegrityError: If no free ID was found, even with fallback suffixes
    """
    options = options or ProjectOptions()
    rng = rng or random.Random()
    taken = existing if callable(existing) else existing.__contains__
    month = f"{(now or datetime.now()).month:02d}"

    name = abbreviate_title(
        title,
        stop_words=options.id_stop_words,
        max_words=options.id_max_words,
        max_length=options.id_max_length,
        token_width=options.id_token_width,
    )
    prefix = f"{name}-{month}"

    if options.id_style == "date":
        candidates = (prefix + letter for letter in LETTER_SUFFIXES[: options.id_max_attempts])
    else:
        candidates = (
            prefix + _random_suffix(rng, RANDOM_SUFFIX_LENGTH)
            for _ in range(options.id_max_attempts)
        )
    for candidate in candidates:
        if not taken(candidate):
            return candidate

    logger.warning("Short ID suffixes exhausted for '%s', using a long random suffix", prefix)
    for _ in range(FALLBACK_ATTEMPTS):
        candidate = prefix + _random_suffix(rng, FALLBACK_SUFFIX_LENGTH)
        if not taken(candidate):
            return candidate

    raise IntegrityError(f"Could not generate a unique task ID for '{title}'")
