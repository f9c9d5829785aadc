"""Tests for title abbreviation and task ID generation."""

from __future__ import annotations

import random
from datetime import datetime
from pathlib import Path

import pytest

from taskcraft.abbreviations import abbreviate_title, abbreviate_word
from taskcraft.config import DEFAULT_STOP_WORDS, ProjectOptions
from taskcraft.errors import IntegrityError
from taskcraft.task_ids import (
    generate_task_id,
    is_valid_task_id,
    list_task_ids,
    parse_task_id,
)

MAY = datetime(2025, 5, 14)


def test_abbreviate_word_strategies() -> None:
    assert abbreviate_word("fix") == "fix"
    assert abbreviate_word("authentication") == "auth"
    assert abbreviate_word("permissions") == "prmssn"
    assert abbreviate_word("parser") == "parser"
    assert abbreviate_word("refactor", width=4) == "refa"


def test_abbreviate_title_drops_stop_words_and_caps_words() -> None:
    name = abbreviate_title(
        "Implement the user authentication flow for the admin dashboard",
        stop_words=DEFAULT_STOP_WORDS,
    )
    assert name == "impl-user-auth-flow"


def test_abbreviate_title_collapses_known_phrases() -> None:
    assert abbreviate_title("Update user interface", stop_words=[]) == "update-ui"


def test_abbreviate_title_edge_cases() -> None:
    """All-stop-word titles keep their words; unusable titles become 'task'."""
    assert abbreviate_title("The And Or", stop_words=DEFAULT_STOP_WORDS) == "the-and-or"
    assert abbreviate_title("!!! ???") == "task"
    assert len(abbreviate_title("word " * 40, max_words=40, max_length=30)) <= 30


def test_date_style_ids_use_month_and_letters() -> None:
    taken: set[str] = set()
    first = generate_task_id("Fix login bug", taken, now=MAY)
    taken.add(first)
    second = generate_task_id("Fix login bug", taken, now=MAY)

    assert first == "fix-login-bug-05A"
    assert second == "fix-login-bug-05B"


def test_random_style_ids() -> None:
    options = ProjectOptions(id_style="random")
    task_id = generate_task_id(
        "Fix login bug", set(), options=options, now=MAY, rng=random.Random(7)
    )
    parts = parse_task_id(task_id)
    assert parts is not None
    assert parts.month == "05"
    assert len(parts.suffix) == 2


def test_thousand_ids_from_one_title_are_distinct() -> None:
    """Once A..Z are used up, the long random fallback keeps IDs unique."""
    taken: set[str] = set()
    rng = random.Random(42)
    for _ in range(1000):
        task_id = generate_task_id("Fix bug", taken, now=MAY, rng=rng)
        assert task_id not in taken
        taken.add(task_id)
    assert len(taken) == 1000
    assert all(is_valid_task_id(t) for t in taken)


def test_exhausted_generator_raises_integrity_error() -> None:
    with pytest.raises(IntegrityError, match="unique task ID"):
        generate_task_id("Fix bug", lambda candidate: True, now=MAY)


def test_parse_and_validate_ids() -> None:
    parts = parse_task_id("impl-user-auth-05A")
    assert (parts.name, parts.month, parts.suffix) == ("impl-user-auth", "05", "A")

    assert is_valid_task_id("fix-bug-12k3")
    assert is_valid_task_id("fix-bug-01x8q2m1")
    assert not is_valid_task_id("fix-bug-13A")
    assert not is_valid_task_id("Fix Bug")
    assert parse_task_id("no-suffix") is None


def test_list_task_ids_covers_every_location(tmp_path: Path) -> None:
    """Simple tasks, archive buckets, parent directories and subtasks all count."""
    root = tmp_path / "tasks"
    (root / "backlog").mkdir(parents=True)
    (root / "backlog" / "simple-05A.task.md").write_text("")
    (root / "archive" / "2025-04").mkdir(parents=True)
    (root / "archive" / "2025-04" / "old-04A.task.md").write_text("")
    parent = root / "current" / "big-05B"
    parent.mkdir(parents=True)
    (parent / "00_overview.task.md").write_text("")
    (parent / "01_step-one-05C.task.md").write_text("")
    (parent / "notes.txt").write_text("")
    (root / "backlog" / ".hidden-05Z.task.md").write_text("")

    assert list_task_ids(root) == {
        "simple-05A",
        "old-04A",
        "big-05B",
        "step-one-05C",
    }
