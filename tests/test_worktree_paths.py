"""Tests for git worktree discovery and worktree path accessors.

Git is replaced by a fake script on PATH (see conftest.fake_git), so no real
repository is needed.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from taskcraft.config import StoreConfig
from taskcraft.errors import ValidationError
from taskcraft.path_cache import worktree_cache
from taskcraft.paths import create_path_context, get_modes_path, get_tasks_path
from taskcraft.worktree_paths import (
    discover_main_repo_root,
    get_worktree_base_path,
    get_worktree_path,
    is_worktree,
)


@pytest.fixture
def repo_layout(tmp_path: Path) -> tuple[Path, Path]:
    """A main checkout with a .git directory and a sibling worktree."""
    main = tmp_path / "Scopecraft"
    (main / ".git").mkdir(parents=True)
    worktree = tmp_path / "scopecraft.worktrees" / "impl-auth-05A"
    worktree.mkdir(parents=True)
    return main, worktree


def test_worktree_resolves_to_main_checkout(
    repo_layout: tuple[Path, Path], fake_git: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """git's common dir is shared by all worktrees; its parent is the main root."""
    main, worktree = repo_layout
    monkeypatch.setenv("FAKE_GIT_COMMON_DIR", str(main / ".git"))

    assert discover_main_repo_root(worktree) == main.resolve()
    assert discover_main_repo_root(main) == main.resolve()
    assert is_worktree(worktree)
    assert not is_worktree(main)


def test_relative_common_dir_is_resolved_against_the_root(
    repo_layout: tuple[Path, Path], fake_git: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Inside the main checkout git prints a relative '.git'."""
    main, _ = repo_layout
    monkeypatch.setenv("FAKE_GIT_COMMON_DIR", ".git")
    assert discover_main_repo_root(main) == main.resolve()


def test_outside_git_the_directory_is_its_own_root(project: Path, fake_git: Path) -> None:
    assert discover_main_repo_root(project) == project.resolve()
    assert not is_worktree(project)


def test_discovery_result_is_cached(
    repo_layout: tuple[Path, Path], fake_git: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A second lookup within the TTL does not ask git again."""
    main, worktree = repo_layout
    monkeypatch.setenv("FAKE_GIT_COMMON_DIR", str(main / ".git"))
    discover_main_repo_root(worktree)

    monkeypatch.delenv("FAKE_GIT_COMMON_DIR")
    assert discover_main_repo_root(worktree) == main.resolve()

    worktree_cache.clear()
    assert discover_main_repo_root(worktree) == worktree.resolve()


def test_worktree_and_main_share_the_task_store(
    repo_layout: tuple[Path, Path],
    home: Path,
    fake_git: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    main, worktree = repo_layout
    monkeypatch.setenv("FAKE_GIT_COMMON_DIR", str(main / ".git"))

    main_ctx = create_path_context(main, user_home=home)
    worktree_ctx = create_path_context(worktree, user_home=home)

    assert worktree_ctx.in_worktree
    assert worktree_ctx.worktree_root == worktree.resolve()
    assert not main_ctx.in_worktree
    assert get_tasks_path(main_ctx) == get_tasks_path(worktree_ctx)
    assert get_modes_path(main_ctx) != get_modes_path(worktree_ctx)


def test_worktree_paths_sit_beside_the_main_checkout(
    repo_layout: tuple[Path, Path], home: Path
) -> None:
    main, _ = repo_layout
    config = StoreConfig.load(main, user_home=home, override=True)

    base = get_worktree_base_path(config)
    assert base == main.resolve().parent / "scopecraft.worktrees"
    assert get_worktree_path(config, "impl-auth-05A") == base / "impl-auth-05A"


def test_worktree_path_requires_task_id(project: Path, home: Path) -> None:
    config = StoreConfig.load(project, user_home=home, override=True)
    with pytest.raises(ValidationError, match="Task ID is required"):
        get_worktree_path(config, "  ")
