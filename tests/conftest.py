"""Shared fixtures: a task store rooted in temporary directories."""

from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from taskcraft.config import StoreConfig
from taskcraft.path_cache import clear_path_caches
from taskcraft.task_storage import TaskStore
from taskcraft.worktree_paths import resolve_binary

FAKE_GIT = """#!/bin/sh
if [ -z "$FAKE_GIT_COMMON_DIR" ]; then
    echo "fatal: not a git repository" >&2
    exit 128
fi
echo "$FAKE_GIT_COMMON_DIR"
"""


@pytest.fixture(autouse=True)
def _fresh_caches():
    """Every test starts and ends with empty path caches."""
    clear_path_caches()
    resolve_binary.cache_clear()
    yield
    clear_path_caches()
    resolve_binary.cache_clear()


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def project(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def config(project: Path, home: Path) -> StoreConfig:
    return StoreConfig.load(project, user_home=home, override=True)


@pytest.fixture
def store(config: StoreConfig) -> TaskStore:
    return TaskStore(config)


@pytest.fixture
def fake_git(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Put a fake ``git`` first on PATH.

    It answers ``rev-parse --git-common-dir`` with $FAKE_GIT_COMMON_DIR, or
    fails like git outside a repository when that variable is unset.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    git = bin_dir / "git"
    git.write_text(FAKE_GIT)
    git.chmod(git.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.delenv("FAKE_GIT_COMMON_DIR", raising=False)
    resolve_binary.cache_clear()
    return git
