"""Git worktree discovery and worktree path accessors.

Tasks are dispatched into isolated git worktrees, but storage is keyed by the
main checkout. This module is the only place that asks git where the main
checkout lives, and the only place that knows the worktree naming pattern:

    {parent of main repo}/{main repo name}.worktrees/{task_id}

Usage:
    from taskcraft.worktree_paths import discover_main_repo_root, get_worktree_path

    main_root = discover_main_repo_root(Path.cwd())
    path = get_worktree_path(config, "impl-auth-05A")
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

from taskcraft.errors import ValidationError
from taskcraft.path_cache import worktree_cache

if TYPE_CHECKING:
    from taskcraft.config import StoreConfig

logger = logging.getLogger(__name__)

WORKTREES_SUFFIX = ".worktrees"


@lru_cache(maxsize=8)
def resolve_binary(name: str) -> Path | None:
    """Resolve an external binary to its absolute path with caching.

    Args:
        name: Binary name to resolve (e.g., 'git')

    Returns:
        Path to the binary if found and executable, None otherwise
    """
    binary_path = shutil.which(name)
    if binary_path is None:
        logger.debug("Binary '%s' not found in PATH", name)
        return None

    resolved = Path(binary_path).resolve()
    if not resolved.is_file():
        logger.debug("Binary '%s' resolved to non-file: %s", name, resolved)
        return None

    if not os.access(resolved, os.X_OK):
        logger.debug("Binary '%s' not executable: %s", name, resolved)
        return None

    logger.debug("Binary '%s' resolved to: %s", name, resolved)
    return resolved


def discover_main_repo_root(project_root: Path) -> Path:
    """Find the main checkout for a directory that may be a worktree.

    Asks git for the common git directory (shared by every worktree of a
    repository); its parent is the main checkout. Directories outside git,
    or machines without git, are treated as their own main root.

    Results are cached for a short time, since an external ``git worktree``
    command can change the answer under a long-running process.

    Args:
        project_root: Directory the process is running from

    Returns:
        Absolute path of the main repository root
    """
    project_root = Path(project_root).resolve()
    key = str(project_root)
    cached = worktree_cache.get(key)
    if cached is not None:
        return cached

    main_root = project_root
    git = resolve_binary("git")
    if git is None:
        logger.debug("git unavailable, using %s as main root", project_root)
    else:
        result = subprocess.run(
            [str(git), "rev-parse", "--git-common-dir"],
            cwd=project_root,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode == 0 and result.stdout.strip():
            common_dir = Path(result.stdout.strip())
            if not common_dir.is_absolute():
                common_dir = project_root / common_dir
            main_root = common_dir.resolve().parent
        else:
            logger.debug("%s is not inside a git repository", project_root)

    worktree_cache.set(key, main_root)
    return main_root


def is_worktree(project_root: Path) -> bool:
    """True if ``project_root`` is a linked worktree rather than the main checkout."""
    project_root = Path(project_root).resolve()
    return discover_main_repo_root(project_root) != project_root


def get_worktree_base_path(config: StoreConfig) -> Path:
    """Get the directory that holds every worktree of the project.

    Examples:
        /Users/alice/projects/Scopecraft -> /Users/alice/projects/scopecraft.worktrees
    """
    main_root = config.context.main_repo_root
    return main_root.parent / f"{main_root.name.lower()}{WORKTREES_SUFFIX}"


def get_worktree_path(config: StoreConfig, task_id: str) -> Path:
    """Get the worktree directory dedicated to one task.

    Raises:
        ValidationError: If task_id is empty
    """
    if not task_id or not task_id.strip():
        raise ValidationError("Task ID is required for worktree path resolution", field="task_id")
    return get_worktree_base_path(config) / task_id.strip()
