"""Path resolution for the task store.

Single source of truth for where every resource lives on disk. Each resource
type has a fixed list of strategies in precedence order; a strategy is a pure
function of a PathContext.

Resource types:
- tasks:     ~/.taskcraft/projects/{encoded main repo}/tasks
- sessions:  ~/.taskcraft/projects/{encoded main repo}/sessions
- modes:     {execution root}/.tasks/.modes
- templates: {execution root}/.tasks/.templates, then ~/.taskcraft/templates
- config:    ~/.taskcraft/projects/{encoded main repo}/config, then {execution root}/.tasks

Tasks and sessions are keyed by the main repository root, never by the
execution root, so every worktree of a project sees the same store.

Usage:
    from taskcraft.paths import PathType, create_path_context, resolve_path

    ctx = create_path_context(Path.cwd())
    tasks_dir = resolve_path(PathType.TASKS, ctx)
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from taskcraft.errors import ConfigurationError
from taskcraft.path_cache import path_context_cache
from taskcraft.worktree_paths import discover_main_repo_root

logger = logging.getLogger(__name__)

APP_DIR_NAME = ".taskcraft"
REPO_TASKS_DIR = ".tasks"


class PathType(str, Enum):
    """Resource types that have on-disk locations."""

    TEMPLATES = "templates"
    MODES = "modes"
    TASKS = "tasks"
    SESSIONS = "sessions"
    CONFIG = "config"


@dataclass(frozen=True)
class PathContext:
    """Roots needed to resolve any resource path.

    worktree_root is set only when the process runs from a worktree,
    i.e. when execution_root differs from main_repo_root.
    """

    execution_root: Path
    main_repo_root: Path
    user_home: Path
    worktree_root: Path | None = None

    @property
    def in_worktree(self) -> bool:
        return self.worktree_root is not None


PathStrategy = Callable[[PathContext], Path]


# =============================================================================
# Project path encoding
# =============================================================================

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9-]")
_ENCODED_PATTERN = re.compile(r"^[a-z0-9_-]+$")


def encode_project_path(project_path: str | Path) -> str:
    """Encode a project path into a flat, readable directory name.

    Example: /Users/alice/Projects/my.app -> users-alice-projects-my_app

    Lossy: distinct paths that differ only in replaced characters or case
    encode to the same name.
    """
    resolved = Path(project_path).expanduser().resolve()
    parts = [p for p in resolved.parts if p != resolved.anchor]
    if resolved.drive:
        parts.insert(0, resolved.drive)
    return "-".join(_UNSAFE_CHARS.sub("_", part) for part in parts).lower()


def decode_project_path(encoded: str) -> Path:
    """Best-effort reconstruction of an encoded project path.

    Hyphens that were part of a directory name come back as separators,
    and case is not recovered.
    """
    return Path(os.sep + encoded.replace("-", os.sep))


def is_valid_encoded_path(encoded: str) -> bool:
    """Check that a string looks like the output of encode_project_path."""
    return bool(_ENCODED_PATTERN.match(encoded))


# =============================================================================
# Strategies
# =============================================================================


def repo_strategy(ctx: PathContext) -> Path:
    """In-repo task directory of the checkout that is running."""
    return ctx.execution_root / REPO_TASKS_DIR


def repo_templates_strategy(ctx: PathContext) -> Path:
    return repo_strategy(ctx) / ".templates"


def repo_modes_strategy(ctx: PathContext) -> Path:
    return repo_strategy(ctx) / ".modes"


def global_user_strategy(ctx: PathContext) -> Path:
    return ctx.user_home / APP_DIR_NAME


def global_templates_strategy(ctx: PathContext) -> Path:
    return global_user_strategy(ctx) / "templates"


def centralized_strategy(ctx: PathContext) -> Path:
    """Per-project storage root under the user's home, keyed by the main repo."""
    return global_user_strategy(ctx) / "projects" / encode_project_path(ctx.main_repo_root)


def centralized_tasks_strategy(ctx: PathContext) -> Path:
    return centralized_strategy(ctx) / "tasks"


def centralized_sessions_strategy(ctx: PathContext) -> Path:
    return centralized_strategy(ctx) / "sessions"


def centralized_config_strategy(ctx: PathContext) -> Path:
    return centralized_strategy(ctx) / "config"


# Precedence lists: first entry wins for resolve_path
PATH_STRATEGIES: dict[PathType, list[PathStrategy]] = {
    PathType.TEMPLATES: [repo_templates_strategy, global_templates_strategy],
    PathType.MODES: [repo_modes_strategy],
    PathType.TASKS: [centralized_tasks_strategy],
    PathType.SESSIONS: [centralized_sessions_strategy],
    PathType.CONFIG: [centralized_config_strategy, repo_strategy],
}


# =============================================================================
# Context
# =============================================================================


def create_path_context(
    project_root: str | Path,
    *,
    user_home: str | Path | None = None,
    override: bool = False,
) -> PathContext:
    """Build the resolution context for a project root.

    Args:
        project_root: Directory the process is running from (may be a worktree)
        user_home: Home directory for centralized storage (defaults to Path.home())
        override: Treat project_root as a standalone project: no git
            discovery, no caching. Used by tests and non-git setups.

    Returns:
        PathContext for the root
    """
    execution_root = Path(project_root).expanduser().resolve()
    home = Path(user_home).expanduser().resolve() if user_home else Path.home()

    if override:
        return PathContext(
            execution_root=execution_root,
            main_repo_root=execution_root,
            user_home=home,
        )

    key = f"{execution_root}|{home}"
    cached = path_context_cache.get(key)
    if cached is not None:
        return cached

    main_root = discover_main_repo_root(execution_root)
    ctx = PathContext(
        execution_root=execution_root,
        main_repo_root=main_root,
        user_home=home,
        worktree_root=execution_root if execution_root != main_root else None,
    )
    logger.debug(
        "Path context for %s: main=%s worktree=%s",
        execution_root,
        main_root,
        ctx.worktree_root,
    )
    path_context_cache.set(key, ctx)
    return ctx


# =============================================================================
# Resolution
# =============================================================================


def _strategies_for(path_type: PathType | str) -> list[PathStrategy]:
    try:
        key = PathType(path_type)
    except ValueError:
        raise ConfigurationError(
            f"No path strategies defined for resource type: {path_type}",
            source="paths",
        ) from None
    strategies = PATH_STRATEGIES.get(key)
    if not strategies:
        raise ConfigurationError(
            f"No path strategies defined for resource type: {key.value}",
            source="paths",
        )
    return strategies


def resolve_path(path_type: PathType | str, ctx: PathContext) -> Path:
    """Return the highest-precedence location for a resource type.

    Raises:
        ConfigurationError: If the type has no strategies
    """
    return _strategies_for(path_type)[0](ctx)


def resolve_path_with_precedence(path_type: PathType | str, ctx: PathContext) -> list[Path]:
    """Return every candidate location for a resource type, in precedence order."""
    return [strategy(ctx) for strategy in _strategies_for(path_type)]


def resolve_existing_path(path_type: PathType | str, ctx: PathContext) -> Path:
    """Return the first candidate that exists, else the highest-precedence one."""
    candidates = resolve_path_with_precedence(path_type, ctx)
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def get_templates_path(ctx: PathContext) -> Path:
    return resolve_path(PathType.TEMPLATES, ctx)


def get_modes_path(ctx: PathContext) -> Path:
    return resolve_path(PathType.MODES, ctx)


def get_tasks_path(ctx: PathContext) -> Path:
    return resolve_path(PathType.TASKS, ctx)


def get_sessions_path(ctx: PathContext) -> Path:
    return resolve_path(PathType.SESSIONS, ctx)


def get_config_path(ctx: PathContext) -> Path:
    return resolve_path(PathType.CONFIG, ctx)


def get_project_storage_root(ctx: PathContext) -> Path:
    """Centralized per-project directory holding tasks, sessions and config."""
    return centralized_strategy(ctx)


def find_mode_files(ctx: PathContext, mode_name: str) -> list[Path]:
    """Find mode definitions named ``{mode_name}.md`` under the modes directory.

    Returns:
        Paths relative to the modes directory, sorted. Empty if there is no
        modes directory.
    """
    modes_dir = get_modes_path(ctx)
    if not modes_dir.is_dir():
        return []

    matches = [p.relative_to(modes_dir) for p in modes_dir.rglob(f"{mode_name}.md") if p.is_file()]
    return sorted(matches, key=lambda p: p.as_posix())
