"""Configuration for the task store.

Three layers, all explicit:

- GlobalConfig: ~/.taskcraft/config.json, the user's known projects and the
  default one.
- ProjectOptions: project.json in the project's config directory, knobs for
  ID generation and workflow defaults.
- StoreConfig: the resolved project root, its PathContext and its
  ProjectOptions, built once and handed to every component.

There is no process-wide singleton. Long-running hosts that notice a change
on disk call ``StoreConfig.reload()``.

Usage:
    from taskcraft.config import StoreConfig
    from taskcraft.task_storage import TaskStore

    config = StoreConfig.load()            # explicit > env > config file > auto-detect
    store = TaskStore(config)
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from taskcraft.errors import ConfigurationError
from taskcraft.path_cache import clear_path_caches
from taskcraft.paths import (
    APP_DIR_NAME,
    REPO_TASKS_DIR,
    PathContext,
    PathType,
    create_path_context,
    resolve_existing_path,
)

logger = logging.getLogger(__name__)

ENV_ROOT = "TASKCRAFT_ROOT"
GLOBAL_CONFIG_FILENAME = "config.json"
PROJECT_OPTIONS_FILENAME = "project.json"

# Markers that identify a project root during auto-detection
ROOT_MARKERS = (".git", REPO_TASKS_DIR)

DEFAULT_STOP_WORDS = [
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "it", "be", "into", "that", "this",
]  # fmt: skip


class ProjectDefinition(BaseModel):
    """One project known to the global config file."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    path: str
    directories: dict[str, str] | None = None
    description: str | None = None
    tags: list[str] | None = None


class GlobalConfig(BaseModel):
    """Contents of ~/.taskcraft/config.json."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: str = "1.0.0"
    default_project: str | None = Field(default=None, alias="defaultProject")
    projects: list[ProjectDefinition] = Field(default_factory=list)

    def get_project(self, name: str) -> ProjectDefinition | None:
        for project in self.projects:
            if project.name == name:
                return project
        return None


class ProjectOptions(BaseModel):
    """Per-project knobs, read from project.json."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # ID generation
    id_stop_words: list[str] = Field(default_factory=lambda: list(DEFAULT_STOP_WORDS))
    id_max_words: int = Field(default=4, ge=1)
    id_max_length: int = Field(default=30, ge=4)
    id_token_width: int = Field(default=6, ge=2)
    id_style: Literal["date", "random"] = "date"
    id_max_attempts: int = Field(default=26, ge=1, le=26)

    # Workflow
    default_workflow_state: str = "backlog"
    auto_status_update: bool = True


@dataclass(frozen=True)
class ProjectRoot:
    """A resolved project root and the source that supplied it."""

    path: Path
    source: Literal["explicit", "environment", "config", "auto-detect"]


# =============================================================================
# Global config file
# =============================================================================


def get_global_config_path(user_home: str | Path | None = None) -> Path:
    home = Path(user_home).expanduser() if user_home else Path.home()
    return home / APP_DIR_NAME / GLOBAL_CONFIG_FILENAME


def load_global_config(path: Path) -> GlobalConfig | None:
    """Load the global config file.

    Returns:
        GlobalConfig, or None if the file does not exist

    Raises:
        ConfigurationError: If the file exists but is not valid
    """
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise ConfigurationError(
            f"Invalid global config file {path}: {e}", source="config", path=path
        ) from e


def save_global_config(config: GlobalConfig, path: Path) -> None:
    """Write the global config file atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path_str = tempfile.mkstemp(prefix=".config-", suffix=".tmp", dir=str(path.parent))
    temp_path = Path(temp_path_str)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(config.model_dump_json(by_alias=True, exclude_none=True, indent=2))
        temp_path.replace(path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


# =============================================================================
# Project root resolution
# =============================================================================


def _existing_dir(candidate: str | Path, source: str, path: Path | None = None) -> Path:
    resolved = Path(candidate).expanduser().resolve()
    if not resolved.is_dir():
        raise ConfigurationError(
            f"Project root from {source} does not exist: {resolved}",
            source=source,
            path=path or resolved,
        )
    return resolved


def auto_detect_root(start: Path) -> Path | None:
    """Walk up from start to the first directory holding a root marker."""
    current = start.resolve()
    for directory in (current, *current.parents):
        if any((directory / marker).exists() for marker in ROOT_MARKERS):
            return directory
    return None


def resolve_project_root(
    explicit: str | Path | None = None,
    *,
    project_name: str | None = None,
    environ: Mapping[str, str] | None = None,
    config_path: Path | None = None,
    cwd: Path | None = None,
) -> ProjectRoot:
    """Pick the project root.

    Precedence: explicit argument, ``TASKCRAFT_ROOT``, the named (or default)
    project of the global config file, auto-detection from the current
    directory. A source that names a missing directory is an error; the next
    source is not tried.

    Raises:
        ConfigurationError: If the winning source is invalid or nothing matches
    """
    if explicit:
        return ProjectRoot(_existing_dir(explicit, "explicit"), "explicit")

    env = os.environ if environ is None else environ
    env_root = env.get(ENV_ROOT)
    if env_root:
        return ProjectRoot(_existing_dir(env_root, "environment"), "environment")

    config_file = config_path or get_global_config_path()
    global_config = load_global_config(config_file)
    wanted = project_name or (global_config.default_project if global_config else None)
    if wanted:
        project = global_config.get_project(wanted) if global_config else None
        if project is None:
            raise ConfigurationError(
                f"Project '{wanted}' is not defined in {config_file}",
                source="config",
                path=config_file,
            )
        return ProjectRoot(_existing_dir(project.path, "config", config_file), "config")

    start = cwd or Path.cwd()
    detected = auto_detect_root(start)
    if detected is None:
        raise ConfigurationError(
            f"No project root found: pass one explicitly, set {ENV_ROOT}, "
            f"or run inside a directory containing .git or {REPO_TASKS_DIR}",
            source="auto-detect",
            path=start,
        )
    return ProjectRoot(detected, "auto-detect")


# =============================================================================
# Project options
# =============================================================================


def load_project_options(ctx: PathContext) -> ProjectOptions:
    """Load project.json from the first config directory that has one.

    Raises:
        ConfigurationError: If the file exists but is not valid
    """
    path = resolve_existing_path(PathType.CONFIG, ctx) / PROJECT_OPTIONS_FILENAME
    if not path.exists():
        return ProjectOptions()
    try:
        return ProjectOptions.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise ConfigurationError(
            f"Invalid project options file {path}: {e}", source="config", path=path
        ) from e


# =============================================================================
# StoreConfig
# =============================================================================


@dataclass
class StoreConfig:
    """Everything a store needs to know about its project.

    Build with ``StoreConfig.load()``; pass the instance to each component.
    """

    project_root: Path
    context: PathContext
    options: ProjectOptions = field(default_factory=ProjectOptions)
    root_source: str = "explicit"
    override: bool = False

    @classmethod
    def load(
        cls,
        project_root: str | Path | None = None,
        *,
        user_home: str | Path | None = None,
        override: bool = False,
        project_name: str | None = None,
        environ: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> StoreConfig:
        """Resolve the project root and build its context and options.

        Args:
            project_root: Explicit root; wins over every other source
            user_home: Home directory for centralized storage
            override: Treat the root as a standalone project (no git discovery)
            project_name: Project to take from the global config file
            environ: Environment to read TASKCRAFT_ROOT from (defaults to os.environ)
            cwd: Starting directory for auto-detection

        Raises:
            ConfigurationError: If no usable root or options file is found
        """
        root = resolve_project_root(
            project_root,
            project_name=project_name,
            environ=environ,
            config_path=get_global_config_path(user_home),
            cwd=cwd,
        )
        ctx = create_path_context(root.path, user_home=user_home, override=override)
        options = load_project_options(ctx)
        logger.debug("Store config: root=%s (from %s)", root.path, root.source)
        return cls(
            project_root=root.path,
            context=ctx,
            options=options,
            root_source=root.source,
            override=override,
        )

    def reload(self) -> StoreConfig:
        """Drop cached path facts and rebuild context and options in place."""
        clear_path_caches()
        self.context = create_path_context(
            self.project_root, user_home=self.context.user_home, override=self.override
        )
        self.options = load_project_options(self.context)
        logger.info("Reloaded store config for %s", self.project_root)
        return self
