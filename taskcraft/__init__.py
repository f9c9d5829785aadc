"""File-backed task store shared by every worktree of a project."""

__version__ = "0.1.0"
