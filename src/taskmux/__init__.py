"""Coordinate parallel coding-agent sessions across git worktrees and tmux windows."""

__version__ = "0.1.0"
