"""External tool drivers consumed by the task core."""

from taskmux.drivers.base import (
    AgentDriver,
    MultiplexerDriver,
    ReviewPlatformDriver,
    TaskNamer,
    Window,
    WindowOpts,
    WorkingTree,
    WorkspaceDriver,
)
from taskmux.drivers.claude import ClaudeAgentDriver
from taskmux.drivers.git import GitWorkspaceDriver
from taskmux.drivers.github import GhReviewDriver
from taskmux.drivers.tmux import TmuxDriver

__all__ = [
    "AgentDriver",
    "ClaudeAgentDriver",
    "GhReviewDriver",
    "GitWorkspaceDriver",
    "MultiplexerDriver",
    "ReviewPlatformDriver",
    "TaskNamer",
    "TmuxDriver",
    "Window",
    "WindowOpts",
    "WorkingTree",
    "WorkspaceDriver",
]
