"""Utility modules for missionforge."""

from missionforge.utils.git import (
    GitResult,
    GitStatusResult,
    parse_git_status_output,
    parse_worktree_list,
    run_git,
)

__all__ = [
    "GitResult",
    "GitStatusResult",
    "parse_git_status_output",
    "parse_worktree_list",
    "run_git",
]
