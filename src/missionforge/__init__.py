"""missionforge - drive missions through dedicated git worktrees and pull requests."""

__version__ = "0.1.0"
