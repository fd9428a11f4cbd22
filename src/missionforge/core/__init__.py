"""Core mission models, errors and lifecycle."""

from missionforge.core.errors import (
    AlreadyExistsError,
    GitCommandError,
    InvalidTransitionError,
    MissionError,
    NotFoundError,
    RemoteApiError,
    RemoteSyncError,
    ValidationError,
)
from missionforge.core.models import (
    Commit,
    FileDiff,
    FileSpec,
    MergeMethod,
    Mission,
    MissionPriority,
    MissionStatus,
    NoChanges,
    WorktreeStatus,
)

__all__ = [
    "AlreadyExistsError",
    "Commit",
    "FileDiff",
    "FileSpec",
    "GitCommandError",
    "InvalidTransitionError",
    "MergeMethod",
    "Mission",
    "MissionError",
    "MissionPriority",
    "MissionStatus",
    "NoChanges",
    "NotFoundError",
    "RemoteApiError",
    "RemoteSyncError",
    "ValidationError",
    "WorktreeStatus",
]
