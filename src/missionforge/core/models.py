"""Core data models for missionforge."""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


class MissionStatus(str, Enum):
    """Lifecycle status of a mission."""

    PLANNING = "planning"
    ACTIVE = "active"
    REVIEW = "review"
    MERGING = "merging"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (MissionStatus.COMPLETED, MissionStatus.ABANDONED)


class MissionPriority(str, Enum):
    """Priority of a mission."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MergeMethod(str, Enum):
    """Pull request merge strategies understood by the hosting API."""

    MERGE = "merge"
    SQUASH = "squash"
    REBASE = "rebase"


def slugify(name: str) -> str:
    """Turn a mission name into a branch-safe slug ("User Auth!" -> "user-auth")."""
    return _SLUG_INVALID.sub("-", name.lower()).strip("-")


def default_branch_name(name: str, prefix: str = "mission/") -> str:
    """Derive the dedicated branch for a mission from its name."""
    return f"{prefix}{slugify(name)}"


# =============================================================================
# Commit Models
# =============================================================================


class FileDiff(BaseModel):
    """Before/after snapshot of a single file touched by a commit."""

    model_config = ConfigDict(frozen=True)

    path: str
    old_content: str
    new_content: str
    additions: int = 0
    deletions: int = 0


class Commit(BaseModel):
    """A commit recorded on a mission. Immutable once appended."""

    model_config = ConfigDict(frozen=True)

    sha: str
    message: str
    files_changed: tuple[str, ...] = ()
    diffs: tuple[FileDiff, ...] | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


class NoChanges(BaseModel):
    """Commit attempt that found nothing staged. A no-op result, not an error."""

    message: str
    reason: str = "No changes to commit"


class FileSpec(BaseModel):
    """A file to write into a worktree, relative to the worktree root."""

    path: str
    content: str


# =============================================================================
# Mission Model
# =============================================================================


class Mission(BaseModel):
    """A unit of planned work bound to a dedicated branch and worktree."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    name: str
    description: str = ""
    priority: MissionPriority = MissionPriority.MEDIUM
    status: MissionStatus = MissionStatus.PLANNING
    branch_name: str
    base_branch: str = "main"
    task_ids: list[str] = Field(default_factory=list)
    commits: list[Commit] = Field(default_factory=list)
    worktree_path: Path | None = None
    pull_request_url: str | None = None
    pull_request_number: int | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def has_pull_request(self) -> bool:
        return self.pull_request_number is not None

    def append_commit(self, commit: Commit) -> None:
        """Record a new commit. The log only ever grows."""
        self.commits.append(commit)

    def link_task(self, task_id: str) -> bool:
        """Associate a task id. Returns False if it was already linked."""
        if task_id in self.task_ids:
            return False
        self.task_ids.append(task_id)
        return True

    def unlink_task(self, task_id: str) -> bool:
        """Drop a task id. Returns False if it was not linked."""
        if task_id not in self.task_ids:
            return False
        self.task_ids.remove(task_id)
        return True


# =============================================================================
# Worktree / Remote Results
# =============================================================================


class WorktreeStatus(BaseModel):
    """Query result for a mission's worktree. exists=False is not an error."""

    exists: bool
    branch: str | None = None
    has_uncommitted_changes: bool = False
    commits_ahead_of_base: int = 0
    worktree_path: Path | None = None


class WorktreeRemoval(BaseModel):
    """Outcome of tearing down a worktree."""

    removed: bool
    branch: str | None = None
    branch_deleted: bool = False
    error: str | None = None


class PushResult(BaseModel):
    """Branch pushed to the remote."""

    repo: str
    branch: str


class PullRequest(BaseModel):
    """Pull request opened on the hosting API."""

    url: str
    number: int
    state: str = "open"
    merged: bool = False


class MergeOutcome(BaseModel):
    """Answer to a merge call. merged=False is a negative result, not an error."""

    merged: bool
    sha: str | None = None
    message: str = ""


# =============================================================================
# Intent Results
# =============================================================================


class WorkResult(BaseModel):
    """Result of write_and_commit."""

    status: MissionStatus
    files_written: list[str] = Field(default_factory=list)
    commit: Commit | None = None
    no_changes: bool = False


class ReviewResult(BaseModel):
    """Result of open_review."""

    status: MissionStatus
    pull_request_url: str
    pull_request_number: int


class CompletionResult(BaseModel):
    """Result of complete_mission."""

    status: MissionStatus
    merged: bool
    sha: str | None = None
    message: str = ""
    worktree_removal: WorktreeRemoval | None = None


class AbandonResult(BaseModel):
    """Result of abandon_mission. Worktree failures are reported, never raised."""

    status: MissionStatus
    worktree_removal: WorktreeRemoval | None = None


class MissionStatusReport(BaseModel):
    """Combined view of the mission record and its worktree."""

    mission: Mission
    worktree: WorktreeStatus
