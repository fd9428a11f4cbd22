"""Error taxonomy for mission orchestration.

Every failure an intent can report is a subclass of MissionError, so callers
can catch one base class and still branch on the kind:

- ValidationError: missing or malformed input, raised before any side effect
- InvalidTransitionError: the mission's status does not permit the intent
- AlreadyExistsError / NotFoundError: mission or worktree bookkeeping conflicts
- GitCommandError: a git subprocess exited non-zero (stderr kept verbatim)
- RemoteApiError: the hosting API answered non-2xx (status and body kept verbatim)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from missionforge.core.models import MissionStatus


class MissionError(Exception):
    """Base exception for mission orchestration errors."""


class ValidationError(MissionError):
    """Required input is missing or invalid."""


class InvalidTransitionError(MissionError):
    """Lifecycle intent requested from a status that does not permit it."""

    def __init__(self, mission_id: str, status: MissionStatus, intent: str) -> None:
        super().__init__(f"Cannot {intent} mission '{mission_id}' while it is {status.value}")
        self.mission_id = mission_id
        self.status = status
        self.intent = intent


class AlreadyExistsError(MissionError):
    """Something the operation would create is already present."""


class MissionExistsError(AlreadyExistsError):
    """A mission with this id is already registered."""


class WorktreeExistsError(AlreadyExistsError):
    """A worktree directory is already present at the target path."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Worktree already exists: {path}")
        self.path = path


class NotFoundError(MissionError):
    """The mission, worktree or pull request does not exist."""


class MissionNotFoundError(NotFoundError):
    """No mission is registered under this id."""


class WorktreeNotFoundError(NotFoundError):
    """No worktree directory exists for the mission."""


class PullRequestNotFoundError(NotFoundError):
    """The mission has no pull request recorded."""


class GitCommandError(MissionError):
    """A git subprocess exited non-zero or timed out."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int,
        stderr: str,
        timed_out: bool = False,
    ) -> None:
        self.git_args = list(args)
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        command = " ".join(["git", *self.git_args])
        if timed_out:
            message = f"{command} timed out: {stderr}"
        else:
            message = f"{command} failed (exit {returncode}): {stderr.strip()}"
        super().__init__(message)


class RemoteSyncError(GitCommandError):
    """Pushing a branch to the remote failed."""


class RemoteApiError(MissionError):
    """The hosting API returned a non-2xx response (or could not be reached).

    status_code is None for transport failures (DNS, connection reset, timeout).
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class GitHubAuthError(RemoteApiError):
    """Authentication with GitHub failed (401)."""


class GitHubRateLimitError(RemoteApiError):
    """GitHub API rate limit exceeded."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str = "",
        reset_at: int | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.reset_at = reset_at  # Unix timestamp when rate limit resets


class GitHubNotFoundError(RemoteApiError, NotFoundError):
    """Requested repository or pull request not found (404)."""
