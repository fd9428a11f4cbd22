"""Mission lifecycle controller: the state machine driving a mission's branch.

The controller is the only component that changes Mission.status. Every intent
follows the same shape:

1. Take the mission's lock (intents on one mission never interleave, intents on
   different missions run concurrently)
2. Load the mission and check the transition table before any side effect
3. Call the worktree store, git executor and remote sync client in order
4. Save the new state only once every step succeeded

A failed intent therefore leaves the persisted status where it was. The one
intermediate state that is persisted, `merging`, is rolled back to `review`
whenever the merge does not go through.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum

from missionforge.config import Config
from missionforge.core.errors import (
    InvalidTransitionError,
    MissionError,
    MissionExistsError,
    PullRequestNotFoundError,
    ValidationError,
    WorktreeExistsError,
    WorktreeNotFoundError,
)
from missionforge.core.executor import GitExecutor, build_file_diff, resolve_in_worktree
from missionforge.core.models import (
    AbandonResult,
    CompletionResult,
    FileSpec,
    MergeMethod,
    Mission,
    MissionPriority,
    MissionStatus,
    MissionStatusReport,
    NoChanges,
    PullRequest,
    ReviewResult,
    WorkResult,
    WorktreeRemoval,
    default_branch_name,
)
from missionforge.core.state import MissionRepository
from missionforge.core.worktrees import WorktreeStore
from missionforge.sync.github_client import RemoteCredentials
from missionforge.sync.remote import RemoteSyncClient

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    """Triggers accepted by the transition table."""

    START = "start"
    RECORD_WORK = "record work on"
    OPEN_REVIEW = "open review for"
    MERGE = "merge"
    MERGE_SUCCEEDED = "finish merging"
    MERGE_FAILED = "roll back merge of"
    ABANDON = "abandon"


_OPEN_STATUSES = (
    MissionStatus.PLANNING,
    MissionStatus.ACTIVE,
    MissionStatus.REVIEW,
    MissionStatus.MERGING,
)

# (current status, intent) -> next status. Anything missing is illegal.
TRANSITIONS: dict[tuple[MissionStatus, Intent], MissionStatus] = {
    (MissionStatus.PLANNING, Intent.START): MissionStatus.ACTIVE,
    (MissionStatus.ACTIVE, Intent.START): MissionStatus.ACTIVE,
    (MissionStatus.ACTIVE, Intent.RECORD_WORK): MissionStatus.ACTIVE,
    (MissionStatus.ACTIVE, Intent.OPEN_REVIEW): MissionStatus.REVIEW,
    (MissionStatus.REVIEW, Intent.MERGE): MissionStatus.MERGING,
    (MissionStatus.MERGING, Intent.MERGE_SUCCEEDED): MissionStatus.COMPLETED,
    (MissionStatus.MERGING, Intent.MERGE_FAILED): MissionStatus.REVIEW,
    **{(status, Intent.ABANDON): MissionStatus.ABANDONED for status in _OPEN_STATUSES},
}


def next_status(mission: Mission, intent: Intent) -> MissionStatus:
    """Look up the transition or raise InvalidTransitionError."""
    target = TRANSITIONS.get((mission.status, intent))
    if target is None:
        raise InvalidTransitionError(mission.id, mission.status, intent.value)
    return target


def parse_merge_method(value: MergeMethod | str) -> MergeMethod:
    try:
        return MergeMethod(value)
    except ValueError:
        allowed = ", ".join(m.value for m in MergeMethod)
        raise ValidationError(f"Unknown merge method {value!r} (expected one of: {allowed})") from None


class MissionLifecycleController:
    """Validates lifecycle intents and drives worktree, git and remote calls."""

    def __init__(
        self,
        repository: MissionRepository,
        worktrees: WorktreeStore,
        executor: GitExecutor,
        remote: RemoteSyncClient,
        config: Config | None = None,
    ) -> None:
        self.repository = repository
        self.worktrees = worktrees
        self.executor = executor
        self.remote = remote
        self.config = config or Config()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @classmethod
    def from_config(cls, config: Config, repository: MissionRepository) -> MissionLifecycleController:
        """Wire up the default collaborators from configuration."""
        worktrees = WorktreeStore(
            repo_root=config.resolved_repo_root(),
            worktree_base=config.resolved_worktree_base(),
            timeout=config.git_timeout,
        )
        remote = RemoteSyncClient(
            api_url=config.github.api_url,
            host=config.github.host,
            timeout=config.github.timeout,
            push_timeout=config.push_timeout,
        )
        return cls(repository, worktrees, GitExecutor(timeout=config.git_timeout), remote, config)

    @asynccontextmanager
    async def _lock(self, mission_id: str) -> AsyncIterator[None]:
        """Serialize intents on one mission.

        The lock is dropped once no caller holds or waits for it, so the
        table only tracks missions with work in flight.
        """
        lock = self._locks.get(mission_id)
        if lock is None:
            lock = self._locks[mission_id] = asyncio.Lock()
        self._lock_users[mission_id] = self._lock_users.get(mission_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[mission_id] -= 1
            if self._lock_users[mission_id] == 0:
                del self._lock_users[mission_id]
                del self._locks[mission_id]

    def _advance(self, mission: Mission, intent: Intent) -> None:
        target = next_status(mission, intent)
        if target != mission.status:
            logger.info(f"Mission {mission.id}: {mission.status.value} -> {target.value}")
        mission.status = target

    # =========================================================================
    # Creation & Task Links
    # =========================================================================

    async def create_mission(
        self,
        mission_id: str,
        name: str,
        description: str = "",
        priority: MissionPriority = MissionPriority.MEDIUM,
        branch_name: str | None = None,
        base_branch: str | None = None,
        task_ids: Iterable[str] = (),
    ) -> Mission:
        """Register a new mission in `planning`.

        Raises:
            ValidationError: Missing id/name, or the branch is held by another live mission
            MissionExistsError: If the id is already registered
        """
        if not mission_id or not mission_id.strip():
            raise ValidationError("Mission id is required")
        if not name or not name.strip():
            raise ValidationError("Mission name is required")

        branch = branch_name or default_branch_name(name, self.config.branch_prefix)
        if branch == self.config.branch_prefix or not branch.strip():
            raise ValidationError(f"Cannot derive a branch name from mission name {name!r}")

        # Worktree paths are derived from the id, so reject ids that are not valid directory names
        self.worktrees.path_for(mission_id)

        async with self._lock(mission_id):
            if self.repository.exists(mission_id):
                raise MissionExistsError(f"Mission already exists: {mission_id}")

            holders = [m.id for m in self.repository.find_by_branch(branch) if not m.is_terminal]
            if holders:
                raise ValidationError(f"Branch {branch} is already used by mission {', '.join(holders)}")

            mission = Mission(
                id=mission_id,
                name=name,
                description=description,
                priority=priority,
                branch_name=branch,
                base_branch=base_branch or self.config.default_base_branch,
            )
            for task_id in task_ids:
                mission.link_task(task_id)

            self.repository.save(mission)

        logger.info(f"Created mission {mission_id} on branch {branch}")
        return mission

    async def link_task(self, mission_id: str, task_id: str) -> Mission:
        """Associate an external task id with a mission that is still open."""
        return await self._update_tasks(mission_id, task_id, link=True)

    async def unlink_task(self, mission_id: str, task_id: str) -> Mission:
        return await self._update_tasks(mission_id, task_id, link=False)

    async def _update_tasks(self, mission_id: str, task_id: str, link: bool) -> Mission:
        if not task_id:
            raise ValidationError("Task id is required")
        async with self._lock(mission_id):
            mission = self.repository.load(mission_id)
            if mission.is_terminal:
                raise InvalidTransitionError(mission.id, mission.status, "link task to" if link else "unlink task from")
            changed = mission.link_task(task_id) if link else mission.unlink_task(task_id)
            if changed:
                self.repository.save(mission)
            return mission

    # =========================================================================
    # Lifecycle Intents
    # =========================================================================

    async def start_mission(self, mission_id: str) -> Mission:
        """Create the mission worktree and move the mission to `active`.

        Re-running start on an active mission, or against a worktree that is
        already on disk, is treated as success so restarts after a crash are safe.
        """
        async with self._lock(mission_id):
            mission = self.repository.load(mission_id)
            next_status(mission, Intent.START)

            try:
                worktree_path = await self.worktrees.create(mission.id, mission.branch_name, mission.base_branch)
            except WorktreeExistsError:
                worktree_path = self.worktrees.path_for(mission.id)
                logger.info(f"Mission {mission.id}: worktree already present at {worktree_path}, reusing it")

            self._advance(mission, Intent.START)
            mission.worktree_path = worktree_path
            if mission.started_at is None:
                mission.started_at = datetime.now()
            self.repository.save(mission)
            return mission

    async def write_and_commit(
        self,
        mission_id: str,
        files: Sequence[FileSpec],
        message: str,
        capture_diffs: bool | None = None,
    ) -> WorkResult:
        """Write files into the mission worktree and commit them.

        With files given, exactly those paths are staged; with none, every
        pending change in the worktree is. NoChanges comes back as
        WorkResult(no_changes=True) and leaves the commit log untouched.
        """
        if not message or not message.strip():
            raise ValidationError("Commit message is required")
        capture = self.config.capture_diffs if capture_diffs is None else capture_diffs

        async with self._lock(mission_id):
            mission = self.repository.load(mission_id)
            next_status(mission, Intent.RECORD_WORK)

            worktree_path = self.worktrees.path_for(mission.id)
            if not worktree_path.exists():
                raise WorktreeNotFoundError(f"Worktree not found for mission {mission.id}: {worktree_path}")
            for spec in files:
                resolve_in_worktree(worktree_path, spec.path)

            paths = [spec.path for spec in files]
            before = self.executor.snapshot(worktree_path, paths) if capture else {}

            written = self.executor.write_files(worktree_path, files)
            result = await self.executor.stage_and_commit(worktree_path, message, written or None)

            if isinstance(result, NoChanges):
                logger.info(f"Mission {mission.id}: nothing to commit for '{message}'")
                return WorkResult(status=mission.status, files_written=written, no_changes=True)

            commit = result
            if capture:
                contents = {spec.path: spec.content for spec in files}
                diffs = tuple(
                    build_file_diff(path, before[path], contents[path])
                    for path in dict.fromkeys(paths)
                    if before[path] != contents[path]
                )
                commit = commit.model_copy(update={"diffs": diffs})

            mission.append_commit(commit)
            self._advance(mission, Intent.RECORD_WORK)
            self.repository.save(mission)
            return WorkResult(status=mission.status, files_written=written, commit=commit)

    async def open_review(
        self,
        mission_id: str,
        title: str,
        body: str,
        credentials: RemoteCredentials,
    ) -> ReviewResult:
        """Push the mission branch and open a pull request.

        Status moves to `review` only when both steps succeed. A pushed branch
        without a pull request leaves the mission `active` and safe to retry.
        """
        if not title or not title.strip():
            raise ValidationError("Pull request title is required")

        async with self._lock(mission_id):
            mission = self.repository.load(mission_id)
            next_status(mission, Intent.OPEN_REVIEW)

            worktree_path = self.worktrees.path_for(mission.id)
            if not worktree_path.exists():
                raise WorktreeNotFoundError(f"Worktree not found for mission {mission.id}: {worktree_path}")

            await self.remote.push(worktree_path, mission.branch_name, credentials)
            pull_request = await self.remote.open_pull_request(
                title=title,
                body=body,
                head_branch=mission.branch_name,
                base_branch=mission.base_branch,
                credentials=credentials,
            )

            self._advance(mission, Intent.OPEN_REVIEW)
            mission.pull_request_url = pull_request.url
            mission.pull_request_number = pull_request.number
            self.repository.save(mission)
            return ReviewResult(
                status=mission.status,
                pull_request_url=pull_request.url,
                pull_request_number=pull_request.number,
            )

    async def complete_mission(
        self,
        mission_id: str,
        credentials: RemoteCredentials,
        merge_method: MergeMethod | str | None = None,
        remove_worktree: bool | None = None,
    ) -> CompletionResult:
        """Merge the mission's pull request and mark the mission `completed`.

        `merging` is saved while the merge call is in flight. If the remote
        refuses (merged=False) or the call fails, the mission goes back to
        `review` before the result or error reaches the caller.
        """
        method = parse_merge_method(merge_method or self.config.github.merge_method)
        teardown = self.config.remove_worktree_on_complete if remove_worktree is None else remove_worktree

        async with self._lock(mission_id):
            mission = self.repository.load(mission_id)
            next_status(mission, Intent.MERGE)
            if mission.pull_request_number is None:
                raise PullRequestNotFoundError(f"Mission {mission.id} has no pull request to merge")

            self._advance(mission, Intent.MERGE)
            self.repository.save(mission)

            try:
                outcome = await self.remote.merge_pull_request(mission.pull_request_number, method, credentials)
            except BaseException:
                self._rollback_merge(mission)
                raise

            if not outcome.merged:
                self._rollback_merge(mission)
                return CompletionResult(status=mission.status, merged=False, sha=outcome.sha, message=outcome.message)

            self._advance(mission, Intent.MERGE_SUCCEEDED)
            mission.completed_at = datetime.now()
            self.repository.save(mission)

            removal = await self._teardown(mission, delete_branch=False) if teardown else None
            return CompletionResult(
                status=mission.status,
                merged=True,
                sha=outcome.sha,
                message=outcome.message,
                worktree_removal=removal,
            )

    def _rollback_merge(self, mission: Mission) -> None:
        self._advance(mission, Intent.MERGE_FAILED)
        self.repository.save(mission)

    async def abandon_mission(
        self,
        mission_id: str,
        remove_worktree: bool = False,
        delete_branch: bool = False,
    ) -> AbandonResult:
        """Mark the mission `abandoned`, then optionally tear down its worktree.

        Waits for any in-flight intent on the mission to finish rather than
        cancelling it. The status change always sticks; a failed teardown is
        reported on the result.
        """
        async with self._lock(mission_id):
            mission = self.repository.load(mission_id)
            self._advance(mission, Intent.ABANDON)
            mission.completed_at = datetime.now()
            self.repository.save(mission)

            removal = await self._teardown(mission, delete_branch) if remove_worktree else None
            return AbandonResult(status=mission.status, worktree_removal=removal)

    async def _teardown(self, mission: Mission, delete_branch: bool) -> WorktreeRemoval:
        """Best-effort worktree removal after a terminal transition."""
        try:
            return await self.worktrees.remove(mission.id, delete_branch=delete_branch)
        except MissionError as e:
            logger.warning(f"Mission {mission.id}: worktree removal failed: {e}")
            return WorktreeRemoval(removed=False, error=str(e))

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_status(self, mission_id: str) -> MissionStatusReport:
        """Mission record plus live worktree state. Does not wait on the mission lock."""
        mission = self.repository.load(mission_id)
        worktree = await self.worktrees.status(mission.id, mission.base_branch)
        return MissionStatusReport(mission=mission, worktree=worktree)

    async def fetch_pull_request(self, mission_id: str, credentials: RemoteCredentials) -> PullRequest:
        """Current state of the mission's pull request on the remote."""
        mission = self.repository.load(mission_id)
        if mission.pull_request_number is None:
            raise PullRequestNotFoundError(f"Mission {mission.id} has no pull request")
        return await self.remote.get_pull_request(mission.pull_request_number, credentials)

    def list_missions(self) -> list[Mission]:
        return self.repository.list_all()
