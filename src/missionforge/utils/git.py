"""Git subprocess runner and parsers for git's porcelain text output."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from missionforge.core.errors import GitCommandError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# git output is parsed, so messages must not be translated
GIT_ENV_OVERRIDES = {"LC_ALL": "C"}


@dataclass
class GitResult:
    """Result of a git command that exited zero."""

    args: list[str]
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """stdout with trailing whitespace trimmed."""
        return self.stdout.rstrip()


@dataclass
class GitStatusResult:
    """Result of parsing git status output.

    Attributes:
        untracked: List of untracked file paths (new files not in git)
        modified: List of modified tracked file paths (staged or unstaged changes)
    """

    untracked: list[str]
    modified: list[str]

    @property
    def is_clean(self) -> bool:
        """Check if working directory is clean (no tracked changes)."""
        return len(self.modified) == 0

    @property
    def has_changes(self) -> bool:
        """Any pending change at all, untracked files included."""
        return bool(self.modified or self.untracked)


@dataclass
class WorktreeEntry:
    """One record of `git worktree list --porcelain`."""

    path: Path
    head: str | None = None
    branch: str | None = None
    detached: bool = False


async def run_git(
    args: list[str],
    cwd: Path,
    timeout: float = DEFAULT_TIMEOUT,
) -> GitResult:
    """Run a git command and return its output.

    Args:
        args: Git command arguments (e.g., ["status", "--porcelain"])
        cwd: Working directory for the command
        timeout: Seconds before the process is terminated

    Returns:
        GitResult with decoded stdout/stderr

    Raises:
        GitCommandError: On non-zero exit, timeout, or missing git binary
    """
    logger.debug(f"git {' '.join(args)} (cwd={cwd})")
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env={**os.environ, **GIT_ENV_OVERRIDES},
        )
    except FileNotFoundError as e:
        raise GitCommandError(args, -1, f"Unable to run git: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError:
        process.terminate()
        await process.wait()
        raise GitCommandError(args, -1, f"Command timed out after {timeout}s", timed_out=True) from None

    out = stdout.decode("utf-8", errors="replace")
    err = stderr.decode("utf-8", errors="replace")
    if process.returncode != 0:
        raise GitCommandError(args, process.returncode or -1, err)

    return GitResult(args=list(args), stdout=out, stderr=err)


def split_lines(output: str) -> list[str]:
    """Split newline-delimited git output, dropping empty lines."""
    return [line.strip() for line in output.splitlines() if line.strip()]


def dedupe(paths: list[str]) -> list[str]:
    """Remove duplicates while keeping first-seen order."""
    return list(dict.fromkeys(paths))


def parse_git_status_output(output: str) -> GitStatusResult:
    """Parse git status --porcelain output into structured result.

    The porcelain format uses a two-character prefix XY where:
    - X = status of the index (staging area)
    - Y = status of the work tree

    '??' marks an untracked file; any other prefix (M, A, D, R, C and
    combinations) is a tracked change. Renames are reported as "old -> new".

    Args:
        output: Raw output from `git status --porcelain`

    Returns:
        GitStatusResult with categorized file lists
    """
    untracked: list[str] = []
    modified: list[str] = []

    for line in output.splitlines():
        if not line or len(line) < 3:
            continue

        prefix = line[:2]
        file_path = line[3:]

        if " -> " in file_path:
            file_path = file_path.split(" -> ", 1)[1]

        if prefix == "??":
            untracked.append(file_path)
        else:
            modified.append(file_path)

    return GitStatusResult(untracked=untracked, modified=modified)


def parse_worktree_list(output: str) -> list[WorktreeEntry]:
    """Parse `git worktree list --porcelain` output.

    Records are separated by blank lines; each starts with "worktree <path>"
    and may carry "HEAD <sha>", "branch refs/heads/<name>" or "detached".
    """
    entries: list[WorktreeEntry] = []
    current: WorktreeEntry | None = None

    for line in output.splitlines():
        if not line.strip():
            current = None
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            current = WorktreeEntry(path=Path(value))
            entries.append(current)
        elif current is None:
            continue
        elif key == "HEAD":
            current.head = value
        elif key == "branch":
            current.branch = value.removeprefix("refs/heads/")
        elif key == "detached":
            current.detached = True

    return entries


def find_worktree_branch(output: str, worktree_path: Path) -> str | None:
    """Return the branch checked out at worktree_path, if git lists one."""
    target = worktree_path.resolve()
    for entry in parse_worktree_list(output):
        if entry.path.resolve() == target:
            return entry.branch
    return None


def parse_count(output: str) -> int:
    """Parse a `rev-list --count` answer, treating garbage as zero."""
    try:
        return int(output.strip())
    except ValueError:
        return 0
