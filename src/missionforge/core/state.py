"""Mission repository: the protocol the lifecycle controller talks to, plus stores."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from missionforge.core.errors import MissionNotFoundError
from missionforge.core.models import (
    Commit,
    FileDiff,
    Mission,
    MissionPriority,
    MissionStatus,
)

if TYPE_CHECKING:
    from collections.abc import Generator


class MissionRepository(Protocol):
    """Holds Mission records. Loads hand out copies; changes land only on save()."""

    def load(self, mission_id: str) -> Mission: ...

    def save(self, mission: Mission) -> None: ...

    def exists(self, mission_id: str) -> bool: ...

    def list_all(self) -> list[Mission]: ...

    def find_by_branch(self, branch_name: str) -> list[Mission]: ...


class InMemoryMissionRepository:
    """Process-local repository, mostly for embedding and tests."""

    def __init__(self) -> None:
        self._missions: dict[str, Mission] = {}

    def load(self, mission_id: str) -> Mission:
        mission = self._missions.get(mission_id)
        if mission is None:
            raise MissionNotFoundError(f"Mission not found: {mission_id}")
        return mission.model_copy(deep=True)

    def save(self, mission: Mission) -> None:
        self._missions[mission.id] = mission.model_copy(deep=True)

    def exists(self, mission_id: str) -> bool:
        return mission_id in self._missions

    def list_all(self) -> list[Mission]:
        return [m.model_copy(deep=True) for m in sorted(self._missions.values(), key=lambda m: m.created_at)]

    def find_by_branch(self, branch_name: str) -> list[Mission]:
        return [m.model_copy(deep=True) for m in self._missions.values() if m.branch_name == branch_name]


SCHEMA = """
CREATE TABLE IF NOT EXISTS missions (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    priority TEXT NOT NULL,
    status TEXT NOT NULL,
    branch_name TEXT NOT NULL,
    base_branch TEXT NOT NULL,
    worktree_path TEXT,
    pull_request_url TEXT,
    pull_request_number INTEGER,
    created_at TIMESTAMP NOT NULL,
    started_at TIMESTAMP,
    completed_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS mission_tasks (
    mission_id TEXT NOT NULL REFERENCES missions(id),
    task_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    PRIMARY KEY (mission_id, task_id)
);

CREATE TABLE IF NOT EXISTS mission_commits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    mission_id TEXT NOT NULL REFERENCES missions(id),
    position INTEGER NOT NULL,
    sha TEXT NOT NULL,
    message TEXT NOT NULL,
    files_changed TEXT NOT NULL,
    diffs TEXT,
    committed_at TIMESTAMP NOT NULL,
    UNIQUE(mission_id, position)
);

CREATE INDEX IF NOT EXISTS idx_missions_branch ON missions(branch_name);
"""


class SQLiteMissionRepository:
    """Mission store persisted in SQLite.

    The commit table is append-only: save() inserts commits past the stored
    count and never rewrites earlier rows.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # =========================================================================
    # Mission Operations
    # =========================================================================

    def load(self, mission_id: str) -> Mission:
        """Get a mission by ID."""
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM missions WHERE id = ?", (mission_id,)).fetchone()
            if row is None:
                raise MissionNotFoundError(f"Mission not found: {mission_id}")
            return self._hydrate(conn, row)

    def exists(self, mission_id: str) -> bool:
        with self._connection() as conn:
            row = conn.execute("SELECT 1 FROM missions WHERE id = ?", (mission_id,)).fetchone()
            return row is not None

    def save(self, mission: Mission) -> None:
        """Insert or update a mission, its task links and any new commits."""
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO missions (
                    id, name, description, priority, status, branch_name, base_branch,
                    worktree_path, pull_request_url, pull_request_number,
                    created_at, started_at, completed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    priority = excluded.priority,
                    status = excluded.status,
                    branch_name = excluded.branch_name,
                    base_branch = excluded.base_branch,
                    worktree_path = excluded.worktree_path,
                    pull_request_url = excluded.pull_request_url,
                    pull_request_number = excluded.pull_request_number,
                    started_at = excluded.started_at,
                    completed_at = excluded.completed_at
                """,
                (
                    mission.id,
                    mission.name,
                    mission.description,
                    mission.priority.value,
                    mission.status.value,
                    mission.branch_name,
                    mission.base_branch,
                    str(mission.worktree_path) if mission.worktree_path else None,
                    mission.pull_request_url,
                    mission.pull_request_number,
                    mission.created_at.isoformat(),
                    _format_datetime(mission.started_at),
                    _format_datetime(mission.completed_at),
                ),
            )

            conn.execute("DELETE FROM mission_tasks WHERE mission_id = ?", (mission.id,))
            conn.executemany(
                "INSERT INTO mission_tasks (mission_id, task_id, position) VALUES (?, ?, ?)",
                [(mission.id, task_id, i) for i, task_id in enumerate(mission.task_ids)],
            )

            row = conn.execute(
                "SELECT COUNT(*) as count FROM mission_commits WHERE mission_id = ?",
                (mission.id,),
            ).fetchone()
            stored = row["count"] if row else 0
            conn.executemany(
                """
                INSERT INTO mission_commits
                    (mission_id, position, sha, message, files_changed, diffs, committed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        mission.id,
                        position,
                        commit.sha,
                        commit.message,
                        json.dumps(list(commit.files_changed)),
                        json.dumps([d.model_dump() for d in commit.diffs]) if commit.diffs is not None else None,
                        commit.timestamp.isoformat(),
                    )
                    for position, commit in enumerate(mission.commits)
                    if position >= stored
                ],
            )

    def list_all(self) -> list[Mission]:
        """List all missions, oldest first."""
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM missions ORDER BY created_at").fetchall()
            return [self._hydrate(conn, r) for r in rows]

    def find_by_branch(self, branch_name: str) -> list[Mission]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM missions WHERE branch_name = ? ORDER BY created_at",
                (branch_name,),
            ).fetchall()
            return [self._hydrate(conn, r) for r in rows]

    # =========================================================================
    # Utilities
    # =========================================================================

    def _hydrate(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Mission:
        task_rows = conn.execute(
            "SELECT task_id FROM mission_tasks WHERE mission_id = ? ORDER BY position",
            (row["id"],),
        ).fetchall()
        commit_rows = conn.execute(
            "SELECT * FROM mission_commits WHERE mission_id = ? ORDER BY position",
            (row["id"],),
        ).fetchall()

        commits = [
            Commit(
                sha=c["sha"],
                message=c["message"],
                files_changed=tuple(json.loads(c["files_changed"])),
                diffs=tuple(FileDiff.model_validate(d) for d in json.loads(c["diffs"])) if c["diffs"] else None,
                timestamp=datetime.fromisoformat(c["committed_at"]),
            )
            for c in commit_rows
        ]

        return Mission(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            priority=MissionPriority(row["priority"]),
            status=MissionStatus(row["status"]),
            branch_name=row["branch_name"],
            base_branch=row["base_branch"],
            task_ids=[t["task_id"] for t in task_rows],
            commits=commits,
            worktree_path=Path(row["worktree_path"]) if row["worktree_path"] else None,
            pull_request_url=row["pull_request_url"],
            pull_request_number=row["pull_request_number"],
            created_at=datetime.fromisoformat(row["created_at"]),
            started_at=_parse_datetime(row["started_at"]),
            completed_at=_parse_datetime(row["completed_at"]),
        )


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO datetime string."""
    if value is None:
        return None
    return datetime.fromisoformat(value)
