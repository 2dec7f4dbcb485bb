"""Persistent storage of try-merge jobs."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

import aiosqlite

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS repositories (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        full_name TEXT NOT NULL UNIQUE,
        owner TEXT NOT NULL,
        default_branch TEXT NOT NULL DEFAULT 'main',
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS try_merge_jobs (
        id TEXT PRIMARY KEY,
        repository_id INTEGER NOT NULL,
        pr_number INTEGER NOT NULL,
        branch_name TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        error_message TEXT,
        CONSTRAINT fk_repository FOREIGN KEY (repository_id) REFERENCES repositories(id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_try_merge_jobs_repo_pr
    ON try_merge_jobs(repository_id, pr_number)
    """,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TryMergeJob:
    """A request to merge a pull request into a scratch branch."""

    repository_id: int
    pr_number: int
    branch_name: str
    status: str = "pending"
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    error_message: str | None = None


def _dump_time(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.isoformat()


def _sqlite_path(database_url: str) -> str:
    if database_url.startswith("sqlite://"):
        rest = database_url[len("sqlite://"):]
        if rest in ("", "/", "/:memory:"):
            return ":memory:"
        # sqlite:///relative.db and sqlite:////absolute.db
        return rest[1:] if rest.startswith("/") else rest
    if database_url.startswith("sqlite:"):
        return database_url[len("sqlite:"):] or ":memory:"
    if "://" in database_url:
        raise ValueError(f"unsupported database URL: {database_url}")
    return database_url


def _job_from_row(row: aiosqlite.Row) -> TryMergeJob:
    return TryMergeJob(
        id=uuid.UUID(row["id"]),
        repository_id=row["repository_id"],
        pr_number=row["pr_number"],
        branch_name=row["branch_name"],
        status=row["status"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        error_message=row["error_message"],
    )


class Database:
    """Job store backed by an SQLite database."""

    def __init__(self, connection: aiosqlite.Connection) -> None:
        self._conn = connection

    @classmethod
    async def connect(cls, database_url: str) -> Database:
        """Open the database named by a ``sqlite:`` URL or a file path."""
        conn = await aiosqlite.connect(_sqlite_path(database_url))
        conn.row_factory = aiosqlite.Row
        return cls(conn)

    async def close(self) -> None:
        await self._conn.close()

    async def __aenter__(self) -> Database:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def migrate(self) -> None:
        """Create the tables and indexes if they do not exist."""
        for statement in _SCHEMA:
            await self._conn.execute(statement)
        await self._conn.commit()

    async def create_try_merge_job(self, job: TryMergeJob) -> None:
        await self._conn.execute(
            """
            INSERT INTO try_merge_jobs
            (id, repository_id, pr_number, branch_name, status,
             created_at, updated_at, error_message)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(job.id),
                job.repository_id,
                job.pr_number,
                job.branch_name,
                job.status,
                _dump_time(job.created_at),
                _dump_time(job.updated_at),
                job.error_message,
            ),
        )
        await self._conn.commit()

    async def update_try_merge_job(self, job: TryMergeJob) -> None:
        """Store the job's status, update time and error message."""
        await self._conn.execute(
            """
            UPDATE try_merge_jobs
            SET status = ?, updated_at = ?, error_message = ?
            WHERE id = ?
            """,
            (job.status, _dump_time(job.updated_at), job.error_message, str(job.id)),
        )
        await self._conn.commit()

    async def get_active_jobs(self, repository_id: int) -> list[TryMergeJob]:
        """Return pending and running jobs of a repository, newest first."""
        async with self._conn.execute(
            """
            SELECT id, repository_id, pr_number, branch_name, status,
                   created_at, updated_at, error_message
            FROM try_merge_jobs
            WHERE repository_id = ? AND status IN ('pending', 'running')
            ORDER BY created_at DESC
            """,
            (repository_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_job_from_row(row) for row in rows]