# src/cats/database.py
"""Durable crawl-job records: the persistence port consumed by the scheduler."""

import json
import sqlite3
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
import logging

from cats.config import settings
from cats.models import Job

logger = logging.getLogger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS crawl_jobs (
    id TEXT PRIMARY KEY,
    owner_id TEXT,
    domain TEXT NOT NULL,
    status TEXT NOT NULL CHECK (
        status IN ('queued', 'running', 'completed', 'error', 'cancelled', 'timeout')
    ),
    options TEXT,
    created_at TIMESTAMP NOT NULL,
    started_at TIMESTAMP,
    completed_at TIMESTAMP,
    error TEXT
);
"""

CREATE_INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_crawl_jobs_owner ON crawl_jobs (owner_id);"


class AbstractJobStore(ABC):
    """Abstract base class defining the job persistence interface.

    Write methods are called by the scheduler at every status transition.
    Implementations may raise; the scheduler logs and discards the error.
    """

    @abstractmethod
    def record_created(self, job: Job) -> None:
        """Persist a newly submitted job."""
        pass

    @abstractmethod
    def record_started(self, job: Job) -> None:
        """Persist the transition to running."""
        pass

    @abstractmethod
    def record_terminal(self, job: Job) -> None:
        """Persist a terminal status with its completion time and error."""
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one job record, or None if unknown."""
        pass

    @abstractmethod
    def list_jobs(self, owner_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        """List job records, newest first.

        Args:
            owner_id: Only return jobs owned by this user (None for all jobs)
            limit: Maximum number of records
        """
        pass

    @abstractmethod
    def get_stats(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        """Count jobs: total, running, completed, failed."""
        pass

    def close(self) -> None:
        """Release any underlying connection."""
        pass


class NullJobStore(AbstractJobStore):
    """Job store that keeps nothing. Used when persistence is disabled."""

    def record_created(self, job: Job) -> None:
        pass

    def record_started(self, job: Job) -> None:
        pass

    def record_terminal(self, job: Job) -> None:
        pass

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        return None

    def list_jobs(self, owner_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        return []

    def get_stats(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        return {"total": 0, "running": 0, "completed": 0, "failed": 0}


class LocalSqliteJobStore(AbstractJobStore):
    """SQLite job store for local deployments."""

    def __init__(self, db_url: Optional[str] = None):
        """Initialize local SQLite job store.

        Args:
            db_url: Database URL (sqlite:///path/to/db.db). Defaults to settings.DATABASE_URL.
        """
        self.db_url = db_url or settings.DATABASE_URL
        self.db_path = self.db_url.replace("sqlite:///", "")
        self.conn: Optional[sqlite3.Connection] = None
        self.connect()
        self.create_schema()

    def connect(self) -> None:
        """Establish SQLite connection."""
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to local SQLite database: {self.db_path}")

    def close(self) -> None:
        """Close SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed local SQLite connection")

    def create_schema(self) -> None:
        """Create the crawl_jobs table if it doesn't exist."""
        with self.conn:
            self.conn.execute(CREATE_TABLE_SQL)
            self.conn.execute(CREATE_INDEX_SQL)
        logger.debug("Schema verified/created for local SQLite")

    def record_created(self, job: Job) -> None:
        insert_sql = (
            "INSERT INTO crawl_jobs (id, owner_id, domain, status, options, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)"
        )
        with self.conn:
            self.conn.execute(insert_sql, (
                job.job_id,
                job.owner_id,
                job.params.domain,
                job.status.value,
                json.dumps(job.params.to_dict()),
                job.created_at.isoformat(),
            ))
        logger.debug(f"Recorded job {job.job_id} ({job.status.value})")

    def record_started(self, job: Job) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE crawl_jobs SET status = ?, started_at = ? WHERE id = ?",
                (job.status.value, job.started_at.isoformat() if job.started_at else None, job.job_id),
            )

    def record_terminal(self, job: Job) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE crawl_jobs SET status = ?, completed_at = ?, error = ? WHERE id = ?",
                (
                    job.status.value,
                    job.completed_at.isoformat() if job.completed_at else None,
                    job.error,
                    job.job_id,
                ),
            )
        logger.debug(f"Recorded job {job.job_id} as {job.status.value}")

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM crawl_jobs WHERE id = ?", (job_id,))
        row = cursor.fetchone()
        return self._row_to_dict(row) if row else None

    def list_jobs(self, owner_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        cursor = self.conn.cursor()
        if owner_id is None:
            cursor.execute(
                "SELECT * FROM crawl_jobs ORDER BY created_at DESC LIMIT ?", (limit,)
            )
        else:
            cursor.execute(
                "SELECT * FROM crawl_jobs WHERE owner_id = ? ORDER BY created_at DESC LIMIT ?",
                (owner_id, limit),
            )
        return [self._row_to_dict(row) for row in cursor.fetchall()]

    def get_stats(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        where = ""
        params: tuple = ()
        if owner_id is not None:
            where = "WHERE owner_id = ?"
            params = (owner_id,)

        query_sql = f"""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN status = 'running' THEN 1 ELSE 0 END), 0) AS running,
                COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0) AS completed,
                COALESCE(SUM(CASE WHEN status = 'error' THEN 1 ELSE 0 END), 0) AS failed
            FROM crawl_jobs {where}
        """
        cursor = self.conn.cursor()
        cursor.execute(query_sql, params)
        return dict(cursor.fetchone())

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        record = dict(row)
        if record.get("options"):
            record["options"] = json.loads(record["options"])
        return record


def get_job_store(
    backend: Optional[str] = None,
    **kwargs,
) -> AbstractJobStore:
    """Factory function to create the appropriate job store.

    Args:
        backend: Store backend ('local' or 'none'). Defaults to settings.DB_BACKEND.
        **kwargs: Additional arguments passed to the store constructor.

    Returns:
        An instance of AbstractJobStore.

    Raises:
        ValueError: If an unknown backend is specified.
    """
    backend = backend or settings.DB_BACKEND

    if backend == "local":
        logger.info("Using local SQLite job store")
        return LocalSqliteJobStore(**kwargs)
    elif backend == "none":
        logger.info("Job persistence disabled")
        return NullJobStore()
    else:
        raise ValueError(
            f"Unknown job store backend: '{backend}'. "
            "Supported backends: 'local', 'none'"
        )
