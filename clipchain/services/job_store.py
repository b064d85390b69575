"""
Job Store Service
SQLite-backed persistence for background generation jobs.
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import aiosqlite

from ..config import get_settings
from ..models.job import GenerationJob, JobStatus
from ..utils.logger import get_logger

logger = get_logger()

IN_PROGRESS_STATUSES = (
    JobStatus.PENDING.value,
    JobStatus.GENERATING.value,
    JobStatus.STITCHING.value,
    JobStatus.UPLOADING.value,
)


class JobStore:
    """Persistent storage for generation jobs, one JSON payload per row."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    async def initialize(self):
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS generation_jobs (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL,
                        status TEXT NOT NULL,
                        payload TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_jobs_user ON generation_jobs(user_id)"
                )
                await conn.commit()

            self._initialized = True
            logger.info(f"Job store initialized at {self.db_path}")

    async def upsert(self, job: GenerationJob):
        await self.initialize()
        payload = json.dumps(job.model_dump(mode="json"), ensure_ascii=False)

        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute(
                    """
                    INSERT INTO generation_jobs (id, user_id, status, payload, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        status = excluded.status,
                        payload = excluded.payload,
                        updated_at = excluded.updated_at
                    """,
                    (job.id, job.user_id, job.status, payload, job.updated_at.isoformat()),
                )
                await conn.commit()

    @staticmethod
    def _parse(rows) -> List[GenerationJob]:
        jobs: List[GenerationJob] = []
        for (payload,) in rows:
            try:
                jobs.append(GenerationJob(**json.loads(payload)))
            except (ValueError, TypeError) as exc:
                logger.warning(f"Skipping invalid stored job payload: {exc}")
        return jobs

    async def get(self, job_id: str) -> Optional[GenerationJob]:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as conn:
            cursor = await conn.execute(
                "SELECT payload FROM generation_jobs WHERE id = ?", (job_id,)
            )
            rows = await cursor.fetchall()
            await cursor.close()
        jobs = self._parse(rows)
        return jobs[0] if jobs else None

    async def list_for_user(self, user_id: str, limit: int = 50) -> List[GenerationJob]:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as conn:
            cursor = await conn.execute(
                "SELECT payload FROM generation_jobs WHERE user_id = ? ORDER BY updated_at DESC LIMIT ?",
                (user_id, limit),
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return self._parse(rows)

    async def delete(self, job_id: str):
        await self.initialize()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute("DELETE FROM generation_jobs WHERE id = ?", (job_id,))
                await conn.commit()

    async def list_in_progress(self) -> List[GenerationJob]:
        await self.initialize()
        placeholders = ", ".join("?" for _ in IN_PROGRESS_STATUSES)
        async with aiosqlite.connect(self.db_path) as conn:
            cursor = await conn.execute(
                f"SELECT payload FROM generation_jobs WHERE status IN ({placeholders})",
                IN_PROGRESS_STATUSES,
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return self._parse(rows)


_job_store: Optional[JobStore] = None


def get_job_store() -> JobStore:
    """Return singleton job store."""
    global _job_store
    if _job_store is None:
        _job_store = JobStore(get_settings().database_path)
    return _job_store
