"""
Viewfinder: Embedding Job Queue

Durable FIFO of (re)embedding work backed by the ``embedding_jobs`` table.

Lifecycle::

    pending ──claim──▶ processing ──▶ completed
       ▲                   │
       │                   └────────▶ failed
       └──── reset_failed / recover_stale ─┘

Only ``completed`` is terminal; ``failed`` jobs go back to ``pending`` when
an operator resets them.  Workers claim with ``FOR UPDATE SKIP LOCKED`` so
two concurrent batch runs never pick up the same job.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.embedding_job import EmbeddingJob
from app.models.photographer import DIMENSIONS

logger = structlog.get_logger("viewfinder.embedding_queue")

JOB_TYPES: tuple[str, ...] = (
    "choice_embedding",
    "image_embedding",
    "profile_dimension_embedding",
)
JOB_STATUSES: tuple[str, ...] = ("pending", "processing", "completed", "failed")

_MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class ClaimedJob:
    """Detached view of a job handed to a worker."""

    id: uuid.UUID
    job_type: str
    target_id: uuid.UUID
    dimension: Optional[str]
    attempts: int


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EmbeddingJobQueue:
    """Enqueue, claim and transition embedding jobs."""

    # ------------------------------------------------------------------ #
    # Producers
    # ------------------------------------------------------------------ #

    async def enqueue(
        self,
        job_type: str,
        target_id: uuid.UUID,
        db_session: AsyncSession,
        dimension: Optional[str] = None,
    ) -> uuid.UUID:
        """Add a job unless an identical one is already pending.

        Returns the id of the new job, or of the pending job that already
        covers the same target.
        """
        if job_type not in JOB_TYPES:
            raise ValueError(f"Unknown job type {job_type!r}")
        if dimension is not None:
            if job_type != "profile_dimension_embedding":
                raise ValueError("Only profile jobs take a dimension")
            if dimension not in DIMENSIONS:
                raise ValueError(f"Unknown profile dimension {dimension!r}")

        existing = await db_session.execute(
            select(EmbeddingJob.id)
            .where(
                EmbeddingJob.job_type == job_type,
                EmbeddingJob.target_id == target_id,
                EmbeddingJob.dimension.is_not_distinct_from(dimension),
                EmbeddingJob.status == "pending",
            )
            .limit(1)
        )
        existing_id = existing.scalar_one_or_none()
        if existing_id is not None:
            logger.debug(
                "embedding_job_already_queued",
                job_id=str(existing_id),
                job_type=job_type,
                target_id=str(target_id),
            )
            return existing_id

        job = EmbeddingJob(
            id=uuid.uuid4(),
            job_type=job_type,
            target_id=target_id,
            dimension=dimension,
            status="pending",
            attempts=0,
        )
        db_session.add(job)
        await db_session.flush()

        logger.info(
            "embedding_job_enqueued",
            job_id=str(job.id),
            job_type=job_type,
            target_id=str(target_id),
            dimension=dimension,
        )
        return job.id

    # ------------------------------------------------------------------ #
    # Readers
    # ------------------------------------------------------------------ #

    async def list_jobs(
        self,
        db_session: AsyncSession,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[EmbeddingJob]:
        if status is not None and status not in JOB_STATUSES:
            raise ValueError(f"Unknown job status {status!r}")

        stmt = select(EmbeddingJob).order_by(EmbeddingJob.created_at.desc())
        if status is not None:
            stmt = stmt.where(EmbeddingJob.status == status)
        stmt = stmt.limit(limit).offset(offset)

        result = await db_session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_status(self, db_session: AsyncSession) -> dict[str, int]:
        """Job counts per status, with every status present and a ``total``."""
        result = await db_session.execute(
            select(EmbeddingJob.status, func.count(EmbeddingJob.id)).group_by(
                EmbeddingJob.status
            )
        )
        counts = {status: 0 for status in JOB_STATUSES}
        for status, count in result.all():
            counts[status] = int(count)
        counts["total"] = sum(counts[s] for s in JOB_STATUSES)
        return counts

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    async def claim_pending(
        self,
        limit: int,
        db_session: AsyncSession,
    ) -> list[ClaimedJob]:
        """Move up to ``limit`` of the oldest pending jobs to ``processing``."""
        result = await db_session.execute(
            select(EmbeddingJob)
            .where(EmbeddingJob.status == "pending")
            .order_by(EmbeddingJob.created_at, EmbeddingJob.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        jobs = list(result.scalars().all())

        now = _now()
        claimed: list[ClaimedJob] = []
        for job in jobs:
            job.status = "processing"
            job.started_at = now
            job.attempts = (job.attempts or 0) + 1
            claimed.append(
                ClaimedJob(
                    id=job.id,
                    job_type=job.job_type,
                    target_id=job.target_id,
                    dimension=job.dimension,
                    attempts=job.attempts,
                )
            )
        await db_session.flush()

        if claimed:
            logger.info("embedding_jobs_claimed", count=len(claimed))
        return claimed

    async def mark_processing(self, job_id: uuid.UUID, db_session: AsyncSession) -> None:
        await self._transition(
            job_id,
            db_session,
            status="processing",
            started_at=_now(),
            attempts=EmbeddingJob.attempts + 1,
        )

    async def mark_completed(self, job_id: uuid.UUID, db_session: AsyncSession) -> None:
        await self._transition(
            job_id,
            db_session,
            status="completed",
            processed_at=_now(),
            error_message=None,
        )

    async def mark_failed(
        self,
        job_id: uuid.UUID,
        error: str,
        db_session: AsyncSession,
    ) -> None:
        await self._transition(
            job_id,
            db_session,
            status="failed",
            processed_at=_now(),
            error_message=(error or "unknown error")[:_MAX_ERROR_LENGTH],
        )
        logger.warning("embedding_job_failed", job_id=str(job_id), error=error)

    async def _transition(
        self,
        job_id: uuid.UUID,
        db_session: AsyncSession,
        **values,
    ) -> None:
        result = await db_session.execute(
            update(EmbeddingJob).where(EmbeddingJob.id == job_id).values(**values)
        )
        if result.rowcount == 0:
            raise LookupError(f"Embedding job {job_id} not found")

    # ------------------------------------------------------------------ #
    # Operator recovery
    # ------------------------------------------------------------------ #

    async def reset_failed(self, db_session: AsyncSession) -> int:
        """Return every failed job to ``pending`` and clear its error."""
        result = await db_session.execute(
            update(EmbeddingJob)
            .where(EmbeddingJob.status == "failed")
            .values(
                status="pending",
                error_message=None,
                started_at=None,
                processed_at=None,
            )
        )
        count = result.rowcount or 0
        logger.info("embedding_jobs_reset", count=count)
        return count

    async def recover_stale(
        self,
        db_session: AsyncSession,
        older_than_seconds: Optional[int] = None,
    ) -> int:
        """Return jobs stuck in ``processing`` to ``pending``.

        A job is stale when it was claimed more than ``older_than_seconds``
        ago (default ``EMBEDDING_STALE_AFTER_SECONDS``), which happens when
        the worker holding it died.
        """
        if older_than_seconds is None:
            older_than_seconds = get_settings().EMBEDDING_STALE_AFTER_SECONDS
        cutoff = _now() - timedelta(seconds=older_than_seconds)

        result = await db_session.execute(
            update(EmbeddingJob)
            .where(
                EmbeddingJob.status == "processing",
                EmbeddingJob.started_at < cutoff,
            )
            .values(status="pending", started_at=None)
        )
        count = result.rowcount or 0
        if count:
            logger.warning("embedding_jobs_recovered", count=count, cutoff=cutoff.isoformat())
        return count
