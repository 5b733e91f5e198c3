"""
Viewfinder: Admin Embedding API

Operator endpoints for the embedding pipeline:
  - Draining the job queue with a live progress stream (SSE)
  - Retrying failed jobs and recovering stuck ones
  - Queue statistics, job listing and the last progress snapshot
  - Enqueueing single units or everything that lacks an embedding
"""

from __future__ import annotations

import json
from typing import AsyncIterator, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.embedding_job import EmbeddingJob
from app.schemas.embedding import (
    CountResponse,
    EmbeddingJobResponse,
    EnqueueMissingResponse,
    EnqueueRequest,
    EnqueueResponse,
    ProcessRequest,
    ProgressResponse,
    QueueStatsResponse,
)
from app.services.content_service import ContentService
from app.services.embedding_generator import BatchRun, EmbeddingGenerator
from app.services.embedding_queue import JOB_STATUSES, EmbeddingJobQueue
from app.services.gemini_service import GeminiService
from app.services.progress_service import ProgressStore

logger = structlog.get_logger("viewfinder.api.admin.embeddings")

router = APIRouter()

# ── Service singletons ────────────────────────────────────────────────────────

_gemini_service: GeminiService | None = None
_queue = EmbeddingJobQueue()


def _get_gemini_service() -> GeminiService:
    global _gemini_service
    if _gemini_service is None:
        _gemini_service = GeminiService()
    return _gemini_service


def _progress_store(request: Request) -> Optional[ProgressStore]:
    redis = getattr(request.app.state, "redis", None)
    return ProgressStore(redis) if redis is not None else None


async def _sse(run: BatchRun) -> AsyncIterator[str]:
    async for event in run.events():
        yield f"event: {event.type}\ndata: {json.dumps(event.to_dict())}\n\n"


# ──────────────────────────────────────────────────────────────────────────────
# POST /process: Drain the queue with an SSE progress stream
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/process",
    summary="Process pending embedding jobs (text/event-stream)",
)
async def process_pending(
    request: Request,
    payload: ProcessRequest | None = None,
) -> StreamingResponse:
    """Start a batch run and stream its progress.

    The run executes in a background task: closing the stream stops the
    updates, not the work.  ``GET /progress`` shows where it got to.
    """
    generator = EmbeddingGenerator(
        embedding_client=_get_gemini_service(),
        queue=_queue,
        progress_store=_progress_store(request),
    )
    run = generator.start(max_jobs=payload.max_jobs if payload else None)
    logger.info("embedding_process_started")

    return StreamingResponse(
        _sse(run),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ──────────────────────────────────────────────────────────────────────────────
# Recovery
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/retry-failed",
    response_model=CountResponse,
    summary="Move every failed job back to pending",
)
async def retry_failed(db: AsyncSession = Depends(get_db)) -> CountResponse:
    count = await _queue.reset_failed(db)
    logger.info("embedding_jobs_retry_requested", count=count)
    return CountResponse(count=count)


@router.post(
    "/recover-stale",
    response_model=CountResponse,
    summary="Return jobs stuck in processing to pending",
)
async def recover_stale(
    older_than_seconds: int | None = Query(
        None, ge=0, description="Defaults to EMBEDDING_STALE_AFTER_SECONDS"
    ),
    db: AsyncSession = Depends(get_db),
) -> CountResponse:
    count = await _queue.recover_stale(db, older_than_seconds=older_than_seconds)
    return CountResponse(count=count)


# ──────────────────────────────────────────────────────────────────────────────
# Read-only views
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/stats", response_model=QueueStatsResponse, summary="Job counts per status")
async def get_stats(db: AsyncSession = Depends(get_db)) -> QueueStatsResponse:
    return QueueStatsResponse(**await _queue.count_by_status(db))


@router.get(
    "/jobs",
    response_model=list[EmbeddingJobResponse],
    summary="List embedding jobs",
)
async def list_jobs(
    job_status: str | None = Query(
        None,
        alias="status",
        description="Filter by status: pending, processing, completed, failed",
    ),
    limit: int = Query(100, ge=1, le=500, description="Max items to return"),
    offset: int = Query(0, ge=0, description="Number of items to skip"),
    db: AsyncSession = Depends(get_db),
) -> list[EmbeddingJob]:
    if job_status is not None and job_status not in JOB_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid status. Must be one of: {', '.join(JOB_STATUSES)}",
        )
    return await _queue.list_jobs(db, status=job_status, limit=limit, offset=offset)


@router.get(
    "/progress",
    response_model=ProgressResponse,
    summary="Latest batch-run progress snapshot",
)
async def get_progress(request: Request) -> ProgressResponse:
    store = _progress_store(request)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Progress store is not available.",
        )
    snapshot = await store.load()
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No batch run has reported progress yet.",
        )
    return ProgressResponse(**snapshot)


# ──────────────────────────────────────────────────────────────────────────────
# Enqueueing
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/queue",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue one embedding job",
)
async def enqueue_job(
    payload: EnqueueRequest,
    db: AsyncSession = Depends(get_db),
) -> EnqueueResponse:
    """Queue a unit for (re)embedding.

    Returns the already-pending job when the same unit is queued.
    """
    try:
        job_id = await _queue.enqueue(
            payload.job_type, payload.target_id, db, dimension=payload.dimension
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    return EnqueueResponse(job_id=job_id)


@router.post(
    "/enqueue-missing",
    response_model=EnqueueMissingResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue every active unit without a current embedding",
)
async def enqueue_missing(db: AsyncSession = Depends(get_db)) -> EnqueueMissingResponse:
    counts = await ContentService(queue=_queue).enqueue_missing(db)
    created = sum(v for k, v in counts.items() if k != "already_queued")
    return EnqueueMissingResponse(**counts, total=created)
