"""
Viewfinder: Embedding Generator

Drains the embedding job queue in bounded batches:

1. Recover jobs abandoned in ``processing`` by a dead worker.
2. Claim up to ``EMBEDDING_BATCH_SIZE`` pending jobs (``SKIP LOCKED``).
3. Resolve each job to its source content, then embed all text sources in a
   single batched request (falling back to one request per text if the
   batch call fails) and every image source individually.  Remote calls
   never exceed ``EMBEDDING_MAX_CONCURRENCY`` in flight.
4. Write each job's vectors and its terminal status in one short
   transaction.  A failing job is recorded as ``failed`` and the batch
   carries on.

Progress is reported as a stream of :class:`ProgressEvent`.  ``start()``
runs the loop in a background task so that a disconnecting SSE client never
cancels the work; the latest event is also mirrored to Redis.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import structlog

from app.config import get_settings
from app.database import session_scope
from app.services.embedding_queue import ClaimedJob, EmbeddingJobQueue
from app.services.embedding_store import EmbeddingSource, EmbeddingStore
from app.utils.errors import EmbeddingGenerationFailed

logger = structlog.get_logger("viewfinder.embedding_generator")

# Background batch runs.  Holding a reference keeps the event loop from
# garbage-collecting a task whose stream consumer has gone away.
_background_runs: set[asyncio.Task] = set()


@dataclass
class ProgressEvent:
    type: str  # start | progress | complete | error
    run_id: str
    processed: int = 0
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    recovered: int = 0
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BatchOutcome:
    succeeded: int = 0
    failed: int = 0
    failures: dict[str, str] = field(default_factory=dict)


class BatchRun:
    """A batch run executing in the background.

    ``events()`` yields progress events until the run finishes.  Abandoning
    the iterator does not stop the run.
    """

    def __init__(self, events: AsyncIterator[ProgressEvent]) -> None:
        self.last_event: Optional[ProgressEvent] = None
        self._queue: asyncio.Queue[Optional[ProgressEvent]] = asyncio.Queue()
        self.task = asyncio.create_task(self._pump(events))
        _background_runs.add(self.task)
        self.task.add_done_callback(_background_runs.discard)

    async def _pump(self, events: AsyncIterator[ProgressEvent]) -> None:
        try:
            async for event in events:
                self.last_event = event
                self._queue.put_nowait(event)
        finally:
            self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def wait(self) -> Optional[ProgressEvent]:
        await self.task
        return self.last_event


def active_run_count() -> int:
    return len(_background_runs)


async def _bounded(semaphore: asyncio.Semaphore, call: Callable[[], Awaitable[Any]]) -> Any:
    async with semaphore:
        return await call()


class EmbeddingGenerator:
    """Processes queued embedding jobs.

    All collaborators are injectable; by default the Gemini client, the
    store, the queue and the application session factory are used.
    """

    def __init__(
        self,
        embedding_client: Any | None = None,
        store: EmbeddingStore | None = None,
        queue: EmbeddingJobQueue | None = None,
        session_factory: Any | None = None,
        progress_store: Any | None = None,
        batch_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        if embedding_client is None:
            from app.services.gemini_service import GeminiService

            embedding_client = GeminiService()

        self._client = embedding_client
        self._store = store or EmbeddingStore()
        self._queue = queue or EmbeddingJobQueue()
        self._session_factory = session_factory
        self._progress_store = progress_store
        self._batch_size = batch_size or settings.EMBEDDING_BATCH_SIZE
        self._max_concurrency = max_concurrency or settings.EMBEDDING_MAX_CONCURRENCY

    # ══════════════════════════════════════════════════════════════════
    # Public API
    # ══════════════════════════════════════════════════════════════════

    def start(self, max_jobs: Optional[int] = None) -> BatchRun:
        """Launch :meth:`run` in a background task."""
        return BatchRun(self.run(max_jobs=max_jobs))

    async def run(self, max_jobs: Optional[int] = None) -> AsyncIterator[ProgressEvent]:
        """Drain the queue (or at most ``max_jobs`` jobs), yielding progress."""
        run_id = uuid.uuid4().hex
        log = logger.bind(run_id=run_id)
        processed = succeeded = failed = recovered = 0
        total = 0

        try:
            async with session_scope(self._session_factory) as session:
                recovered = await self._queue.recover_stale(session)
                counts = await self._queue.count_by_status(session)

            total = counts.get("pending", 0)
            if max_jobs is not None:
                total = min(total, max_jobs)

            log.info("embedding_run_started", total=total, recovered=recovered)
            event = ProgressEvent("start", run_id, 0, total, 0, 0, recovered)
            await self._publish(event)
            yield event

            while max_jobs is None or processed < max_jobs:
                limit = self._batch_size
                if max_jobs is not None:
                    limit = min(limit, max_jobs - processed)

                async with session_scope(self._session_factory) as session:
                    jobs = await self._queue.claim_pending(limit, session)
                if not jobs:
                    break

                outcome = await self.process_batch(jobs)
                processed += len(jobs)
                succeeded += outcome.succeeded
                failed += outcome.failed
                total = max(total, processed)

                event = ProgressEvent(
                    "progress", run_id, processed, total, succeeded, failed, recovered
                )
                await self._publish(event)
                yield event

        except Exception as exc:
            log.exception("embedding_run_failed", processed=processed)
            event = ProgressEvent(
                "error", run_id, processed, total, succeeded, failed, recovered,
                message=str(exc),
            )
            await self._publish(event)
            yield event
            return

        log.info(
            "embedding_run_completed",
            processed=processed,
            succeeded=succeeded,
            failed=failed,
        )
        event = ProgressEvent(
            "complete", run_id, processed, max(total, processed), succeeded, failed, recovered
        )
        await self._publish(event)
        yield event

    async def process_batch(self, jobs: list[ClaimedJob]) -> BatchOutcome:
        """Embed and persist one claimed batch; never raises for a single job."""
        semaphore = asyncio.Semaphore(self._max_concurrency)
        outcome = BatchOutcome()

        # ── 1. Resolve sources ────────────────────────────────────────
        sources_by_job: dict[uuid.UUID, list[EmbeddingSource]] = {}
        unresolved: dict[uuid.UUID, str] = {}
        async with session_scope(self._session_factory) as session:
            for job in jobs:
                try:
                    sources_by_job[job.id] = await self._store.load_sources_for_job(
                        job, session
                    )
                except LookupError as exc:
                    unresolved[job.id] = str(exc)

        for job_id, reason in unresolved.items():
            await self._record_failure(job_id, reason)
            outcome.failed += 1
            outcome.failures[str(job_id)] = reason

        # ── 2. Embed ──────────────────────────────────────────────────
        all_sources = [s for sources in sources_by_job.values() for s in sources]
        vectors = await self._embed_sources(all_sources, semaphore)

        # ── 3. Persist per job ────────────────────────────────────────
        resolved = [job for job in jobs if job.id in sources_by_job]
        results = await asyncio.gather(
            *(
                _bounded(
                    semaphore,
                    lambda job=job: self._finish_job(job, sources_by_job[job.id], vectors),
                )
                for job in resolved
            )
        )
        for job, error in zip(resolved, results):
            if error is None:
                outcome.succeeded += 1
            else:
                outcome.failed += 1
                outcome.failures[str(job.id)] = error

        logger.info(
            "embedding_batch_processed",
            jobs=len(jobs),
            succeeded=outcome.succeeded,
            failed=outcome.failed,
        )
        return outcome

    # ══════════════════════════════════════════════════════════════════
    # Internals
    # ══════════════════════════════════════════════════════════════════

    async def _embed_sources(
        self,
        sources: list[EmbeddingSource],
        semaphore: asyncio.Semaphore,
    ) -> dict[EmbeddingSource, Any]:
        """Map each source to its vector or to the exception that stopped it."""
        unique = list(dict.fromkeys(sources))
        text_sources = [s for s in unique if not s.is_image]
        image_sources = [s for s in unique if s.is_image]

        results: dict[EmbeddingSource, Any] = {}
        if text_sources:
            results.update(await self._embed_text_sources(text_sources, semaphore))

        if image_sources:
            outcomes = await asyncio.gather(
                *(
                    _bounded(
                        semaphore,
                        lambda s=s: self._client.embed_image(s.image_url, s.text),
                    )
                    for s in image_sources
                ),
                return_exceptions=True,
            )
            results.update(zip(image_sources, outcomes))

        return results

    async def _embed_text_sources(
        self,
        sources: list[EmbeddingSource],
        semaphore: asyncio.Semaphore,
    ) -> dict[EmbeddingSource, Any]:
        try:
            vectors = await _bounded(
                semaphore, lambda: self._client.embed_texts([s.text for s in sources])
            )
            return dict(zip(sources, vectors))
        except Exception as exc:
            if len(sources) == 1:
                return {sources[0]: exc}
            logger.warning(
                "batch_embed_failed_falling_back",
                count=len(sources),
                error=str(exc),
            )

        outcomes = await asyncio.gather(
            *(
                _bounded(semaphore, lambda s=s: self._client.embed_text(s.text))
                for s in sources
            ),
            return_exceptions=True,
        )
        return dict(zip(sources, outcomes))

    async def _finish_job(
        self,
        job: ClaimedJob,
        sources: list[EmbeddingSource],
        vectors: dict[EmbeddingSource, Any],
    ) -> Optional[str]:
        """Write a job's vectors and terminal status; return its error, if any."""
        failures = [
            str(EmbeddingGenerationFailed(str(source.unit), str(vectors[source])))
            for source in sources
            if isinstance(vectors.get(source), BaseException)
        ]
        error = "; ".join(failures) or None

        try:
            async with session_scope(self._session_factory) as session:
                for source in sources:
                    vector = vectors.get(source)
                    if vector is None or isinstance(vector, BaseException):
                        continue
                    await self._store.set_embedding(
                        source.unit,
                        vector,
                        session,
                        expected_fingerprint=source.fingerprint,
                    )
                if error:
                    await self._queue.mark_failed(job.id, error, session)
                else:
                    await self._queue.mark_completed(job.id, session)
        except Exception as exc:
            logger.exception("embedding_job_persist_failed", job_id=str(job.id))
            error = str(EmbeddingGenerationFailed(f"job {job.id}", f"persist failed: {exc}"))
            await self._record_failure(job.id, error)

        return error

    async def _record_failure(self, job_id: uuid.UUID, error: str) -> None:
        # A job left in processing is picked up again by recover_stale.
        try:
            async with session_scope(self._session_factory) as session:
                await self._queue.mark_failed(job_id, error, session)
        except Exception:
            logger.exception("embedding_job_mark_failed_failed", job_id=str(job_id))

    async def _publish(self, event: ProgressEvent) -> None:
        if self._progress_store is None:
            return
        try:
            await self._progress_store.save(event.to_dict())
        except Exception as exc:
            logger.warning("progress_snapshot_failed", error=str(exc))
