"""Unit tests for EmbeddingGenerator batch processing and progress events."""
import uuid
from unittest.mock import MagicMock, AsyncMock

import pytest

from app.services.embedding_generator import EmbeddingGenerator
from app.services.embedding_queue import ClaimedJob
from app.services.embedding_store import ContentUnit, EmbeddingSource
from app.utils.errors import EmbeddingGenerationFailed

VECTOR = [0.1, 0.2, 0.3, 0.4]


def _job(job_type="choice_embedding"):
    return ClaimedJob(
        id=uuid.uuid4(),
        job_type=job_type,
        target_id=uuid.uuid4(),
        dimension=None,
        attempts=1,
    )


def _text_source(job, text):
    return EmbeddingSource(unit=ContentUnit(kind="choice", target_id=job.target_id), text=text)


@pytest.fixture
def queue():
    queue = MagicMock()
    queue.recover_stale = AsyncMock(return_value=0)
    queue.count_by_status = AsyncMock(return_value={"pending": 0})
    queue.claim_pending = AsyncMock(return_value=[])
    queue.mark_completed = AsyncMock()
    queue.mark_failed = AsyncMock()
    return queue


@pytest.fixture
def store():
    store = MagicMock()
    store.load_sources_for_job = AsyncMock()
    store.set_embedding = AsyncMock(return_value=True)
    return store


@pytest.fixture
def client():
    client = MagicMock()
    client.embed_texts = AsyncMock()
    client.embed_text = AsyncMock(return_value=VECTOR)
    client.embed_image = AsyncMock(return_value=VECTOR)
    return client


@pytest.fixture
def generator(client, store, queue, session_factory):
    return EmbeddingGenerator(
        embedding_client=client,
        store=store,
        queue=queue,
        session_factory=session_factory,
        batch_size=2,
        max_concurrency=2,
    )


def _sources_for(mapping):
    async def _load(job, session):
        value = mapping[job.id]
        if isinstance(value, Exception):
            raise value
        return value

    return _load


class TestProcessBatch:
    """Tests for embedding and persisting one claimed batch."""

    @pytest.mark.asyncio
    async def test_text_jobs_embedded_in_one_call(self, generator, client, store, queue):
        jobs = [_job(), _job()]
        sources = {job.id: [_text_source(job, f"text {i}")] for i, job in enumerate(jobs)}
        store.load_sources_for_job.side_effect = _sources_for(sources)
        client.embed_texts.return_value = [VECTOR, VECTOR]

        outcome = await generator.process_batch(jobs)

        assert outcome.succeeded == 2
        assert outcome.failed == 0
        client.embed_texts.assert_awaited_once_with(["text 0", "text 1"])
        assert queue.mark_completed.await_count == 2
        written = {
            (c.args[0], c.kwargs["expected_fingerprint"])
            for c in store.set_embedding.await_args_list
        }
        assert written == {(s[0].unit, s[0].fingerprint) for s in sources.values()}

    @pytest.mark.asyncio
    async def test_batch_failure_falls_back_per_text(self, generator, client, store, queue):
        good, bad = _job(), _job()
        store.load_sources_for_job.side_effect = _sources_for(
            {good.id: [_text_source(good, "good")], bad.id: [_text_source(bad, "bad")]}
        )
        client.embed_texts.side_effect = RuntimeError("batch rejected")

        def _embed(text):
            if text == "bad":
                raise ValueError("content blocked")
            return VECTOR

        client.embed_text.side_effect = _embed

        outcome = await generator.process_batch([good, bad])

        assert outcome.succeeded == 1
        assert outcome.failed == 1
        assert "content blocked" in outcome.failures[str(bad.id)]
        queue.mark_completed.assert_awaited_once()
        assert queue.mark_completed.await_args.args[0] == good.id
        assert queue.mark_failed.await_args.args[0] == bad.id

    @pytest.mark.asyncio
    async def test_unresolvable_job_marked_failed(self, generator, client, store, queue):
        gone, ok = _job(), _job()
        store.load_sources_for_job.side_effect = _sources_for(
            {gone.id: LookupError("Content unit missing"), ok.id: [_text_source(ok, "ok")]}
        )
        client.embed_texts.return_value = [VECTOR]

        outcome = await generator.process_batch([gone, ok])

        assert outcome.succeeded == 1
        assert outcome.failed == 1
        failed_ids = [c.args[0] for c in queue.mark_failed.await_args_list]
        assert failed_ids == [gone.id]

    @pytest.mark.asyncio
    async def test_image_jobs_embedded_individually(self, generator, client, store, queue):
        job = _job("image_embedding")
        source = EmbeddingSource(
            unit=ContentUnit(kind="image", target_id=job.target_id),
            text="Golden hour",
            image_url="gs://bucket/golden.jpg",
        )
        store.load_sources_for_job.side_effect = _sources_for({job.id: [source]})

        outcome = await generator.process_batch([job])

        assert outcome.succeeded == 1
        client.embed_image.assert_awaited_once_with("gs://bucket/golden.jpg", "Golden hour")
        client.embed_texts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_persist_error_marks_job_failed(self, generator, client, store, queue):
        job = _job()
        store.load_sources_for_job.side_effect = _sources_for({job.id: [_text_source(job, "t")]})
        client.embed_texts.return_value = [VECTOR]
        store.set_embedding.side_effect = RuntimeError("deadlock detected")

        outcome = await generator.process_batch([job])

        assert outcome.failed == 1
        assert "persist failed" in outcome.failures[str(job.id)]
        queue.mark_failed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_message_names_the_unit(self, generator, client, store, queue):
        job = _job()
        source = _text_source(job, "blocked")
        store.load_sources_for_job.side_effect = _sources_for({job.id: [source]})
        client.embed_texts.side_effect = ValueError("content blocked")

        await generator.process_batch([job])

        job_id, message = queue.mark_failed.await_args.args[:2]
        assert job_id == job.id
        assert message == str(EmbeddingGenerationFailed(str(source.unit), "content blocked"))
        assert message.startswith(f"Embedding failed for choice:{job.target_id}")

    @pytest.mark.asyncio
    async def test_failed_status_write_does_not_abort_batch(
        self, generator, client, store, queue
    ):
        broken, ok = _job(), _job()
        store.load_sources_for_job.side_effect = _sources_for(
            {broken.id: [_text_source(broken, "broken")], ok.id: [_text_source(ok, "ok")]}
        )
        client.embed_texts.return_value = [VECTOR, VECTOR]

        async def _set_embedding(unit, vector, session, expected_fingerprint=None):
            if unit.target_id == broken.target_id:
                raise RuntimeError("deadlock detected")
            return True

        store.set_embedding.side_effect = _set_embedding
        queue.mark_failed.side_effect = RuntimeError("connection lost")

        outcome = await generator.process_batch([broken, ok])

        assert outcome.succeeded == 1
        assert outcome.failed == 1
        assert "persist failed" in outcome.failures[str(broken.id)]
        assert queue.mark_completed.await_args.args[0] == ok.id


class TestRun:
    """Tests for the progress event stream."""

    @pytest.mark.asyncio
    async def test_event_sequence(self, generator, client, store, queue):
        jobs = [_job(), _job()]
        queue.count_by_status.return_value = {"pending": 2}
        queue.claim_pending.side_effect = [jobs, []]
        store.load_sources_for_job.side_effect = _sources_for(
            {job.id: [_text_source(job, str(job.id))] for job in jobs}
        )
        client.embed_texts.return_value = [VECTOR, VECTOR]

        events = [event async for event in generator.run()]

        assert [e.type for e in events] == ["start", "progress", "complete"]
        assert events[0].total == 2
        assert events[-1].processed == 2
        assert events[-1].succeeded == 2
        assert len({e.run_id for e in events}) == 1

    @pytest.mark.asyncio
    async def test_max_jobs_limits_claims(self, generator, queue):
        queue.count_by_status.return_value = {"pending": 10}

        events = [event async for event in generator.run(max_jobs=1)]

        assert events[0].total == 1
        queue.claim_pending.assert_awaited_once()
        assert queue.claim_pending.await_args.args[0] == 1

    @pytest.mark.asyncio
    async def test_infrastructure_error_ends_with_error_event(self, generator, queue):
        queue.recover_stale.side_effect = RuntimeError("database unavailable")

        events = [event async for event in generator.run()]

        assert [e.type for e in events] == ["error"]
        assert "database unavailable" in events[0].message

    @pytest.mark.asyncio
    async def test_progress_snapshot_failure_is_ignored(
        self, client, store, queue, session_factory
    ):
        progress = MagicMock()
        progress.save = AsyncMock(side_effect=ConnectionError("redis down"))
        generator = EmbeddingGenerator(
            embedding_client=client,
            store=store,
            queue=queue,
            session_factory=session_factory,
            progress_store=progress,
        )

        events = [event async for event in generator.run()]

        assert [e.type for e in events] == ["start", "complete"]
        assert progress.save.await_count == 2

    @pytest.mark.asyncio
    async def test_background_run(self, generator, queue):
        run = generator.start()

        last = await run.wait()
        streamed = [event async for event in run.events()]

        assert last.type == "complete"
        assert [e.type for e in streamed] == ["start", "complete"]
