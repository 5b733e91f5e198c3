"""Unit tests for ContentService: edits invalidate exactly the affected unit."""
import uuid
from unittest.mock import MagicMock, AsyncMock

import pytest

from app.models.photographer import Photographer, PhotographerProfile
from app.models.survey import SurveyChoice, SurveyImage
from app.services.content_service import ContentService
from app.utils.errors import NotFoundError

JOB_ID = uuid.UUID("00000000-0000-0000-0000-00000000000a")


@pytest.fixture
def queue():
    queue = MagicMock()
    queue.enqueue = AsyncMock(return_value=JOB_ID)
    return queue


@pytest.fixture
def service(queue):
    return ContentService(queue=queue)


def _rows(db_session, **rows_by_model):
    async def _get(model, key):
        return rows_by_model.get(model.__name__)

    db_session.get = AsyncMock(side_effect=_get)


class TestProfileEdits:
    """Tests for per-dimension invalidation on profile edits."""

    @pytest.fixture
    def profile(self, make_profile):
        return make_profile()

    @pytest.fixture
    def loaded(self, db_session, profile):
        photographer = Photographer(id=profile.photographer_id, name="Ara", email="ara@example.com")
        _rows(db_session, Photographer=photographer, PhotographerProfile=profile)
        return db_session

    @pytest.mark.asyncio
    async def test_edit_invalidates_only_that_dimension(self, service, queue, loaded, profile):
        _, job_ids = await service.upsert_profile(
            profile.photographer_id,
            loaded,
            descriptions={"style_emotion": "Moody film tones and grain."},
        )

        assert job_ids == [JOB_ID]
        assert profile.style_emotion_description == "Moody film tones and grain."
        assert profile.style_emotion_embedding is None
        assert profile.style_emotion_embedding_generated_at is None
        for dimension in ("communication_psychology", "purpose_story", "companion"):
            assert profile.has_current_embedding(dimension)
        queue.enqueue.assert_awaited_once_with(
            "profile_dimension_embedding",
            profile.photographer_id,
            loaded,
            dimension="style_emotion",
        )

    @pytest.mark.asyncio
    async def test_unchanged_text_enqueues_nothing(self, service, queue, loaded, profile):
        _, job_ids = await service.upsert_profile(
            profile.photographer_id,
            loaded,
            descriptions={"companion": "companion description"},
            price_min=100000,
            price_max=200000,
        )

        assert job_ids == []
        queue.enqueue.assert_not_awaited()
        assert profile.has_current_embedding("companion")
        assert (profile.price_min, profile.price_max) == (100000, 200000)

    @pytest.mark.asyncio
    async def test_clearing_description_invalidates_without_job(
        self, service, queue, loaded, profile
    ):
        await service.upsert_profile(
            profile.photographer_id, loaded, descriptions={"purpose_story": "  "}
        )

        assert profile.purpose_story_description is None
        assert not profile.has_current_embedding("purpose_story")
        assert profile.profile_completed is False
        queue.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_profile_created(self, service, queue, db_session):
        photographer = Photographer(id=uuid.uuid4(), name="Min", email="min@example.com")
        _rows(db_session, Photographer=photographer)

        profile, job_ids = await service.upsert_profile(
            photographer.id,
            db_session,
            descriptions={"style_emotion": "Bright and airy."},
            service_regions=["seoul"],
        )

        assert isinstance(profile, PhotographerProfile)
        db_session.add.assert_called_once_with(profile)
        assert profile.service_regions == ["seoul"]
        assert profile.profile_completed is False
        assert job_ids == [JOB_ID]

    @pytest.mark.asyncio
    async def test_unknown_photographer(self, service, db_session):
        _rows(db_session)
        with pytest.raises(NotFoundError):
            await service.upsert_profile(uuid.uuid4(), db_session)

    @pytest.mark.asyncio
    async def test_validation(self, service, db_session):
        with pytest.raises(ValueError):
            await service.upsert_profile(uuid.uuid4(), db_session, descriptions={"lighting": "x"})
        with pytest.raises(ValueError):
            await service.upsert_profile(uuid.uuid4(), db_session, price_min=5, price_max=1)


class TestSurveyEdits:
    """Tests for choice and image edits."""

    @pytest.fixture
    def choice(self, now):
        return SurveyChoice(
            id=uuid.uuid4(),
            question_id=uuid.uuid4(),
            choice_key="calm",
            choice_label="Calm",
            choice_order=1,
            is_active=True,
            choice_embedding=[1.0, 0.0],
            embedding_generated_at=now,
        )

    @pytest.mark.asyncio
    async def test_label_change_invalidates_choice(self, service, queue, db_session, choice):
        _rows(db_session, SurveyChoice=choice)

        _, job_id = await service.update_choice(choice.id, db_session, choice_label="Calm and quiet")

        assert job_id == JOB_ID
        assert choice.choice_embedding is None
        assert choice.embedding_generated_at is None
        queue.enqueue.assert_awaited_once_with(
            "choice_embedding", choice.id, db_session, dimension=None
        )

    @pytest.mark.asyncio
    async def test_reorder_keeps_embedding(self, service, queue, db_session, choice):
        _rows(db_session, SurveyChoice=choice)

        _, job_id = await service.update_choice(
            choice.id, db_session, choice_label="Calm", choice_order=3, is_active=False
        )

        assert job_id is None
        assert choice.choice_embedding == [1.0, 0.0]
        assert choice.choice_order == 3
        queue.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_image_url_change_invalidates(self, service, queue, db_session, now):
        image = SurveyImage(
            id=uuid.uuid4(),
            question_id=uuid.uuid4(),
            image_key="golden",
            image_label="Golden hour",
            image_url="gs://bucket/old.jpg",
            image_order=1,
            image_embedding=[0.0, 1.0],
            embedding_generated_at=now,
        )
        _rows(db_session, SurveyImage=image)

        _, job_id = await service.update_image(image.id, db_session, image_url="gs://bucket/new.jpg")

        assert job_id == JOB_ID
        assert image.image_embedding is None
        assert image.image_url == "gs://bucket/new.jpg"

    @pytest.mark.asyncio
    async def test_missing_choice(self, service, db_session):
        _rows(db_session)
        with pytest.raises(NotFoundError):
            await service.update_choice(uuid.uuid4(), db_session, choice_label="x")

    @pytest.mark.asyncio
    async def test_create_choice_enqueues(self, service, queue, db_session):
        question_id = uuid.uuid4()
        _rows(db_session, SurveyQuestion=MagicMock(id=question_id))

        choice = await service.create_choice(question_id, "vivid", "Vivid", db_session)

        db_session.add.assert_called_once_with(choice)
        queue.enqueue.assert_awaited_once_with("choice_embedding", choice.id, db_session)


class TestEnqueueMissing:
    """Tests for generate-all counts."""

    @staticmethod
    def _result(rows):
        result = MagicMock()
        result.scalars.return_value.all.return_value = rows
        return result

    @pytest.mark.asyncio
    async def test_already_pending_jobs_not_counted_as_created(self, service, queue, db_session):
        pending_job = uuid.uuid4()
        new_job = uuid.uuid4()
        queued_choice, fresh_choice = uuid.uuid4(), uuid.uuid4()
        db_session.execute = AsyncMock(
            side_effect=[
                self._result([pending_job]),
                self._result([queued_choice, fresh_choice]),
                self._result([]),
                self._result([]),
            ]
        )
        queue.enqueue = AsyncMock(side_effect=[pending_job, new_job])

        counts = await service.enqueue_missing(db_session)

        assert counts == {
            "choice_embedding": 1,
            "image_embedding": 0,
            "profile_dimension_embedding": 0,
            "already_queued": 1,
        }
        assert queue.enqueue.await_count == 2
