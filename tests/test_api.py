"""HTTP-level tests: routing, error rendering and admin views.

The database and external services are replaced with mocks; the FastAPI
lifespan is not started.
"""
import json
import uuid
from unittest.mock import patch, MagicMock, AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.main import app
from app.services.session_service import RankedPhotographer, SessionMatch
from app.utils.errors import NoUsableSignal


@pytest.fixture
def client():
    async def _db():
        yield AsyncMock()

    app.dependency_overrides[get_db] = _db
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.redis = None


@pytest.fixture
def session_service():
    service = MagicMock()
    service.match_session = AsyncMock()
    service.get_results = AsyncMock()
    with patch("app.api.matching._get_session_service", return_value=service):
        yield service


class TestHealth:
    """Tests for the liveness probe."""

    def test_liveness(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestMatchEndpoint:
    """Tests for POST /api/v1/match."""

    def test_ranked_results(self, client, session_service):
        session_id = uuid.uuid4()
        photographer_id = uuid.uuid4()
        session_service.match_session.return_value = SessionMatch(
            session_id=session_id,
            status="matched",
            run_id=uuid.uuid4(),
            results=[
                RankedPhotographer(
                    photographer_id=photographer_id,
                    photographer_name="Ara",
                    rank_position=1,
                    total_score=87.5,
                    dimension_scores={
                        "style_emotion": 90.0,
                        "communication_psychology": 85.0,
                        "purpose_story": 80.0,
                        "companion": None,
                    },
                )
            ],
        )

        response = client.post("/api/v1/match", json={"session_id": str(session_id)})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "matched"
        assert body["results"][0]["photographer_id"] == str(photographer_id)
        assert body["results"][0]["dimension_scores"]["companion"] is None
        kwargs = session_service.match_session.await_args.kwargs
        assert kwargs["recompute"] is False
        assert kwargs["candidate_ids"] is None

    def test_pending_embeddings_is_409(self, client, session_service):
        session_service.match_session.side_effect = NoUsableSignal(
            ["style_emotion"], pending_units=3, session_id="s"
        )

        response = client.post("/api/v1/match", json={"session_id": str(uuid.uuid4())})

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "embeddings_pending"
        assert body["details"]["pending_units"] == 3

    def test_insufficient_signal_is_422(self, client, session_service):
        session_service.match_session.side_effect = NoUsableSignal(["style_emotion"])

        response = client.post("/api/v1/match", json={"session_id": str(uuid.uuid4())})

        assert response.status_code == 422
        assert response.json()["code"] == "insufficient_signal"

    def test_malformed_request(self, client, session_service):
        response = client.post("/api/v1/match", json={"session_id": "not-a-uuid"})
        assert response.status_code == 422
        session_service.match_session.assert_not_awaited()


class TestSessionsEndpoint:
    """Tests for POST /api/v1/sessions validation."""

    def test_empty_responses_rejected(self, client):
        response = client.post("/api/v1/sessions", json={"responses": {}})
        assert response.status_code == 422


class TestAdminEmbeddings:
    """Tests for operator views of the embedding queue."""

    def test_stats(self, client):
        queue = MagicMock()
        queue.count_by_status = AsyncMock(
            return_value={"pending": 2, "processing": 1, "completed": 7, "failed": 0, "total": 10}
        )
        with patch("app.api.admin.embeddings._queue", queue):
            response = client.get("/api/v1/admin/embeddings/stats")

        assert response.status_code == 200
        assert response.json()["total"] == 10

    def test_jobs_rejects_unknown_status(self, client):
        response = client.get("/api/v1/admin/embeddings/jobs", params={"status": "stuck"})
        assert response.status_code == 422

    def test_progress_without_redis(self, client):
        app.state.redis = None
        response = client.get("/api/v1/admin/embeddings/progress")
        assert response.status_code == 503

    def test_progress_snapshot(self, client):
        snapshot = {
            "type": "progress",
            "run_id": "abc",
            "processed": 4,
            "total": 10,
            "succeeded": 3,
            "failed": 1,
            "recovered": 0,
            "message": None,
        }
        redis = MagicMock()
        redis.get = AsyncMock(return_value=json.dumps(snapshot))
        app.state.redis = redis

        response = client.get("/api/v1/admin/embeddings/progress")

        assert response.status_code == 200
        assert response.json()["processed"] == 4

    def test_enqueue_rejects_unknown_dimension(self, client):
        response = client.post(
            "/api/v1/admin/embeddings/queue",
            json={
                "job_type": "profile_dimension_embedding",
                "target_id": str(uuid.uuid4()),
                "dimension": "lighting",
            },
        )
        assert response.status_code == 422


class TestAdminContent:
    """Tests for content edit endpoints."""

    def test_profile_upsert_passes_only_sent_descriptions(self, client, make_profile):
        profile = make_profile()
        profile.style_emotion_embedding = None
        service = MagicMock()
        service.upsert_profile = AsyncMock(return_value=(profile, [uuid.uuid4()]))

        with patch("app.api.admin.content._content_service", service):
            response = client.put(
                f"/api/v1/admin/content/photographers/{profile.photographer_id}/profile",
                json={"style_emotion_description": "Moody film tones."},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["pending_dimensions"] == ["style_emotion"]
        assert len(body["job_ids"]) == 1
        kwargs = service.upsert_profile.await_args.kwargs
        assert kwargs["descriptions"] == {"style_emotion": "Moody film tones."}
        assert kwargs["price_min"] is None

    def test_profile_upsert_rejects_inverted_price_range(self, client):
        response = client.put(
            f"/api/v1/admin/content/photographers/{uuid.uuid4()}/profile",
            json={"price_min": 300000, "price_max": 100000},
        )
        assert response.status_code == 422
