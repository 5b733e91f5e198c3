"""Unit tests for the four-dimension matching engine and MatchingService."""
import uuid
from unittest.mock import patch, MagicMock, AsyncMock

import numpy as np
import pytest

from app.models.matching import MatchingResult, MatchingSession
from app.models.photographer import DIMENSIONS
from app.services.matching_service import (
    CandidateProfile,
    MatchingEngine,
    MatchingService,
    candidate_from_profile,
    cosine_similarity,
    extract_filters,
    similarity_to_score,
)
from app.utils.errors import NoUsableSignal, NotFoundError


def unit_vector(*components, dim=4):
    values = list(components) + [0.0] * (dim - len(components))
    return np.asarray(values, dtype=np.float64)


def _settings(policy="fixed"):
    settings = MagicMock()
    settings.dimension_weights = {
        "style_emotion": 0.40,
        "communication_psychology": 0.30,
        "purpose_story": 0.20,
        "companion": 0.10,
    }
    settings.MATCH_WEIGHT_POLICY = policy
    settings.MATCH_ENABLE_REGION_FILTER = True
    settings.MATCH_ENABLE_BUDGET_FILTER = True
    settings.MATCH_ENABLE_COMPANION_FILTER = False
    return settings


@pytest.fixture
def engine():
    with patch("app.services.matching_service.get_settings") as mock:
        mock.return_value = _settings()
        return MatchingEngine()


def _candidate(vector=None, photographer_id=None, **overrides):
    vectors = {d: unit_vector(*(vector or [1.0])) for d in DIMENSIONS}
    vectors.update({d: unit_vector(*v) for d, v in overrides.items()})
    return CandidateProfile(photographer_id=photographer_id or uuid.uuid4(), vectors=vectors)


def _session(**dims):
    return {d: (unit_vector(*v) if v is not None else None) for d, v in dims.items()}


class TestScoring:
    """Tests for the similarity-to-score mapping."""

    def test_identical_vectors_score_100(self):
        assert similarity_to_score(cosine_similarity(unit_vector(1, 2), unit_vector(1, 2))) == pytest.approx(100.0)

    def test_orthogonal_vectors_score_50(self):
        assert similarity_to_score(cosine_similarity(unit_vector(1, 0), unit_vector(0, 1))) == pytest.approx(50.0)

    def test_opposite_vectors_score_0(self):
        assert similarity_to_score(cosine_similarity(unit_vector(1), unit_vector(-1))) == pytest.approx(0.0)

    def test_score_is_clamped(self):
        assert similarity_to_score(1.0000001) == 100.0
        assert similarity_to_score(-1.0000001) == 0.0

    def test_zero_norm_has_no_similarity(self):
        assert cosine_similarity(unit_vector(0), unit_vector(1)) is None


class TestWeightedTotal:
    """Tests for combining dimension scores with fixed weights."""

    def test_single_question_identical_choice(self, engine):
        """One answered question whose choice equals the profile vector: 100 on that dimension."""
        session = _session(style_emotion=[1, 0])
        score = engine.score_candidate(session, _candidate([1, 0]))
        assert score.dimension_scores["style_emotion"] == pytest.approx(100.0)
        assert score.dimension_scores["companion"] is None
        assert score.total_score == pytest.approx(40.0)

    def test_all_dimensions_identical(self, engine):
        session = _session(**{d: [0.3, 0.7] for d in DIMENSIONS})
        score = engine.score_candidate(session, _candidate([0.3, 0.7]))
        assert score.total_score == pytest.approx(100.0)

    def test_missing_dimension_weight_not_redistributed(self, engine):
        """Three of four dimensions present: the companion weight is simply lost."""
        session = _session(style_emotion=[1], communication_psychology=[1], purpose_story=[1])
        score = engine.score_candidate(session, _candidate([1]))
        assert score.total_score == pytest.approx(90.0)

    def test_renormalize_policy(self):
        with patch("app.services.matching_service.get_settings") as mock:
            mock.return_value = _settings(policy="renormalize")
            engine = MatchingEngine()
        session = _session(style_emotion=[1], communication_psychology=[1], purpose_story=[1])
        score = engine.score_candidate(session, _candidate([1]))
        assert score.total_score == pytest.approx(100.0)

    def test_unknown_policy_rejected(self):
        with patch("app.services.matching_service.get_settings") as mock:
            mock.return_value = _settings()
            with pytest.raises(ValueError):
                MatchingEngine(weight_policy="proportional")

    def test_total_bounded_by_dimension_scores(self, engine):
        """With all dimensions present the total lies between the min and max dimension score."""
        rng = np.random.default_rng(7)
        session = {d: rng.normal(size=8) for d in DIMENSIONS}
        candidate = CandidateProfile(
            photographer_id=uuid.uuid4(),
            vectors={d: rng.normal(size=8) for d in DIMENSIONS},
        )
        score = engine.score_candidate(session, candidate)
        values = list(score.dimension_scores.values())
        assert min(values) - 1e-3 <= score.total_score <= max(values) + 1e-3


class TestRanking:
    """Tests for ordering, ties and empty-signal handling."""

    def test_descending_with_dense_positions(self, engine):
        close = _candidate([1, 0.1])
        far = _candidate([0, 1])
        exact = _candidate([1, 0])
        ranked = engine.rank(_session(style_emotion=[1, 0]), [far, close, exact])
        assert [r.photographer_id for r in ranked] == [
            exact.photographer_id,
            close.photographer_id,
            far.photographer_id,
        ]
        assert [r.rank_position for r in ranked] == [1, 2, 3]

    def test_ties_broken_by_photographer_id(self, engine):
        ids = sorted((uuid.uuid4() for _ in range(3)), key=str)
        candidates = [_candidate([1], photographer_id=pid) for pid in reversed(ids)]
        ranked = engine.rank(_session(style_emotion=[1]), candidates)
        assert [r.photographer_id for r in ranked] == ids

    def test_deterministic(self, engine):
        session = _session(style_emotion=[1, 0.5], purpose_story=[0.2, 1])
        candidates = [_candidate([i, 1]) for i in range(5)]
        first = engine.rank(session, candidates)
        second = engine.rank(session, list(candidates))
        assert [(r.photographer_id, r.total_score) for r in first] == [
            (r.photographer_id, r.total_score) for r in second
        ]

    def test_no_candidates_returns_empty(self, engine):
        assert engine.rank(_session(style_emotion=[1]), []) == []

    def test_no_dimension_raises_insufficient_signal(self, engine):
        with pytest.raises(NoUsableSignal) as exc_info:
            engine.rank(_session(style_emotion=None), [_candidate()])
        assert exc_info.value.code == "insufficient_signal"
        assert exc_info.value.status_code == 422
        assert exc_info.value.missing_dimensions == list(DIMENSIONS)

    def test_pending_units_raise_embeddings_pending(self, engine):
        with pytest.raises(NoUsableSignal) as exc_info:
            engine.rank({}, [_candidate()], pending_units=2)
        assert exc_info.value.code == "embeddings_pending"
        assert exc_info.value.status_code == 409

    def test_zero_vector_is_not_usable(self, engine):
        with pytest.raises(NoUsableSignal):
            engine.rank(_session(style_emotion=[0, 0]), [_candidate()])

    def test_signal_checked_before_candidates(self, engine):
        with pytest.raises(NoUsableSignal):
            engine.rank({}, [])


class TestCandidateSnapshot:
    """Tests for turning profiles into scoreable candidates."""

    def test_complete_profile(self, make_profile):
        profile = make_profile()
        candidate = candidate_from_profile(profile)
        assert candidate is not None
        assert set(candidate.vectors) == set(DIMENSIONS)

    def test_pending_dimension_excludes_profile(self, make_profile):
        profile = make_profile()
        profile.companion_embedding_generated_at = None
        assert candidate_from_profile(profile) is None


class TestFilters:
    """Tests for hard filters taken from quiz answers."""

    def test_extract_all(self):
        filters = extract_filters(
            {"region": "seoul", "budget": "150000-300000", "companion": ["couple"]}
        )
        assert filters.regions == ["seoul"]
        assert filters.price_min == 150000
        assert filters.price_max == 300000
        assert filters.companion_types == ["couple"]

    def test_open_ended_budget(self):
        filters = extract_filters({"budget": "300000-"})
        assert filters.price_min == 300000
        assert filters.price_max is None

    def test_zero_lower_bound_is_unbounded(self):
        filters = extract_filters({"budget": "0-150000"})
        assert filters.price_min is None
        assert filters.price_max == 150000

    def test_empty(self):
        assert extract_filters({"mood": "calm"}).is_empty()

    def test_disabled_toggle_drops_filter(self):
        with patch("app.services.matching_service.get_settings") as mock:
            mock.return_value = _settings()
            service = MatchingService(store=MagicMock(), engine=MatchingEngine())
        filters = service.filters_for({"region": "busan", "companion": "pet"})
        assert filters.regions == ["busan"]
        assert filters.companion_types == []


class TestComputeMatches:
    """Tests for the load-rank-persist pipeline."""

    @pytest.fixture
    def service(self):
        with patch("app.services.matching_service.get_settings") as mock:
            mock.return_value = _settings()
            store = MagicMock()
            store.load_active_questions = AsyncMock(return_value=[])
            store.load_completed_profiles = AsyncMock(return_value=[])
            return MatchingService(store=store, engine=MatchingEngine())

    @pytest.mark.asyncio
    async def test_unknown_session(self, service, db_session):
        db_session.get = AsyncMock(return_value=None)
        with pytest.raises(NotFoundError):
            await service.compute_matches(uuid.uuid4(), db_session)

    @pytest.mark.asyncio
    async def test_persists_run(self, service, db_session, make_question, make_profile):
        session_id = uuid.uuid4()
        session = MatchingSession(id=session_id, session_token="tok", responses={"mood": "calm"})
        db_session.get = AsyncMock(return_value=session)
        service.store.load_active_questions.return_value = [
            make_question("mood", "style_emotion", {"calm": [1.0, 0.0, 0.0, 0.0]})
        ]
        match = make_profile(vectors={"style_emotion": [1.0, 0.0, 0.0, 0.0]})
        other = make_profile(vectors={"style_emotion": [0.0, 1.0, 0.0, 0.0]})
        pending = make_profile()
        pending.purpose_story_embedding = None
        service.store.load_completed_profiles.return_value = [other, match, pending]

        run = await service.compute_matches(session_id, db_session)

        assert [r.photographer_id for r in run.results] == [
            match.photographer_id,
            other.photographer_id,
        ]
        assert run.results[0].total_score == pytest.approx(40.0)
        assert run.results[1].total_score == pytest.approx(20.0)
        assert run.pending_profiles == 1
        assert run.vectorization.missing_dimensions == [
            "communication_psychology",
            "purpose_story",
            "companion",
        ]
        added = [c.args[0] for c in db_session.add.call_args_list]
        assert len(added) == 2
        assert all(isinstance(r, MatchingResult) and r.run_id == run.run_id for r in added)
        assert session.completed_at is not None

    @pytest.mark.asyncio
    async def test_pending_choice_reports_embeddings_pending(
        self, service, db_session, make_question, make_profile
    ):
        session = MatchingSession(id=uuid.uuid4(), session_token="tok", responses={"mood": "calm"})
        db_session.get = AsyncMock(return_value=session)
        service.store.load_active_questions.return_value = [
            make_question("mood", "style_emotion", {"calm": None})
        ]
        service.store.load_completed_profiles.return_value = [make_profile()]

        with pytest.raises(NoUsableSignal) as exc_info:
            await service.compute_matches(session.id, db_session)
        assert exc_info.value.code == "embeddings_pending"
        db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_filters_passed_to_store(self, service, db_session, make_question):
        session = MatchingSession(
            id=uuid.uuid4(),
            session_token="tok",
            responses={"mood": "calm", "region": "jeju"},
        )
        db_session.get = AsyncMock(return_value=session)
        service.store.load_active_questions.return_value = [
            make_question("mood", "style_emotion", {"calm": [1.0, 0.0, 0.0, 0.0]})
        ]

        run = await service.compute_matches(session.id, db_session, apply_filters=True)

        assert run.results == []
        filters = service.store.load_completed_profiles.call_args.kwargs["filters"]
        assert filters.regions == ["jeju"]
