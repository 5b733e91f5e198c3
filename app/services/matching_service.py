"""
Viewfinder: Four-Dimension Matching Engine

Scores every eligible photographer against a quiz session, one cosine
similarity per dimension, then combines them with fixed weights:

  score_d = (cos(session_d, photographer_d) + 1) / 2 × 100
  total   = Σ_d  w_d × score_d          over dimensions the session defines

Default weights: style_emotion=0.40, communication_psychology=0.30,
purpose_story=0.20, companion=0.10.

A dimension the session leaves undefined contributes nothing, and its weight
is NOT redistributed (``MATCH_WEIGHT_POLICY = "fixed"``): a session that
skipped a category is capped below 100.  ``"renormalize"`` divides by the
sum of the weights that were present instead.

Ranking is by total descending with ties broken by photographer id, and rank
positions are dense from 1.  Each computation persists its full result set
under a fresh run id; earlier runs are never touched.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import numpy as np
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.matching import MatchingResult, MatchingSession
from app.models.photographer import DIMENSIONS
from app.services.embedding_store import ContentUnit, EmbeddingStore, current_embedding
from app.services.vectorizer_service import (
    ResponseVectorizer,
    VectorizationResult,
    build_question_snapshots,
)
from app.utils.errors import NoUsableSignal, NotFoundError

logger = structlog.get_logger("viewfinder.matching_service")

# Scores are persisted and compared at this precision so that ties are
# decided by photographer id rather than by float noise.
_SCORE_DECIMALS = 4


# ──────────────────────────────────────────────────────────────────────────────
# Value types
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class CandidateProfile:
    photographer_id: uuid.UUID
    vectors: dict[str, Optional[np.ndarray]]


@dataclass
class MatchScore:
    photographer_id: uuid.UUID
    dimension_scores: dict[str, Optional[float]]
    total_score: float
    rank_position: int = 0


@dataclass
class MatchingFilters:
    regions: list[str] = field(default_factory=list)
    price_min: Optional[int] = None
    price_max: Optional[int] = None
    companion_types: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return (
            not self.regions
            and self.price_min is None
            and self.price_max is None
            and not self.companion_types
        )


@dataclass
class MatchRun:
    run_id: uuid.UUID
    session_id: uuid.UUID
    results: list[MatchScore]
    vectorization: VectorizationResult
    pending_profiles: int = 0
    filters: Optional[MatchingFilters] = None

    @property
    def pending_units(self) -> int:
        return self.vectorization.pending_count


# ──────────────────────────────────────────────────────────────────────────────
# Pure scoring helpers
# ──────────────────────────────────────────────────────────────────────────────

def cosine_similarity(a: np.ndarray, b: np.ndarray) -> Optional[float]:
    """Cosine similarity, or ``None`` when either vector has zero norm."""
    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return None
    return float(np.dot(a, b) / (norm_a * norm_b))


def similarity_to_score(similarity: float) -> float:
    """Map cosine similarity in [-1, 1] onto a 0-100 score."""
    score = (similarity + 1.0) / 2.0 * 100.0
    return min(100.0, max(0.0, score))


def _to_list(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v not in (None, "")]
    return [str(value)]


def _parse_amount(raw: str) -> Optional[int]:
    raw = raw.strip().replace(",", "")
    if not raw:
        return None
    try:
        amount = int(float(raw))
    except ValueError:
        return None
    return amount or None


def extract_filters(responses: dict[str, Any]) -> MatchingFilters:
    """Derive hard filters from quiz answers.

    ``region`` and ``companion`` may be a single value or a list; ``budget``
    is a ``"min-max"`` string where either bound may be left empty.
    """
    filters = MatchingFilters(
        regions=_to_list(responses.get("region")),
        companion_types=_to_list(responses.get("companion")),
    )

    budget = responses.get("budget")
    if isinstance(budget, str) and budget.strip():
        low, _, high = budget.partition("-")
        filters.price_min = _parse_amount(low)
        filters.price_max = _parse_amount(high)

    return filters


def candidate_from_profile(profile: Any) -> Optional[CandidateProfile]:
    """Snapshot a profile's vectors; ``None`` if any dimension is pending."""
    vectors: dict[str, Optional[np.ndarray]] = {}
    for dimension in DIMENSIONS:
        unit = ContentUnit(
            kind="profile_dimension",
            target_id=profile.photographer_id,
            dimension=dimension,
        )
        vector = current_embedding(unit, profile)
        if vector is None:
            return None
        vectors[dimension] = vector
    return CandidateProfile(photographer_id=profile.photographer_id, vectors=vectors)


# ──────────────────────────────────────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────────────────────────────────────

class MatchingEngine:
    """Pure scorer and ranker over already-loaded vectors."""

    def __init__(
        self,
        weights: Optional[dict[str, float]] = None,
        weight_policy: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        self.weights: dict[str, float] = dict(weights or settings.dimension_weights)
        self.weight_policy: str = weight_policy or settings.MATCH_WEIGHT_POLICY
        if self.weight_policy not in ("fixed", "renormalize"):
            raise ValueError(f"Unknown weight policy {self.weight_policy!r}")

    def score_candidate(
        self,
        session_vectors: dict[str, Optional[np.ndarray]],
        candidate: CandidateProfile,
    ) -> MatchScore:
        dimension_scores: dict[str, Optional[float]] = {}
        total = 0.0
        present_weight = 0.0

        for dimension in DIMENSIONS:
            session_vec = session_vectors.get(dimension)
            candidate_vec = candidate.vectors.get(dimension)
            if session_vec is None or candidate_vec is None:
                dimension_scores[dimension] = None
                continue

            similarity = cosine_similarity(session_vec, candidate_vec)
            if similarity is None:
                dimension_scores[dimension] = None
                continue

            score = similarity_to_score(similarity)
            weight = self.weights.get(dimension, 0.0)
            dimension_scores[dimension] = round(score, _SCORE_DECIMALS)
            total += weight * score
            present_weight += weight

        if self.weight_policy == "renormalize" and present_weight > 0:
            total /= present_weight

        return MatchScore(
            photographer_id=candidate.photographer_id,
            dimension_scores=dimension_scores,
            total_score=round(total, _SCORE_DECIMALS),
        )

    def rank(
        self,
        session_vectors: dict[str, Optional[np.ndarray]],
        candidates: Iterable[CandidateProfile],
        pending_units: int = 0,
        session_id: Optional[str] = None,
    ) -> list[MatchScore]:
        """Score and order candidates.

        Raises
        ------
        NoUsableSignal
            If the session defines no usable dimension vector.  Checked
            before the candidate set so that an unanswered quiz is always
            reported as such.
        """
        usable = [
            d
            for d in DIMENSIONS
            if session_vectors.get(d) is not None
            and float(np.linalg.norm(session_vectors[d])) > 0.0
        ]
        if not usable:
            missing = [d for d in DIMENSIONS if d not in usable]
            raise NoUsableSignal(missing, pending_units=pending_units, session_id=session_id)

        scores = [self.score_candidate(session_vectors, c) for c in candidates]
        scores.sort(key=lambda s: (-s.total_score, str(s.photographer_id)))
        for position, score in enumerate(scores, start=1):
            score.rank_position = position
        return scores


# ──────────────────────────────────────────────────────────────────────────────
# Service
# ──────────────────────────────────────────────────────────────────────────────

class MatchingService:
    """Loads a session and its candidates, ranks them and persists the run.

    Dependencies are injected at construction so that the service can be
    tested with mocks.
    """

    def __init__(
        self,
        store: EmbeddingStore | None = None,
        vectorizer: ResponseVectorizer | None = None,
        engine: MatchingEngine | None = None,
    ) -> None:
        self.store = store or EmbeddingStore()
        self.vectorizer = vectorizer or ResponseVectorizer()
        self.engine = engine or MatchingEngine()

        settings = get_settings()
        self._filter_toggles = {
            "regions": settings.MATCH_ENABLE_REGION_FILTER,
            "budget": settings.MATCH_ENABLE_BUDGET_FILTER,
            "companion_types": settings.MATCH_ENABLE_COMPANION_FILTER,
        }

        logger.info(
            "matching_service_initialised",
            weights=self.engine.weights,
            weight_policy=self.engine.weight_policy,
        )

    # ── Public API ────────────────────────────────────────────────────────

    def filters_for(self, responses: dict[str, Any]) -> MatchingFilters:
        """Hard filters from ``responses``, honouring the enable switches."""
        filters = extract_filters(responses)
        if not self._filter_toggles["regions"]:
            filters.regions = []
        if not self._filter_toggles["budget"]:
            filters.price_min = None
            filters.price_max = None
        if not self._filter_toggles["companion_types"]:
            filters.companion_types = []
        return filters

    async def compute_matches(
        self,
        session_id: uuid.UUID,
        db_session: AsyncSession,
        candidate_photographer_ids: Optional[list[uuid.UUID]] = None,
        apply_filters: bool = False,
    ) -> MatchRun:
        """Rank eligible photographers for a session and persist the run.

        Parameters
        ----------
        session_id:
            The quiz session to match.
        db_session:
            Active SQLAlchemy async session.
        candidate_photographer_ids:
            Restrict scoring to these photographers (still subject to
            eligibility).
        apply_filters:
            Narrow candidates with the hard filters in the session's answers.

        Raises
        ------
        NotFoundError
            If the session does not exist.
        NoUsableSignal
            If no dimension vector can be built from the answers.
        """
        log = logger.bind(session_id=str(session_id))

        session = await db_session.get(MatchingSession, session_id)
        if session is None:
            raise NotFoundError(
                f"Matching session {session_id} not found",
                {"session_id": str(session_id)},
            )

        # ── Snapshot everything the computation reads ─────────────────
        questions = build_question_snapshots(
            await self.store.load_active_questions(db_session)
        )
        vectorization = self.vectorizer.vectorize(
            questions, session.responses or {}, session.text_embeddings
        )
        if vectorization.excluded_units:
            log.info(
                "stale_embeddings_excluded",
                count=len(vectorization.excluded_units),
                units=[str(u) for u in vectorization.excluded_units],
            )

        filters = self.filters_for(session.responses or {}) if apply_filters else None
        profiles = await self.store.load_completed_profiles(
            db_session,
            candidate_ids=candidate_photographer_ids,
            filters=filters if filters is not None and not filters.is_empty() else None,
        )

        candidates: list[CandidateProfile] = []
        pending_profiles = 0
        for profile in profiles:
            candidate = candidate_from_profile(profile)
            if candidate is None:
                pending_profiles += 1
            else:
                candidates.append(candidate)

        # ── Pure from here on ─────────────────────────────────────────
        scores = self.engine.rank(
            vectorization.vectors,
            candidates,
            pending_units=vectorization.pending_count,
            session_id=str(session_id),
        )

        run_id = uuid.uuid4()
        for score in scores:
            db_session.add(
                MatchingResult(
                    id=uuid.uuid4(),
                    session_id=session_id,
                    run_id=run_id,
                    photographer_id=score.photographer_id,
                    style_emotion_score=score.dimension_scores.get("style_emotion"),
                    communication_psychology_score=score.dimension_scores.get(
                        "communication_psychology"
                    ),
                    purpose_story_score=score.dimension_scores.get("purpose_story"),
                    companion_score=score.dimension_scores.get("companion"),
                    total_score=score.total_score,
                    rank_position=score.rank_position,
                )
            )
        session.completed_at = datetime.now(timezone.utc)
        await db_session.flush()

        log.info(
            "matches_computed",
            run_id=str(run_id),
            candidates=len(candidates),
            pending_profiles=pending_profiles,
            missing_dimensions=vectorization.missing_dimensions,
            top_score=scores[0].total_score if scores else None,
        )

        return MatchRun(
            run_id=run_id,
            session_id=session_id,
            results=scores,
            vectorization=vectorization,
            pending_profiles=pending_profiles,
            filters=filters,
        )
