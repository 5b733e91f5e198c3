"""
Viewfinder: Session Orchestrator

Entry point for a client's quiz attempt:

* ``create_session``: validate answers against the active questions,
  normalise selections to option keys, embed free-text answers and persist.
* ``match_session``: return the session's latest stored ranking, or retry any
  free-text embeddings that failed at creation and
  vectorize → match → persist a new run.
* ``get_results``: read back the latest stored ranking.
"""

from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.matching import MatchingResult, MatchingSession
from app.models.photographer import DIMENSIONS, Photographer
from app.services.embedding_store import EmbeddingStore
from app.services.matching_service import MatchingService, MatchScore
from app.services.vectorizer_service import (
    TEXT_TYPES,
    QuestionSnapshot,
    build_question_snapshots,
)
from app.utils.errors import InvalidResponsesError, NotFoundError

logger = structlog.get_logger("viewfinder.session_service")

MULTI_SELECT_TYPES = ("multiple_choice", "image_choice")


@dataclass
class RankedPhotographer:
    photographer_id: uuid.UUID
    photographer_name: Optional[str]
    rank_position: int
    total_score: float
    dimension_scores: dict[str, Optional[float]]


@dataclass
class SessionMatch:
    session_id: uuid.UUID
    status: str  # matched | no_candidates | not_matched
    results: list[RankedPhotographer] = field(default_factory=list)
    run_id: Optional[uuid.UUID] = None
    pending_units: int = 0
    pending_profiles: int = 0
    missing_dimensions: list[str] = field(default_factory=list)
    cached: bool = False

    @property
    def pending_embeddings(self) -> int:
        return self.pending_units + self.pending_profiles


def normalize_responses(
    questions: list[QuestionSnapshot],
    responses: dict[str, Any],
) -> dict[str, Any]:
    """Validate answers and rewrite selections as option keys.

    Raises
    ------
    InvalidResponsesError
        On unknown questions, unknown options, or a malformed answer shape.
    """
    if not responses:
        raise InvalidResponsesError("No quiz answers were submitted.")

    by_key = {q.question_key: q for q in questions}
    unknown_questions = sorted(k for k in responses if k not in by_key)
    if unknown_questions:
        raise InvalidResponsesError(
            "Answers reference unknown questions.",
            {"unknown_questions": unknown_questions},
        )

    normalized: dict[str, Any] = {}
    invalid: dict[str, str] = {}

    for key, answer in responses.items():
        question = by_key[key]
        if answer is None or answer == "" or answer == []:
            continue

        if question.question_type in TEXT_TYPES:
            if not isinstance(answer, str):
                invalid[key] = "expected text"
                continue
            normalized[key] = answer.strip()
            continue

        selections = answer if isinstance(answer, list) else [answer]
        if len(selections) > 1 and question.question_type not in MULTI_SELECT_TYPES:
            invalid[key] = "expected a single selection"
            continue

        keys: list[str] = []
        for selection in selections:
            option = question.resolve(selection)
            if option is None:
                invalid[key] = f"unknown option {selection!r}"
                break
            keys.append(option.key)
        else:
            normalized[key] = keys if isinstance(answer, list) else keys[0]

    if invalid:
        raise InvalidResponsesError("Some answers are invalid.", {"invalid_answers": invalid})
    return normalized


class SessionService:
    def __init__(
        self,
        embedding_client: Any | None = None,
        matching_service: MatchingService | None = None,
        store: EmbeddingStore | None = None,
    ) -> None:
        if embedding_client is None:
            from app.services.gemini_service import GeminiService

            embedding_client = GeminiService()
        self.embedding_client = embedding_client
        self.store = store or EmbeddingStore()
        self.matching_service = matching_service or MatchingService(store=self.store)

    # ── Sessions ──────────────────────────────────────────────────────────

    async def create_session(
        self,
        responses: dict[str, Any],
        db_session: AsyncSession,
    ) -> MatchingSession:
        questions = build_question_snapshots(
            await self.store.load_active_questions(db_session)
        )
        normalized = normalize_responses(questions, responses)
        text_embeddings = await self._embed_free_text(questions, normalized)

        session = MatchingSession(
            id=uuid.uuid4(),
            session_token=secrets.token_urlsafe(24),
            responses=normalized,
            text_embeddings=text_embeddings or None,
        )
        db_session.add(session)
        await db_session.flush()

        logger.info(
            "matching_session_created",
            session_id=str(session.id),
            answers=len(normalized),
            text_answers_embedded=len(text_embeddings),
        )
        return session

    async def _embed_free_text(
        self,
        questions: list[QuestionSnapshot],
        responses: dict[str, Any],
    ) -> dict[str, list[float]]:
        keys = [
            q.question_key
            for q in questions
            if q.question_type in TEXT_TYPES
            and q.weight_category in DIMENSIONS
            and responses.get(q.question_key)
        ]
        if not keys:
            return {}

        try:
            vectors = await self.embedding_client.embed_texts([responses[k] for k in keys])
        except Exception as exc:
            # Unembedded answers count as pending and are retried on match.
            logger.warning("free_text_embedding_failed", questions=keys, error=str(exc))
            return {}
        return dict(zip(keys, vectors))

    async def _retry_free_text(
        self,
        session_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> None:
        """Embed free-text answers that failed to embed at session creation."""
        session = await db_session.get(MatchingSession, session_id)
        if session is None:
            return
        embedded = dict(session.text_embeddings or {})
        missing = {
            key: answer
            for key, answer in (session.responses or {}).items()
            if key not in embedded
        }
        if not missing:
            return

        questions = build_question_snapshots(
            await self.store.load_active_questions(db_session)
        )
        vectors = await self._embed_free_text(questions, missing)
        if vectors:
            embedded.update(vectors)
            session.text_embeddings = embedded
            logger.info(
                "free_text_embeddings_backfilled",
                session_id=str(session_id),
                questions=sorted(vectors),
            )

    # ── Matching ──────────────────────────────────────────────────────────

    async def match_session(
        self,
        session_id: uuid.UUID,
        db_session: AsyncSession,
        candidate_ids: Optional[list[uuid.UUID]] = None,
        apply_filters: bool = False,
        recompute: bool = False,
    ) -> SessionMatch:
        """Return ranked photographers for a session.

        The latest stored run is returned as-is unless ``recompute`` is set
        or an explicit candidate list is given.
        """
        if not recompute and candidate_ids is None:
            cached = await self._latest_run(session_id, db_session)
            if cached is not None:
                return cached

        await self._retry_free_text(session_id, db_session)
        run = await self.matching_service.compute_matches(
            session_id,
            db_session,
            candidate_photographer_ids=candidate_ids,
            apply_filters=apply_filters,
        )
        names = await self._photographer_names(
            [s.photographer_id for s in run.results], db_session
        )
        return SessionMatch(
            session_id=session_id,
            status="matched" if run.results else "no_candidates",
            results=[self._ranked(score, names) for score in run.results],
            run_id=run.run_id,
            pending_units=run.pending_units,
            pending_profiles=run.pending_profiles,
            missing_dimensions=run.vectorization.missing_dimensions,
        )

    async def get_results(
        self,
        session_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> SessionMatch:
        cached = await self._latest_run(session_id, db_session)
        if cached is not None:
            return cached
        session = await db_session.get(MatchingSession, session_id)
        # A run with no eligible photographers stores no rows but completes the session.
        if session is not None and session.completed_at is not None:
            return SessionMatch(session_id=session_id, status="no_candidates")
        return SessionMatch(session_id=session_id, status="not_matched")

    # ── Internals ─────────────────────────────────────────────────────────

    async def _latest_run(
        self,
        session_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Optional[SessionMatch]:
        session = await db_session.get(MatchingSession, session_id)
        if session is None:
            raise NotFoundError(
                f"Matching session {session_id} not found",
                {"session_id": str(session_id)},
            )

        run_id = (
            await db_session.execute(
                select(MatchingResult.run_id)
                .where(MatchingResult.session_id == session_id)
                .order_by(MatchingResult.created_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if run_id is None:
            return None

        rows = (
            await db_session.execute(
                select(MatchingResult)
                .where(
                    MatchingResult.session_id == session_id,
                    MatchingResult.run_id == run_id,
                )
                .order_by(MatchingResult.rank_position)
            )
        ).scalars().all()

        return SessionMatch(
            session_id=session_id,
            status="matched",
            run_id=run_id,
            cached=True,
            results=[
                RankedPhotographer(
                    photographer_id=row.photographer_id,
                    photographer_name=row.photographer.name if row.photographer else None,
                    rank_position=row.rank_position,
                    total_score=row.total_score,
                    dimension_scores={
                        d: getattr(row, f"{d}_score") for d in DIMENSIONS
                    },
                )
                for row in rows
            ],
        )

    async def _photographer_names(
        self,
        photographer_ids: list[uuid.UUID],
        db_session: AsyncSession,
    ) -> dict[uuid.UUID, str]:
        if not photographer_ids:
            return {}
        result = await db_session.execute(
            select(Photographer.id, Photographer.name).where(
                Photographer.id.in_(photographer_ids)
            )
        )
        return {pid: name for pid, name in result.all()}

    @staticmethod
    def _ranked(score: MatchScore, names: dict[uuid.UUID, str]) -> RankedPhotographer:
        return RankedPhotographer(
            photographer_id=score.photographer_id,
            photographer_name=names.get(score.photographer_id),
            rank_position=score.rank_position,
            total_score=score.total_score,
            dimension_scores=dict(score.dimension_scores),
        )
