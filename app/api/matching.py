"""
Viewfinder: Matching API

Endpoints for ranking photographers against a completed quiz session and
for reading back the latest stored ranking.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.match import (
    DimensionScores,
    MatchRequest,
    MatchResponse,
    RankedPhotographerResponse,
)
from app.services.session_service import SessionMatch, SessionService

logger = structlog.get_logger("viewfinder.api.matching")

router = APIRouter()

# ── Service singletons ────────────────────────────────────────────────────────

_session_service: SessionService | None = None


def _get_session_service() -> SessionService:
    global _session_service
    if _session_service is None:
        _session_service = SessionService()
    return _session_service


def _to_response(match: SessionMatch) -> MatchResponse:
    return MatchResponse(
        session_id=match.session_id,
        run_id=match.run_id,
        status=match.status,
        cached=match.cached,
        pending_embeddings=match.pending_embeddings,
        pending_units=match.pending_units,
        pending_profiles=match.pending_profiles,
        missing_dimensions=match.missing_dimensions,
        results=[
            RankedPhotographerResponse(
                photographer_id=r.photographer_id,
                photographer_name=r.photographer_name,
                rank_position=r.rank_position,
                total_score=r.total_score,
                dimension_scores=DimensionScores(**r.dimension_scores),
            )
            for r in match.results
        ],
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /: Rank photographers for a session
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "",
    response_model=MatchResponse,
    status_code=status.HTTP_200_OK,
    summary="Rank photographers for a quiz session",
)
async def match_session(
    payload: MatchRequest,
    db: AsyncSession = Depends(get_db),
) -> MatchResponse:
    """Compute (or return the stored) ranking for a session.

    * A session that already has a stored ranking returns it unchanged
      unless ``recompute`` is set or explicit candidates are given.
    * ``status = "no_candidates"`` when no eligible photographer exists.
    * 409 ``embeddings_pending`` / 422 ``insufficient_signal`` when the
      answers cannot be scored yet.
    """
    log = logger.bind(session_id=str(payload.session_id))
    log.info(
        "match_session_start",
        recompute=payload.recompute,
        apply_filters=payload.apply_filters,
        explicit_candidates=payload.candidate_photographer_ids is not None,
    )

    match = await _get_session_service().match_session(
        payload.session_id,
        db,
        candidate_ids=payload.candidate_photographer_ids,
        apply_filters=payload.apply_filters,
        recompute=payload.recompute,
    )

    log.info(
        "match_session_complete",
        status=match.status,
        results=len(match.results),
        cached=match.cached,
    )
    return _to_response(match)


# ──────────────────────────────────────────────────────────────────────────────
# GET /{session_id}/results: Latest stored ranking
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{session_id}/results",
    response_model=MatchResponse,
    summary="Get the latest stored ranking for a session",
)
async def get_results(
    session_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> MatchResponse:
    match = await _get_session_service().get_results(session_id, db)
    return _to_response(match)
