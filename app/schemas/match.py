from pydantic import BaseModel
from uuid import UUID
from typing import Literal, Optional

class MatchRequest(BaseModel):
    session_id: UUID
    candidate_photographer_ids: Optional[list[UUID]] = None
    apply_filters: bool = False
    recompute: bool = False

class DimensionScores(BaseModel):
    style_emotion: Optional[float] = None
    communication_psychology: Optional[float] = None
    purpose_story: Optional[float] = None
    companion: Optional[float] = None

class RankedPhotographerResponse(BaseModel):
    photographer_id: UUID
    photographer_name: Optional[str] = None
    rank_position: int
    total_score: float
    dimension_scores: DimensionScores

class MatchResponse(BaseModel):
    session_id: UUID
    run_id: Optional[UUID] = None
    status: Literal["matched", "no_candidates", "not_matched"]
    cached: bool = False
    pending_embeddings: int = 0
    pending_units: int = 0
    pending_profiles: int = 0
    missing_dimensions: list[str] = []
    results: list[RankedPhotographerResponse] = []
