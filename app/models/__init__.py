"""
Viewfinder: ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.survey import SurveyQuestion, SurveyChoice, SurveyImage
from app.models.photographer import DIMENSIONS, Photographer, PhotographerProfile
from app.models.embedding_job import EmbeddingJob
from app.models.matching import MatchingSession, MatchingResult

__all__ = [
    "DIMENSIONS",
    "SurveyQuestion",
    "SurveyChoice",
    "SurveyImage",
    "Photographer",
    "PhotographerProfile",
    "EmbeddingJob",
    "MatchingSession",
    "MatchingResult",
]
