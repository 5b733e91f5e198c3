"""
Viewfinder: Main API Router

Aggregates all sub-routers under a single prefix so that ``app.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from app.api import matching, sessions
from app.api.admin import content, embeddings

router = APIRouter()

router.include_router(sessions.router, prefix="/sessions", tags=["Sessions"])
router.include_router(matching.router, prefix="/match", tags=["Matching"])
router.include_router(embeddings.router, prefix="/admin/embeddings", tags=["Admin - Embeddings"])
router.include_router(content.router, prefix="/admin/content", tags=["Admin - Content"])
