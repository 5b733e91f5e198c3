"""
Viewfinder: batch-run progress snapshots in Redis.

The latest progress event of an embedding batch run is kept under a single
key so that the admin panel can poll it after the SSE stream that started
the run has gone away.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import structlog

from app.config import get_settings

logger = structlog.get_logger("viewfinder.progress")

PROGRESS_KEY = "viewfinder:embeddings:progress"


class ProgressStore:
    def __init__(self, redis_client: Any, ttl_seconds: Optional[int] = None) -> None:
        self._redis = redis_client
        self._ttl = ttl_seconds or get_settings().PROGRESS_TTL_SECONDS

    async def save(self, snapshot: dict[str, Any]) -> None:
        await self._redis.set(PROGRESS_KEY, json.dumps(snapshot, default=str), ex=self._ttl)

    async def load(self) -> Optional[dict[str, Any]]:
        raw = await self._redis.get(PROGRESS_KEY)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def clear(self) -> None:
        await self._redis.delete(PROGRESS_KEY)
