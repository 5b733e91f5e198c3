from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Literal, Optional

JobType = Literal["choice_embedding", "image_embedding", "profile_dimension_embedding"]
Dimension = Literal["style_emotion", "communication_psychology", "purpose_story", "companion"]

class EnqueueRequest(BaseModel):
    job_type: JobType
    target_id: UUID
    dimension: Optional[Dimension] = None

class EnqueueResponse(BaseModel):
    job_id: UUID

class EmbeddingJobResponse(BaseModel):
    id: UUID
    job_type: str
    target_id: UUID
    dimension: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    attempts: int
    created_at: datetime
    started_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

class QueueStatsResponse(BaseModel):
    pending: int
    processing: int
    completed: int
    failed: int
    total: int

class CountResponse(BaseModel):
    count: int

class EnqueueMissingResponse(BaseModel):
    choice_embedding: int
    image_embedding: int
    profile_dimension_embedding: int
    already_queued: int = 0
    total: int  # jobs created

class ProcessRequest(BaseModel):
    max_jobs: Optional[int] = Field(None, ge=1)

class ProgressResponse(BaseModel):
    type: str
    run_id: str
    processed: int
    total: int
    succeeded: int
    failed: int
    recovered: int = 0
    message: Optional[str] = None
