from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Any, Optional, Union

Answer = Union[str, list[str]]

class SessionCreate(BaseModel):
    # question_key -> option id/key, list of option ids/keys, or free text
    responses: dict[str, Answer] = Field(min_length=1)

class SessionResponse(BaseModel):
    id: UUID
    session_token: str
    responses: dict[str, Any]
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

class ChoiceOut(BaseModel):
    id: UUID
    choice_key: str
    choice_label: str
    choice_description: Optional[str] = None
    choice_order: int

    model_config = {"from_attributes": True}

class ImageOut(BaseModel):
    id: UUID
    image_key: str
    image_label: str
    image_url: str
    image_order: int

    model_config = {"from_attributes": True}

class QuestionOut(BaseModel):
    id: UUID
    question_key: str
    question_order: int
    question_title: str
    question_description: Optional[str] = None
    question_type: str
    weight_category: Optional[str] = None
    is_hard_filter: bool
    choices: list[ChoiceOut] = []
    images: list[ImageOut] = []

    model_config = {"from_attributes": True}
