from pydantic import BaseModel, Field, model_validator
from uuid import UUID
from typing import Optional

class ChoiceCreate(BaseModel):
    choice_key: str = Field(min_length=1)
    choice_label: str = Field(min_length=1)
    choice_description: Optional[str] = None
    choice_order: Optional[int] = None

class ChoiceUpdate(BaseModel):
    choice_label: Optional[str] = Field(None, min_length=1)
    choice_description: Optional[str] = None
    choice_order: Optional[int] = None
    is_active: Optional[bool] = None

class ImageCreate(BaseModel):
    image_key: str = Field(min_length=1)
    image_label: str = Field(min_length=1)
    image_url: str = Field(min_length=1)
    image_description: Optional[str] = None
    image_order: Optional[int] = None

class ImageUpdate(BaseModel):
    image_label: Optional[str] = Field(None, min_length=1)
    image_description: Optional[str] = None
    image_url: Optional[str] = Field(None, min_length=1)
    image_order: Optional[int] = None
    is_active: Optional[bool] = None

class ProfileUpsert(BaseModel):
    style_emotion_description: Optional[str] = None
    communication_psychology_description: Optional[str] = None
    purpose_story_description: Optional[str] = None
    companion_description: Optional[str] = None
    service_regions: Optional[list[str]] = None
    companion_types: Optional[list[str]] = None
    price_min: Optional[int] = Field(None, ge=0)
    price_max: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def validate_price_range(self) -> "ProfileUpsert":
        if (
            self.price_min is not None
            and self.price_max is not None
            and self.price_min > self.price_max
        ):
            raise ValueError("price_min must not exceed price_max")
        return self

    def descriptions(self) -> dict[str, Optional[str]]:
        """Only the description fields the caller actually sent."""
        sent = self.model_fields_set
        return {
            field.removesuffix("_description"): getattr(self, field)
            for field in (
                "style_emotion_description",
                "communication_psychology_description",
                "purpose_story_description",
                "companion_description",
            )
            if field in sent
        }

class ContentEditResponse(BaseModel):
    id: UUID
    job_ids: list[UUID] = []

class ProfileResponse(BaseModel):
    photographer_id: UUID
    profile_completed: bool
    pending_dimensions: list[str]
    job_ids: list[UUID] = []
