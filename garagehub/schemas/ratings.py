from typing import Optional

from pydantic import BaseModel, Field


class RatingCreate(BaseModel):
    booking_id: int
    owner_id: int
    # Whole stars; the 1-5 range is checked by the rating service so it
    # reports as a validation error like other workflow input
    rating: int = Field(description="Whole stars from 1 to 5")
    comment: Optional[str] = None


class RatingResponse(BaseModel):
    rating_id: int
    response: Optional[str] = None
    status: Optional[str] = None


class RatingDeletionRequest(BaseModel):
    rating_id: int
    workshop_id: int
    # Defaults to the calling user; otherwise must be active staff of the workshop
    requested_by: Optional[int] = None
    reason: Optional[str] = None


class RatingRequestResolve(BaseModel):
    request_id: int
    action: str  # approved|rejected|deleted
    admin_notes: Optional[str] = None
