from enum import StrEnum

from pydantic import BaseModel


class FeedbackType(StrEnum):
    inaccurate = "inaccurate"
    helpful = "helpful"
    other = "other"


class FeedbackRequest(BaseModel):
    # Checked by FeedbackService so missing fields map to INVALID_REQUEST, not 422
    verdict_id: int | None = None
    type: str | None = None
    details: str | None = None


class FeedbackResult(BaseModel):
    success: bool = True
    id: int
