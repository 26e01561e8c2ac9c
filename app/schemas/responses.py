from __future__ import annotations

from pydantic import BaseModel, Field

from app.schemas.entitlement import RateLimitResult
from app.schemas.review import HotelInfo, ReviewSourceParams, ScrapedReview
from app.schemas.verdict import VerdictResult


class AnalyzeRequest(BaseModel):
    hotel: HotelInfo
    reviews: list[ScrapedReview] = []
    source: ReviewSourceParams | None = None  # server-side fetch when no reviews are posted


class AnalyzeResponse(VerdictResult):
    hotel_id: str
    review_count_analyzed: int
    cached: bool = False
    analyzed_at: str | None = None
    credits_remaining: int | None = None  # recomputed on every read, never stored
    is_blurred: bool = False
    red_flags_visible_count: int | None = None
    red_flags_hidden_count: int = 0
    avoid_if_visible_count: int | None = None
    avoid_if_hidden_count: int = 0
    verdict_id: int | None = None  # None when the verdict was not persisted


class RateLimitedResponse(BaseModel):
    error: str = "Rate limit exceeded"
    code: str = "RATE_LIMITED"
    rate_limit: RateLimitResult


class CheckCacheResponse(BaseModel):
    cached: bool
    verdict_data: AnalyzeResponse | None = None
    analyzed_at: str | None = None


class ClaimRequest(BaseModel):
    device_id: str = Field(min_length=1)


class ApiError(BaseModel):
    error: str
    code: str


class PurchaseRequest(BaseModel):
    user_id: str = Field(min_length=1)
    credits: int = Field(gt=0)
