from pydantic import BaseModel, field_validator


class ScrapedReview(BaseModel):
    author: str = "Anonymous"
    country: str | None = None
    score: float = 0.0  # platform scale 0-10
    date: str = ""  # as supplied by the platform, may not parse
    title: str | None = None
    pros: str | None = None
    cons: str | None = None
    text: str | None = None  # only used when pros/cons are absent

    @field_validator("country", "title", "pros", "cons", "text", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("author", mode="before")
    @classmethod
    def _default_author(cls, value):
        if isinstance(value, str) and value.strip():
            return value.strip()
        return "Anonymous"

    @field_validator("date", mode="before")
    @classmethod
    def _strip_date(cls, value):
        return value.strip() if isinstance(value, str) else ""

    def has_content(self) -> bool:
        return bool(self.pros or self.cons or self.text)


class HotelInfo(BaseModel):
    hotel_id: str = ""  # recomputed from url by the pipeline
    hotel_name: str
    location: str = ""
    rating: float = 0.0
    review_count: int = 0
    url: str


class ReviewSourceParams(BaseModel):
    hotel_id: int  # numeric Booking id, not the canonical cache key
    ufi: int
    country_code: str
    pageview_id: str = ""
    pagename: str | None = None
