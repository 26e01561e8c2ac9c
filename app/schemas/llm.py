from pydantic import BaseModel


class ContentSegment(BaseModel):
    type: str
    text: str | None = None


class LLMCompletion(BaseModel):
    stop_reason: str | None
    segments: list[ContentSegment]

    @property
    def truncated(self) -> bool:
        return self.stop_reason == "max_tokens"

    def first_text(self) -> str | None:
        for segment in self.segments:
            if segment.type == "text" and segment.text is not None:
                return segment.text
        return None
