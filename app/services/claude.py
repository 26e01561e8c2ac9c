import logging

import anthropic
from anthropic import AsyncAnthropic

from app.exceptions.custom import UpstreamUnavailableError
from app.schemas.llm import ContentSegment, LLMCompletion

logger = logging.getLogger(__name__)

MODEL = "claude-sonnet-4-20250514"
MAX_TOKENS = 4096

# Network-level failures worth exactly one more attempt. Truncated or
# malformed output is never retried: the caller sees it as a completion.
_TRANSIENT_ERRORS = (anthropic.APIConnectionError, anthropic.InternalServerError)


class ClaudeService:
    def __init__(
        self,
        api_key: str,
        model: str = MODEL,
        max_tokens: int = MAX_TOKENS,
        max_attempts: int = 2,
    ):
        # SDK retries off so max_attempts is the only bound
        self._client = AsyncAnthropic(api_key=api_key, max_retries=0)
        self._model = model
        self._max_tokens = max_tokens
        self._max_attempts = max_attempts

    async def complete(self, system_prompt: str, user_prompt: str) -> LLMCompletion:
        for attempt in range(1, self._max_attempts + 1):
            try:
                response = await self._client.messages.create(
                    model=self._model,
                    max_tokens=self._max_tokens,
                    system=system_prompt,
                    messages=[{"role": "user", "content": user_prompt}],
                )
            except _TRANSIENT_ERRORS as exc:
                if attempt < self._max_attempts:
                    logger.warning("Claude call failed (attempt %d), retrying: %s", attempt, exc)
                    continue
                logger.error("Claude call failed after %d attempts: %s", attempt, exc)
                raise UpstreamUnavailableError("Claude", detail=str(exc)) from exc
            except anthropic.APIError as exc:
                logger.error("Claude API error: %s", exc)
                raise UpstreamUnavailableError("Claude", detail=str(exc)) from exc

            logger.info("Claude stop_reason=%s usage=%s", response.stop_reason, response.usage)
            return LLMCompletion(
                stop_reason=response.stop_reason,
                segments=[
                    ContentSegment(type=block.type, text=getattr(block, "text", None))
                    for block in response.content
                ],
            )

        raise UpstreamUnavailableError("Claude")
