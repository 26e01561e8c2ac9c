import json
import logging
import re

from pydantic import ValidationError

from app.exceptions.custom import ResponseMalformedError, SchemaViolationError
from app.schemas.verdict import LLMVerdictPayload

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_STRING_LITERAL_RE = re.compile(r'"(?:[^"\\]|\\.)*"')
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_ADJACENT_STRINGS_RE = re.compile(r'(")(\s*\n\s*)(")')
_ADJACENT_OBJECTS_RE = re.compile(r"([}\]])(\s*\n\s*)([{\[])")


def extract_json_text(text: str) -> str:
    """Fenced block if present, else the first '{' to the last '}'."""
    if match := _FENCE_RE.search(text):
        return match.group(1).strip()
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        return text[first : last + 1]
    return text.strip()


def _escape_controls(match: re.Match) -> str:
    return match.group(0).replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")


def repair_json(text: str) -> str:
    """Best-effort fix-ups for common model slips. Valid JSON passes through
    unchanged."""
    try:
        json.loads(text)
        return text
    except (json.JSONDecodeError, ValueError):
        pass

    repaired = _STRING_LITERAL_RE.sub(_escape_controls, text)
    repaired = _TRAILING_COMMA_RE.sub(r"\1", repaired)
    repaired = _ADJACENT_STRINGS_RE.sub(r"\1,\2\3", repaired)
    repaired = _ADJACENT_OBJECTS_RE.sub(r"\1,\2\3", repaired)
    return repaired


def parse_llm_json(text: str) -> dict:
    """Strict parse, then one repaired parse. Never returns a default."""
    candidate = extract_json_text(text)
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, ValueError) as first_error:
        logger.info("Initial JSON parse failed (%s), attempting repair", first_error)
        repaired = repair_json(candidate)
        try:
            parsed = json.loads(repaired)
        except (json.JSONDecodeError, ValueError) as repair_error:
            logger.error("JSON parse failed after repair: %s", repair_error)
            raise ResponseMalformedError(str(first_error), detail=text[:1000]) from repair_error
        logger.info("JSON repair successful")

    if not isinstance(parsed, dict):
        raise ResponseMalformedError(f"expected a JSON object, got {type(parsed).__name__}", detail=text[:1000])
    return parsed


def validate_payload(data: dict) -> LLMVerdictPayload:
    try:
        return LLMVerdictPayload.model_validate(data)
    except ValidationError as exc:
        field_errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        logger.error("Verdict schema validation failed: %s", "; ".join(field_errors))
        raise SchemaViolationError(field_errors) from exc
