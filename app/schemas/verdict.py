from enum import StrEnum

from pydantic import BaseModel, Field


class Verdict(StrEnum):
    stay = "Stay"
    questionable = "Questionable"
    do_not_stay = "Do Not Stay"


class Severity(StrEnum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


# Higher rank = more cautionary
VERDICT_RANK = {
    Verdict.stay: 0,
    Verdict.questionable: 1,
    Verdict.do_not_stay: 2,
}

SEVERITY_RANK = {
    Severity.low: 0,
    Severity.medium: 1,
    Severity.high: 2,
    Severity.critical: 3,
}


class ArbitrationOutcome(StrEnum):
    agreed = "agreed"
    escalated = "escalated"
    clamped = "clamped"
    false_positive_correction = "false_positive_correction"
    critical_override = "critical_override"


class RedFlag(BaseModel):
    issue: str
    severity: Severity
    mention_count: int = Field(ge=0)
    evidence: list[str] = Field(default_factory=list, max_length=3)
    last_reported: str | None = None
    recency_note: str | None = None


class Arbitration(BaseModel):
    baseline_verdict: Verdict
    llm_verdict: Verdict
    outcome: ArbitrationOutcome
    corrected_issues: list[str] = []


class VerdictResult(BaseModel):
    verdict: Verdict
    confidence: float = Field(ge=0, le=100)
    one_liner: str
    red_flags: list[RedFlag] = []
    avoid_if_you_are: list[str] = []
    bottom_line: str
    arbitration: Arbitration | None = None


# What the model is asked to return. Validated before arbitration.


class LLMRedFlag(RedFlag):
    issue_key: str | None = None


class FalsePositiveCorrection(BaseModel):
    issue_key: str
    reason: str = Field(min_length=1)


class LLMVerdictPayload(BaseModel):
    verdict: Verdict
    confidence: float = Field(ge=0, le=100)
    one_liner: str
    red_flags: list[LLMRedFlag]
    avoid_if_you_are: list[str]
    bottom_line: str
    false_positive_corrections: list[FalsePositiveCorrection] = []
