from enum import StrEnum

from pydantic import BaseModel

from app.schemas.verdict import Severity, Verdict


class Classification(StrEnum):
    significant_pattern = "significant_pattern"
    notable = "notable"
    isolated = "isolated"
    noise = "noise"


class RatingTier(StrEnum):
    excellent = "excellent"
    good = "good"
    moderate = "moderate"
    poor = "poor"


class SeverityThreshold(BaseModel):
    significant_above: float  # rate strictly above => significant_pattern
    notable_at: float | None = None  # rate at or above => notable
    below_notable: Classification = Classification.isolated


class SignalThresholds(BaseModel):
    """Complaint-rate percentages per severity. Critical has no threshold:
    one occurrence is already a significant pattern."""

    high: SeverityThreshold = SeverityThreshold(significant_above=5.0, notable_at=2.0)
    medium: SeverityThreshold = SeverityThreshold(significant_above=10.0, notable_at=5.0)
    low: SeverityThreshold = SeverityThreshold(
        significant_above=15.0, below_notable=Classification.noise
    )


class TierRule(BaseModel):
    do_not_stay_high_rate: float | None = None
    do_not_stay_patterns: int | None = None
    questionable_high_rate: float | None = None
    questionable_patterns: int | None = None
    otherwise: Verdict = Verdict.stay


class BaselineThresholds(BaseModel):
    excellent_rating: float = 9.0
    good_rating: float = 8.0
    moderate_rating: float = 7.0

    excellent: TierRule = TierRule(
        do_not_stay_high_rate=15.0, questionable_high_rate=8.0, questionable_patterns=3
    )
    good: TierRule = TierRule(
        do_not_stay_high_rate=12.0, questionable_high_rate=5.0, questionable_patterns=2
    )
    moderate: TierRule = TierRule(
        do_not_stay_high_rate=10.0,
        do_not_stay_patterns=4,
        questionable_high_rate=3.0,
        questionable_patterns=1,
    )
    poor: TierRule = TierRule(
        do_not_stay_high_rate=5.0,
        do_not_stay_patterns=2,
        otherwise=Verdict.questionable,
    )


class DetectedIssue(BaseModel):
    key: str
    label: str
    severity: Severity
    category: str
    mention_count: int
    complaint_rate: float
    classification: Classification
    review_indices: list[int]


class PreComputedAnalysis(BaseModel):
    sample_size: int
    rating: float
    rating_tier: RatingTier
    issues: list[DetectedIssue]
    has_critical: bool
    max_high_rate: float
    pattern_count: int
    baseline_verdict: Verdict
    justification: str
    tier_instruction: str

    def issue(self, key: str) -> DetectedIssue | None:
        for item in self.issues:
            if item.key == key:
                return item
        return None
