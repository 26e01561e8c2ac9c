"""Deterministic pre-analysis of a review sample.

A fixed, auditable rule table scans review text for known problem patterns.
Complaint rates and severity-specific thresholds classify each issue, and a
decision table keyed by the hotel's rating tier produces the baseline verdict
the language model is later held to.
"""

import logging
import re
from dataclasses import dataclass

from app.schemas.analysis import (
    BaselineThresholds,
    Classification,
    DetectedIssue,
    PreComputedAnalysis,
    RatingTier,
    SignalThresholds,
    TierRule,
)
from app.schemas.review import ScrapedReview
from app.schemas.verdict import SEVERITY_RANK, Severity, Verdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssueRule:
    key: str
    label: str
    severity: Severity
    category: str
    pattern: re.Pattern

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text))


def _rule(key: str, label: str, severity: Severity, category: str, *terms: str) -> IssueRule:
    pattern = re.compile("|".join(f"(?:{t})" for t in terms), re.IGNORECASE)
    return IssueRule(key, label, severity, category, pattern)


ISSUE_RULES: tuple[IssueRule, ...] = (
    # critical: health and safety, never offset by rating
    _rule("bed_bugs", "Bed bugs", Severity.critical, "health",
          r"bed ?bugs?", r"\bbites? (?:all over|on my|from the bed)"),
    _rule("mold", "Mold or damp", Severity.critical, "health",
          r"\bmou?ldy?\b", r"\bmildew", r"black spots? on the (?:wall|ceiling)"),
    _rule("rodents", "Rodents", Severity.critical, "health",
          r"\brats?\b", r"\bmice\b", r"\bmouse\b(?! ?pad)", r"\brodents?\b", r"rat droppings"),
    _rule("cockroaches", "Cockroaches", Severity.critical, "health",
          r"cockroach", r"\broach(?:es)?\b"),
    _rule("theft_or_assault", "Theft or assault", Severity.critical, "safety",
          r"\bstolen\b", r"\btheft\b", r"\brobbed\b", r"\bassault", r"\bbroke into\b"),
    # high: sleep, hygiene, infrastructure, money
    _rule("noise", "Noise at night", Severity.high, "sleep",
          r"\bnois[ey]", r"\bloud\b", r"thin walls", r"couldn'?t sleep", r"could not sleep",
          r"construction", r"\bclub\b.*\bnight\b"),
    _rule("dirty_room", "Dirty rooms", Severity.high, "cleanliness",
          r"\bdirty\b", r"\bfilthy\b", r"\bstains?\b", r"\bstained\b", r"hairs? (?:in|on) the",
          r"not clean", r"wasn'?t clean"),
    _rule("no_hot_water", "No hot water", Severity.high, "infrastructure",
          r"no hot water", r"cold shower", r"water (?:was )?(?:never|not) hot"),
    _rule("broken_ac", "AC or heating failure", Severity.high, "infrastructure",
          r"(?:air ?con(?:ditioning|ditioner)?|\bac\b|a/c|heating)\s+(?:was |is )?(?:not working|broken|didn'?t work|did not work)",
          r"\bno (?:air ?con|ac|a/c|heating)\b", r"unbearably (?:hot|cold)"),
    _rule("scam_fees", "Hidden fees or scams", Severity.high, "money",
          r"\bscam", r"hidden (?:fee|charge)s?", r"overcharg", r"extra charges?", r"rip ?off"),
    _rule("unsafe_area", "Unsafe area", Severity.high, "safety",
          r"\bunsafe\b", r"\bsketchy\b", r"\bdangerous\b", r"didn'?t feel safe", r"did not feel safe"),
    # medium: comfort and accuracy
    _rule("rude_staff", "Rude staff", Severity.medium, "service",
          r"\brude\b", r"\bunfriendly\b", r"\bunhelpful\b", r"\bdismissive\b"),
    _rule("uncomfortable_bed", "Uncomfortable beds", Severity.medium, "sleep",
          r"uncomfortable (?:bed|mattress|pillow)", r"(?:bed|mattress) (?:was |is )?(?:hard|uncomfortable|saggy)",
          r"springs? in the mattress"),
    _rule("bad_smell", "Bad smell", Severity.medium, "cleanliness",
          r"\bsmell(?:s|ed|y)?\b", r"\bstinks?\b", r"\bodou?r\b"),
    _rule("misleading_photos", "Photos don't match", Severity.medium, "accuracy",
          r"not as (?:pictured|advertised|described)", r"misleading", r"photos? (?:are|were) (?:old|fake)",
          r"doesn'?t look like the (?:photos|pictures)"),
    _rule("unreliable_wifi", "Unreliable WiFi", Severity.medium, "infrastructure",
          r"wi-?fi (?:was |is )?(?:slow|bad|terrible|not working|unreliable|didn'?t work)", r"no wi-?fi"),
    # low: annoyances
    _rule("small_room", "Small rooms", Severity.low, "comfort",
          r"(?:room|bathroom) (?:was |is )?(?:very |too |quite )?(?:small|tiny|cramped)"),
    _rule("breakfast", "Weak breakfast", Severity.low, "food",
          r"breakfast (?:was |is )?(?:poor|bad|limited|disappointing|cold|overpriced)"),
    _rule("parking", "Parking trouble", Severity.low, "access",
          r"\bparking\b.*\b(?:expensive|difficult|no|limited)\b", r"no parking"),
    _rule("slow_elevator", "Slow elevators", Severity.low, "infrastructure",
          r"(?:elevator|lift)s? (?:was |were |is )?(?:slow|broken|out of order)"),
)


def review_scan_text(review: ScrapedReview) -> str:
    """Complaint-bearing text only: pros are not scanned."""
    return " ".join(part for part in (review.title, review.cons, review.text) if part)


def complaint_rate(mentions: int, sample_size: int) -> float:
    if sample_size <= 0:
        return 0.0
    return mentions / sample_size * 100


def classify(severity: Severity, rate: float, thresholds: SignalThresholds) -> Classification:
    if severity is Severity.critical:
        return Classification.significant_pattern if rate > 0 else Classification.noise
    threshold = getattr(thresholds, severity.value)
    if rate > threshold.significant_above:
        return Classification.significant_pattern
    if threshold.notable_at is not None and rate >= threshold.notable_at:
        return Classification.notable
    return threshold.below_notable


def detect_issues(
    reviews: list[ScrapedReview],
    rules: tuple[IssueRule, ...] = ISSUE_RULES,
    thresholds: SignalThresholds | None = None,
) -> list[DetectedIssue]:
    thresholds = thresholds or SignalThresholds()
    texts = [review_scan_text(r) for r in reviews]
    issues = []
    for rule in rules:
        indices = [i for i, text in enumerate(texts) if text and rule.matches(text)]
        if not indices:
            continue
        rate = complaint_rate(len(indices), len(reviews))
        issues.append(
            DetectedIssue(
                key=rule.key,
                label=rule.label,
                severity=rule.severity,
                category=rule.category,
                mention_count=len(indices),
                complaint_rate=round(rate, 2),
                classification=classify(rule.severity, rate, thresholds),
                review_indices=indices,
            )
        )
    issues.sort(key=lambda i: (-SEVERITY_RANK[i.severity], -i.complaint_rate, i.key))
    return issues


def rating_tier(rating: float, baseline: BaselineThresholds) -> RatingTier:
    if rating >= baseline.excellent_rating:
        return RatingTier.excellent
    if rating >= baseline.good_rating:
        return RatingTier.good
    if rating >= baseline.moderate_rating:
        return RatingTier.moderate
    return RatingTier.poor


def _at_least(value: float, limit: float | None) -> bool:
    return limit is not None and value >= limit


def _apply_tier_rule(rule: TierRule, max_high_rate: float, patterns: int) -> Verdict:
    if _at_least(max_high_rate, rule.do_not_stay_high_rate) or _at_least(patterns, rule.do_not_stay_patterns):
        return Verdict.do_not_stay
    if _at_least(max_high_rate, rule.questionable_high_rate) or _at_least(patterns, rule.questionable_patterns):
        return Verdict.questionable
    return rule.otherwise


def derive_baseline(
    issues: list[DetectedIssue],
    sample_size: int,
    tier: RatingTier,
    baseline: BaselineThresholds,
) -> tuple[Verdict, str]:
    critical = [i for i in issues if i.severity is Severity.critical]
    if critical:
        names = ", ".join(f"{i.label.lower()} ({i.mention_count})" for i in critical)
        return Verdict.do_not_stay, f"Critical issue reported: {names}. Rating does not offset this."

    if sample_size == 0:
        return Verdict.questionable, "No reviews to analyze; not enough data for a green light."

    max_high = _max_high_rate(issues)
    patterns = _pattern_count(issues)
    verdict = _apply_tier_rule(getattr(baseline, tier.value), max_high, patterns)
    return verdict, (
        f"Rating tier {tier.value}: highest high-severity complaint rate "
        f"{max_high:.1f}%, {patterns} significant or notable pattern(s)."
    )


def _max_high_rate(issues: list[DetectedIssue]) -> float:
    return max((i.complaint_rate for i in issues if i.severity is Severity.high), default=0.0)


def _pattern_count(issues: list[DetectedIssue]) -> int:
    return sum(
        1
        for i in issues
        if i.classification in (Classification.significant_pattern, Classification.notable)
    )


_TIER_INSTRUCTIONS = {
    RatingTier.excellent: (
        "This hotel is rated excellent by thousands of guests. Isolated complaints "
        "must not drive the verdict or the one-liner; mention them only as a footnote. "
        "Escalate only for a repeated deal-breaker the rule scan missed."
    ),
    RatingTier.good: (
        "This hotel is rated good. Weigh notable patterns, but do not let a single "
        "complaint decide the verdict. Escalate only with quoted evidence from several reviews."
    ),
    RatingTier.moderate: (
        "This hotel is rated moderate. Recurring complaints are likely real; "
        "escalate freely when the reviews show repeated sleep, health or safety failures."
    ),
    RatingTier.poor: (
        "This hotel is rated poorly. Do not soften the verdict; escalate to "
        "Do Not Stay when any deal-breaker repeats."
    ),
}


def tier_instruction(tier: RatingTier, baseline_verdict: Verdict, has_critical: bool) -> str:
    lines = [
        f'Baseline verdict: "{baseline_verdict.value}". You may keep it or escalate it '
        "(Stay -> Questionable -> Do Not Stay). You may not downgrade it unless you "
        "report a keyword false match in false_positive_corrections.",
        _TIER_INSTRUCTIONS[tier],
    ]
    if has_critical:
        lines.append(
            "A critical health or safety issue was detected. The verdict will be "
            '"Do Not Stay" and the issue must appear in red_flags with severity "critical".'
        )
    return " ".join(lines)


def precompute_analysis(
    reviews: list[ScrapedReview],
    rating: float,
    thresholds: SignalThresholds | None = None,
    baseline: BaselineThresholds | None = None,
    exclude: frozenset[str] = frozenset(),
) -> PreComputedAnalysis:
    """Run the rule scan and the baseline decision table.

    `exclude` drops issue keys before the baseline is derived, used when the
    model reports a keyword false match.
    """
    thresholds = thresholds or SignalThresholds()
    baseline = baseline or BaselineThresholds()

    issues = [i for i in detect_issues(reviews, thresholds=thresholds) if i.key not in exclude]
    tier = rating_tier(rating, baseline)
    verdict, justification = derive_baseline(issues, len(reviews), tier, baseline)
    has_critical = any(i.severity is Severity.critical for i in issues)

    logger.info(
        "Pre-analysis: %d reviews, tier=%s, %d issues, baseline=%s",
        len(reviews), tier.value, len(issues), verdict.value,
    )
    return PreComputedAnalysis(
        sample_size=len(reviews),
        rating=rating,
        rating_tier=tier,
        issues=issues,
        has_critical=has_critical,
        max_high_rate=_max_high_rate(issues),
        pattern_count=_pattern_count(issues),
        baseline_verdict=verdict,
        justification=justification,
        tier_instruction=tier_instruction(tier, verdict, has_critical),
    )
