"""Holds the model's verdict to the deterministic baseline.

Order of operations for one completion:
truncation check -> first text segment -> parse (strict, then repaired) ->
schema validation -> escalation-only arbitration -> critical override.
"""

import logging
from datetime import date, datetime

from app.exceptions.custom import ResponseMalformedError, ResponseTruncatedError
from app.mappers.llm_json import parse_llm_json, validate_payload
from app.mappers.prompts import SYSTEM_PROMPT, build_user_prompt
from app.mappers.signals import precompute_analysis
from app.schemas.analysis import BaselineThresholds, DetectedIssue, PreComputedAnalysis, SignalThresholds
from app.schemas.llm import LLMCompletion
from app.schemas.review import HotelInfo, ScrapedReview
from app.schemas.verdict import (
    VERDICT_RANK,
    Arbitration,
    ArbitrationOutcome,
    LLMRedFlag,
    LLMVerdictPayload,
    RedFlag,
    Severity,
    Verdict,
    VerdictResult,
)
from app.services.claude import ClaudeService

logger = logging.getLogger(__name__)

MAX_EVIDENCE = 3
STALE_AFTER_DAYS = 365


def _parse_date(value: str) -> date | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in ("%d %B %Y", "%B %d, %Y", "%d %b %Y", "%b %d, %Y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def _most_recent(reviews: list[ScrapedReview], indices: list[int] | None = None) -> date | None:
    picked = reviews if indices is None else [reviews[i] for i in indices if i < len(reviews)]
    dates = [d for d in (_parse_date(r.date) for r in picked) if d]
    return max(dates, default=None)


def _evidence_quotes(reviews: list[ScrapedReview], issue: DetectedIssue) -> list[str]:
    quotes = []
    for i in issue.review_indices:
        review = reviews[i]
        quote = review.cons or review.text or review.title
        if quote and quote not in quotes:
            quotes.append(quote[:280])
        if len(quotes) == MAX_EVIDENCE:
            break
    return quotes


def worse(a: Verdict, b: Verdict) -> Verdict:
    return a if VERDICT_RANK[a] >= VERDICT_RANK[b] else b


class VerdictArbitrator:
    def __init__(
        self,
        claude: ClaudeService,
        thresholds: SignalThresholds | None = None,
        baseline: BaselineThresholds | None = None,
    ):
        self._claude = claude
        self._thresholds = thresholds or SignalThresholds()
        self._baseline = baseline or BaselineThresholds()

    def analyze(self, reviews: list[ScrapedReview], rating: float) -> PreComputedAnalysis:
        return precompute_analysis(reviews, rating, self._thresholds, self._baseline)

    async def arbitrate(
        self,
        hotel: HotelInfo,
        reviews: list[ScrapedReview],
        analysis: PreComputedAnalysis,
    ) -> VerdictResult:
        completion = await self._claude.complete(
            SYSTEM_PROMPT, build_user_prompt(hotel, reviews, analysis)
        )
        return self.resolve(completion, reviews, analysis)

    def resolve(
        self,
        completion: LLMCompletion,
        reviews: list[ScrapedReview],
        analysis: PreComputedAnalysis,
    ) -> VerdictResult:
        if completion.truncated:
            raise ResponseTruncatedError(detail=f"stop_reason={completion.stop_reason}")

        text = completion.first_text()
        if text is None:
            raise ResponseMalformedError("no text segment in response")
        logger.debug("Raw model response: %s", text)

        payload = validate_payload(parse_llm_json(text))
        return self.apply_rules(payload, reviews, analysis)

    def apply_rules(
        self,
        payload: LLMVerdictPayload,
        reviews: list[ScrapedReview],
        analysis: PreComputedAnalysis,
    ) -> VerdictResult:
        floor, corrected = self._verdict_floor(payload, reviews, analysis)
        llm_verdict = payload.verdict

        if VERDICT_RANK[llm_verdict] > VERDICT_RANK[analysis.baseline_verdict]:
            outcome = ArbitrationOutcome.escalated
        elif VERDICT_RANK[llm_verdict] == VERDICT_RANK[analysis.baseline_verdict]:
            outcome = ArbitrationOutcome.agreed
        elif corrected and VERDICT_RANK[floor] < VERDICT_RANK[analysis.baseline_verdict]:
            outcome = ArbitrationOutcome.false_positive_correction
            logger.warning(
                "False positive correction: %s -> %s (issues: %s)",
                analysis.baseline_verdict.value, worse(llm_verdict, floor).value, ", ".join(corrected),
            )
        else:
            outcome = ArbitrationOutcome.clamped
            logger.info(
                "Model downgrade clamped: %s -> %s", llm_verdict.value, floor.value
            )
        verdict = worse(llm_verdict, floor)

        red_flags = self._red_flags(payload.red_flags, reviews, analysis, corrected)

        # Safety floor, applied last
        if any(flag.severity is Severity.critical for flag in red_flags) and verdict is not Verdict.do_not_stay:
            logger.warning("Critical override: %s -> Do Not Stay", verdict.value)
            verdict = Verdict.do_not_stay
            outcome = ArbitrationOutcome.critical_override

        return VerdictResult(
            verdict=verdict,
            confidence=payload.confidence,
            one_liner=payload.one_liner,
            red_flags=red_flags,
            avoid_if_you_are=payload.avoid_if_you_are,
            bottom_line=payload.bottom_line,
            arbitration=Arbitration(
                baseline_verdict=analysis.baseline_verdict,
                llm_verdict=llm_verdict,
                outcome=outcome,
                corrected_issues=corrected,
            ),
        )

    def _verdict_floor(
        self,
        payload: LLMVerdictPayload,
        reviews: list[ScrapedReview],
        analysis: PreComputedAnalysis,
    ) -> tuple[Verdict, list[str]]:
        """Lowest verdict the model may land on. Only detected, non-critical
        issues can be reported as keyword false matches."""
        corrected = []
        for correction in payload.false_positive_corrections:
            issue = analysis.issue(correction.issue_key)
            if issue is None or issue.severity is Severity.critical:
                logger.info("Ignoring false positive correction for %s", correction.issue_key)
                continue
            if issue.key not in corrected:
                corrected.append(issue.key)

        if not corrected:
            return analysis.baseline_verdict, []
        recomputed = precompute_analysis(
            reviews, analysis.rating, self._thresholds, self._baseline, exclude=frozenset(corrected)
        )
        return recomputed.baseline_verdict, corrected

    def _red_flags(
        self,
        flags: list[LLMRedFlag],
        reviews: list[ScrapedReview],
        analysis: PreComputedAnalysis,
        corrected: list[str],
    ) -> list[RedFlag]:
        newest = _most_recent(reviews)
        result = []
        covered = set()
        for flag in flags:
            if flag.issue_key in corrected:
                continue
            issue = analysis.issue(flag.issue_key) if flag.issue_key else None
            last_reported = flag.last_reported
            severity = flag.severity
            if issue is not None:
                if issue.severity is Severity.critical:
                    severity = Severity.critical
                covered.add(issue.key)
                if last_reported is None:
                    recent = _most_recent(reviews, issue.review_indices)
                    last_reported = recent.isoformat() if recent else None
            result.append(
                RedFlag(
                    issue=flag.issue,
                    severity=severity,
                    mention_count=flag.mention_count,
                    evidence=flag.evidence,
                    last_reported=last_reported,
                    recency_note=flag.recency_note or self._recency_note(last_reported, newest),
                )
            )

        # Critical findings are never dropped, even when the model left them out
        for issue in analysis.issues:
            if issue.severity is Severity.critical and issue.key not in covered:
                recent = _most_recent(reviews, issue.review_indices)
                last_reported = recent.isoformat() if recent else None
                result.append(
                    RedFlag(
                        issue=issue.label,
                        severity=Severity.critical,
                        mention_count=issue.mention_count,
                        evidence=_evidence_quotes(reviews, issue),
                        last_reported=last_reported,
                        recency_note=self._recency_note(last_reported, newest),
                    )
                )
        return result

    @staticmethod
    def _recency_note(last_reported: str | None, newest: date | None) -> str | None:
        reported = _parse_date(last_reported) if last_reported else None
        if reported is None or newest is None:
            return None
        if (newest - reported).days > STALE_AFTER_DAYS:
            return f"Last reported {reported.isoformat()}, over a year before the newest review"
        return None
