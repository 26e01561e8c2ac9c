from app.schemas.analysis import PreComputedAnalysis
from app.schemas.review import HotelInfo, ScrapedReview

SYSTEM_PROMPT = """You are DoNotStay, an assistant that helps travelers avoid regretful hotel choices. You are blunt, opinionated and on the traveler's side. You do not work for hotels. You work for the person trying to sleep.

## Doctrine
- One deal-breaker outweighs ten positives.
- Sleep, health and safety come first.
- Assume marketing inflation; look for repeated failure patterns.
- More reviews means more confidence. The same complaint in 20 reviews is a pattern; in 2,000 it may be an outlier.
- State confidence based on evidence, never facts.

## Deal-breakers
- Noise: street noise, thin walls, clubs or bars nearby
- Sleep: uncomfortable beds, temperature control failures
- Health: mold, damp, bugs, rodents, dirt
- Safety: unsafe area, theft, scams, hidden fees
- Infrastructure: AC or heating failures, no hot water, unreliable WiFi
- Accuracy: photos that do not match the property

## Working with the pre-analysis
Every request includes a deterministic pre-analysis with a baseline verdict.
- You may keep the baseline verdict or escalate it (Stay -> Questionable -> Do Not Stay).
- You may not downgrade it. The only exception: a keyword matched text that is not a real complaint (for example "scam" in "not a scam at all"). Report each such case in false_positive_corrections with the issue_key and the reason.
- Critical health and safety issues always mean "Do Not Stay".

## One-liner
- Answers "What's the catch?" in at most 5 words.
- Clarity first, wit second. Good: "Noise After Midnight", "Mold Problem".

## Red flags
- Plain issue names that say what is wrong.
- At most 3 direct quotes as evidence per flag.
- Set issue_key when the flag corresponds to an issue key from the pre-analysis.

## Confidence
- 90-100 clear pattern across many reviews; 70-89 solid signal; 50-69 mixed; below 50 insufficient data.
- Fewer than 50 reviews: cap at 70 unless issues are severe and consistent. 50-200 reviews: cap at 85."""

OUTPUT_SCHEMA = """{
  "verdict": "Do Not Stay" | "Questionable" | "Stay",
  "confidence": <0-100>,
  "one_liner": "<max 5 words>",
  "red_flags": [
    {
      "issue": "<plain, clear issue name>",
      "issue_key": "<pre-analysis issue key or null>",
      "severity": "critical" | "high" | "medium" | "low",
      "mention_count": <number>,
      "evidence": ["<direct quote>", "<direct quote>"]
    }
  ],
  "avoid_if_you_are": ["<persona>", "<persona>"],
  "bottom_line": "<2-3 sentences, conversational>",
  "false_positive_corrections": [
    {"issue_key": "<key>", "reason": "<why the keyword match is not a complaint>"}
  ]
}"""


def format_review(index: int, review: ScrapedReview) -> str:
    parts = [f"Review {index}:"]
    if review.author:
        parts.append(f"Author: {review.author}")
    if review.country:
        parts.append(f"Country: {review.country}")
    if review.score:
        parts.append(f"Score: {review.score:g}")
    if review.date:
        parts.append(f"Date: {review.date}")
    if review.title:
        parts.append(f"Title: {review.title}")
    if review.pros:
        parts.append(f"Pros: {review.pros}")
    if review.cons:
        parts.append(f"Cons: {review.cons}")
    if review.text and not review.pros and not review.cons:
        parts.append(f"Review: {review.text}")
    return "\n".join(parts)


def format_analysis(analysis: PreComputedAnalysis) -> str:
    lines = [
        f"Sample size: {analysis.sample_size}",
        f"Rating tier: {analysis.rating_tier.value}",
        f"Baseline verdict: {analysis.baseline_verdict.value}",
        f"Justification: {analysis.justification}",
    ]
    if analysis.issues:
        lines.append("Detected issues:")
        for issue in analysis.issues:
            lines.append(
                f"- {issue.key} ({issue.label}): severity={issue.severity.value}, "
                f"mentions={issue.mention_count}, rate={issue.complaint_rate:.1f}%, "
                f"{issue.classification.value}"
            )
    else:
        lines.append("Detected issues: none")
    return "\n".join(lines)


def build_user_prompt(
    hotel: HotelInfo, reviews: list[ScrapedReview], analysis: PreComputedAnalysis
) -> str:
    reviews_text = "\n\n".join(format_review(i + 1, r) for i, r in enumerate(reviews))
    return f"""## Input
Hotel: {hotel.hotel_name}
Location: {hotel.location}
Platform Rating: {hotel.rating}
Total Reviews: {hotel.review_count}

## Pre-analysis
{format_analysis(analysis)}

## Instructions
{analysis.tier_instruction}

## Reviews ({len(reviews)} analyzed)
{reviews_text}

## Output (JSON only, no markdown)
{OUTPUT_SCHEMA}"""
