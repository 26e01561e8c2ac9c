"""Bounded, reproducible review sample from the three sorted upstream pools.

The sample leans on low-scoring reviews (the analysis looks for problems) but
always reserves a fixed share for high-scoring ones so a hotel is not judged on
its complaints alone.
"""

from functools import cmp_to_key

from app.schemas.review import ScrapedReview

MAX_REVIEWS = 200
HIGH_SCORE_RATIO = 0.25
HIGH_SCORE_MIN = 8.0  # posted reviews at or above this go to the high pool


def dedupe_key(review: ScrapedReview) -> str:
    return f"{review.author}:{review.date}:{review.score}"


def detail_score(review: ScrapedReview) -> int:
    return len(review.pros or "") + len(review.cons or "") + len(review.text or "")


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def compare_reviews(a: ScrapedReview, b: ScrapedReview) -> int:
    """Ranking order: most detailed first, then lowest score, most recent,
    author, pros+cons. The trailing fields make it a strict total order.

    Plain code-point comparison keeps the order locale independent.
    """
    steps = (
        _cmp(detail_score(b), detail_score(a)),
        _cmp(a.score, b.score),
        _cmp(b.date, a.date),
        _cmp(a.author, b.author),
        _cmp((a.pros or "") + (a.cons or ""), (b.pros or "") + (b.cons or "")),
        _cmp(a.pros or "", b.pros or ""),
        _cmp(a.cons or "", b.cons or ""),
        _cmp(a.text or "", b.text or ""),
        _cmp(a.title or "", b.title or ""),
        _cmp(a.country or "", b.country or ""),
    )
    for step in steps:
        if step:
            return step
    return 0


ranking_key = cmp_to_key(compare_reviews)


def rank_reviews(reviews: list[ScrapedReview]) -> list[ScrapedReview]:
    return sorted(reviews, key=ranking_key)


def build_pools(
    low: list[ScrapedReview],
    recent: list[ScrapedReview],
    high: list[ScrapedReview],
) -> tuple[list[ScrapedReview], list[ScrapedReview], list[ScrapedReview]]:
    """Rank each pool and drop reviews already seen in an earlier pool
    (low, then recent, then high)."""
    seen: set[str] = set()
    pools = []
    for pool in (low, recent, high):
        kept = []
        for review in rank_reviews(pool):
            key = dedupe_key(review)
            if key not in seen:
                seen.add(key)
                kept.append(review)
        pools.append(kept)
    return pools[0], pools[1], pools[2]


def select_reviews(
    low: list[ScrapedReview],
    recent: list[ScrapedReview],
    high: list[ScrapedReview],
    max_reviews: int = MAX_REVIEWS,
    high_score_ratio: float = HIGH_SCORE_RATIO,
) -> list[ScrapedReview]:
    low_pool, recent_pool, high_pool = build_pools(low, recent, high)

    final: list[ScrapedReview] = []
    final_keys: set[str] = set()

    def add(review: ScrapedReview) -> None:
        key = dedupe_key(review)
        if key not in final_keys and len(final) < max_reviews:
            final_keys.add(key)
            final.append(review)

    high_target = int(max_reviews * high_score_ratio)
    for review in high_pool:
        if len(final) >= high_target:
            break
        add(review)

    for pool in (low_pool, recent_pool):
        for review in pool:
            if len(final) >= max_reviews:
                break
            add(review)

    return final


def select_posted_reviews(
    reviews: list[ScrapedReview],
    max_reviews: int = MAX_REVIEWS,
    high_score_ratio: float = HIGH_SCORE_RATIO,
    high_score_min: float = HIGH_SCORE_MIN,
) -> list[ScrapedReview]:
    """Sample reviews a client scraped itself.

    Splits them by score into the low and high pools so the high-score share
    still holds, then tops up from the remaining high-scoring reviews when
    there are not enough low-scoring ones to fill the budget.
    """
    low = [r for r in reviews if r.score < high_score_min]
    high = [r for r in reviews if r.score >= high_score_min]
    selected = select_reviews(low, [], high, max_reviews=max_reviews, high_score_ratio=high_score_ratio)

    keys = {dedupe_key(r) for r in selected}
    for review in rank_reviews(high):
        if len(selected) >= max_reviews:
            break
        key = dedupe_key(review)
        if key not in keys:
            keys.add(key)
            selected.append(review)
    return selected
