import asyncio
import logging

from app.exceptions.custom import ExtractionEmptyError, InsufficientCreditsError
from app.mappers.blur import apply_visibility
from app.mappers.extractor import canonical_hotel_id
from app.mappers.sampler import HIGH_SCORE_RATIO, MAX_REVIEWS, select_posted_reviews
from app.schemas.entitlement import CachedVerdict, CommitIntent, Identity
from app.schemas.responses import AnalyzeRequest, AnalyzeResponse, CheckCacheResponse, RateLimitedResponse
from app.schemas.review import HotelInfo, ScrapedReview
from app.schemas.verdict import VerdictResult
from app.services.arbitrator import VerdictArbitrator
from app.services.booking import BookingReviewService
from app.services.ledger import EntitlementLedger

logger = logging.getLogger(__name__)


class AnalysisService:
    """
    Ledger calls hit SQLite synchronously and run in worker threads so a
    locked database never stalls the event loop.
    """

    def __init__(
        self,
        ledger: EntitlementLedger,
        arbitrator: VerdictArbitrator,
        reviews: BookingReviewService | None = None,
        max_reviews: int = MAX_REVIEWS,
        high_score_ratio: float = HIGH_SCORE_RATIO,
    ):
        self._ledger = ledger
        self._arbitrator = arbitrator
        self._reviews = reviews
        self._max_reviews = max_reviews
        self._high_score_ratio = high_score_ratio

    async def analyze(
        self, request: AnalyzeRequest, identity: Identity
    ) -> AnalyzeResponse | RateLimitedResponse:
        hotel = request.hotel.model_copy(update={"hotel_id": canonical_hotel_id(request.hotel.url)})

        cached = await asyncio.to_thread(self._ledger.cached_verdict, identity, hotel.hotel_id)
        if cached is not None:
            logger.info("Cache hit for %s", hotel.hotel_id)
            return await self._from_cache(cached, identity)

        rate_limit = await asyncio.to_thread(self._ledger.check, identity)
        if not rate_limit.allowed:
            logger.info("Rate limited (%s) for %s", rate_limit.tier.value, hotel.hotel_id)
            return RateLimitedResponse(rate_limit=rate_limit)

        hotel, reviews = await self._collect_reviews(request, hotel)
        if not reviews:
            raise ExtractionEmptyError()

        analysis = self._arbitrator.analyze(reviews, hotel.rating)
        verdict = await self._arbitrator.arbitrate(hotel, reviews, analysis)

        intent = CommitIntent(
            identity=identity,
            hotel_id=hotel.hotel_id,
            hotel_url=hotel.url,
            verdict=verdict,
            review_count=len(reviews),
        )
        try:
            committed = await asyncio.to_thread(self._ledger.commit, intent)
        except InsufficientCreditsError:
            # Credits ran out between the check and the commit
            logger.warning("No credit left at commit for %s", hotel.hotel_id)
            rate_limit = await asyncio.to_thread(self._ledger.check, identity)
            return RateLimitedResponse(rate_limit=rate_limit)

        return await self._response(
            committed.verdict,
            identity,
            hotel_id=hotel.hotel_id,
            review_count=len(reviews),
            cached=committed.lost_race,
            analyzed_at=committed.analyzed_at,
            verdict_id=committed.verdict_id,
        )

    async def check_cache(self, hotel_id: str, identity: Identity) -> CheckCacheResponse:
        """hotel_id may be a hotel URL, a bare "cc/slug" or a canonical id."""
        hotel_id = canonical_hotel_id(hotel_id)
        cached = await asyncio.to_thread(self._ledger.cached_verdict, identity, hotel_id)
        if cached is None:
            return CheckCacheResponse(cached=False)
        return CheckCacheResponse(
            cached=True,
            verdict_data=await self._from_cache(cached, identity),
            analyzed_at=cached.created_at,
        )

    async def _collect_reviews(
        self, request: AnalyzeRequest, hotel: HotelInfo
    ) -> tuple[HotelInfo, list[ScrapedReview]]:
        if request.reviews:
            posted = [r for r in request.reviews if r.has_content()]
            selected = select_posted_reviews(
                posted,
                max_reviews=self._max_reviews,
                high_score_ratio=self._high_score_ratio,
            )
            return hotel, selected
        if self._reviews is None:
            return hotel, []

        source = request.source
        if source is None:
            page, source = await self._reviews.fetch_hotel_page(hotel.url)
            if page is not None:
                hotel = _merge_page(hotel, page)
        if source is None:
            logger.warning("No review source for %s", hotel.hotel_id)
            return hotel, []
        return hotel, await self._reviews.fetch_reviews(source)

    async def _from_cache(self, cached: CachedVerdict, identity: Identity) -> AnalyzeResponse:
        return await self._response(
            cached.verdict,
            identity,
            hotel_id=cached.hotel_id,
            review_count=cached.review_count,
            cached=True,
            analyzed_at=cached.created_at,
            verdict_id=cached.id,
        )

    async def _response(
        self,
        verdict: VerdictResult,
        identity: Identity,
        hotel_id: str,
        review_count: int,
        cached: bool,
        analyzed_at: str | None,
        verdict_id: int | None = None,
    ) -> AnalyzeResponse:
        credits, purchased = await asyncio.gather(
            asyncio.to_thread(self._ledger.credits_remaining, identity),
            asyncio.to_thread(self._ledger.has_purchased, identity),
        )
        response = AnalyzeResponse(
            **verdict.model_dump(),
            hotel_id=hotel_id,
            review_count_analyzed=review_count,
            cached=cached,
            analyzed_at=analyzed_at,
            credits_remaining=credits,
            verdict_id=verdict_id,
        )
        return apply_visibility(response, purchased)


def _merge_page(hotel: HotelInfo, page: HotelInfo) -> HotelInfo:
    """Fill what the caller left blank from the scraped header."""
    update = {}
    if not hotel.rating and page.rating:
        update["rating"] = page.rating
    if not hotel.review_count and page.review_count:
        update["review_count"] = page.review_count
    if not hotel.location and page.location:
        update["location"] = page.location
    return hotel.model_copy(update=update)
