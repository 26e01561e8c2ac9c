import asyncio
import itertools
import threading
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.exceptions.custom import ExtractionEmptyError
from app.schemas.entitlement import Identity
from app.schemas.responses import AnalyzeRequest, AnalyzeResponse, RateLimitedResponse
from app.schemas.review import HotelInfo, ReviewSourceParams, ScrapedReview
from app.schemas.verdict import Verdict, VerdictResult
from app.services.analysis import AnalysisService
from app.services.arbitrator import VerdictArbitrator
from app.services.ledger import EntitlementLedger
from app.services.storage import SqliteStore

URL = "https://www.booking.com/hotel/fr/central.en-gb.html?aid=1"
HOTEL_ID = "booking:fr/central"


def _hotel(url: str = URL) -> HotelInfo:
    return HotelInfo(hotel_name="Hotel Central", location="Paris", rating=8.3, review_count=900, url=url)


def _reviews(n: int = 10) -> list[ScrapedReview]:
    return [ScrapedReview(author=f"g{i}", score=8, date="2024-05-01", cons="Small lift") for i in range(n)]


class FakeArbitrator(VerdictArbitrator):
    """Real pre-analysis, canned model output. Each call yields a distinct confidence."""

    def __init__(self):
        super().__init__(claude=MagicMock())
        self.calls = 0
        self.hotel = None
        self.reviews = []
        self._confidence = itertools.count(60)

    async def arbitrate(self, hotel, reviews, analysis):
        self.calls += 1
        self.hotel = hotel
        self.reviews = reviews
        await asyncio.sleep(0)
        return VerdictResult(
            verdict=analysis.baseline_verdict,
            confidence=next(self._confidence),
            one_liner="Tiny elevator",
            red_flags=[],
            avoid_if_you_are=["claustrophobes", "large families"],
            bottom_line="Fine for a night.",
        )


@pytest.fixture
def ledger(tmp_path):
    store = SqliteStore(str(tmp_path / "analysis.db"))
    store.init()
    return EntitlementLedger(store, anonymous_limit=5, signup_credits=5)


@pytest.fixture
def arbitrator():
    return FakeArbitrator()


@pytest.fixture
def service(ledger, arbitrator):
    return AnalysisService(ledger, arbitrator)


async def test_analyze_posted_reviews(service, ledger):
    device = Identity.device("dev-1")
    result = await service.analyze(AnalyzeRequest(hotel=_hotel(), reviews=_reviews()), device)

    assert isinstance(result, AnalyzeResponse)
    assert result.hotel_id == HOTEL_ID
    assert result.verdict is Verdict.stay
    assert result.review_count_analyzed == 10
    assert not result.cached
    assert result.analyzed_at
    assert result.credits_remaining == 4
    assert result.is_blurred
    assert result.avoid_if_hidden_count == 1
    assert ledger.anonymous_status("dev-1").checks_used == 1


async def test_repeat_request_is_cached_and_free(service, ledger, arbitrator):
    user = Identity.user("u1")
    first = await service.analyze(AnalyzeRequest(hotel=_hotel(), reviews=_reviews()), user)
    # Same hotel under a different locale/tracking URL
    second = await service.analyze(
        AnalyzeRequest(hotel=_hotel("https://www.booking.com/hotel/fr/central.html"), reviews=_reviews()), user
    )

    assert second.cached
    assert second.confidence == first.confidence
    assert second.analyzed_at == first.analyzed_at
    assert second.credits_remaining == 4
    assert arbitrator.calls == 1


async def test_concurrent_requests_charge_once(service, ledger, arbitrator):
    user = Identity.user("u1")
    request = AnalyzeRequest(hotel=_hotel(), reviews=_reviews())

    results = await asyncio.gather(*(service.analyze(request, user) for _ in range(5)))

    assert arbitrator.calls >= 1
    assert len({r.confidence for r in results}) == 1
    assert sum(1 for r in results if not r.cached) == 1
    assert ledger.user_status("u1").credits_remaining == 4


async def test_rate_limited_device(service, ledger):
    device = Identity.device("dev-1")
    for i in range(5):
        result = await service.analyze(
            AnalyzeRequest(hotel=_hotel(f"https://www.booking.com/hotel/fr/h{i}.html"), reviews=_reviews()), device
        )
        assert isinstance(result, AnalyzeResponse)

    blocked = await service.analyze(
        AnalyzeRequest(hotel=_hotel("https://www.booking.com/hotel/fr/h5.html"), reviews=_reviews()), device
    )

    assert isinstance(blocked, RateLimitedResponse)
    assert blocked.code == "RATE_LIMITED"
    assert blocked.rate_limit.requires_signup
    assert blocked.rate_limit.credits_remaining == 0


async def test_cached_hotel_still_served_when_out_of_credits(service):
    device = Identity.device("dev-1")
    for i in range(5):
        await service.analyze(
            AnalyzeRequest(hotel=_hotel(f"https://www.booking.com/hotel/fr/h{i}.html"), reviews=_reviews()), device
        )

    again = await service.analyze(
        AnalyzeRequest(hotel=_hotel("https://www.booking.com/hotel/fr/h0.html"), reviews=_reviews()), device
    )
    assert isinstance(again, AnalyzeResponse)
    assert again.cached
    assert again.credits_remaining == 0


async def test_ephemeral_identity_is_never_cached(service, arbitrator):
    request = AnalyzeRequest(hotel=_hotel(), reviews=_reviews())
    first = await service.analyze(request, Identity.ephemeral())
    second = await service.analyze(request, Identity.ephemeral())

    assert not first.cached and not second.cached
    assert first.credits_remaining is None
    assert arbitrator.calls == 2


async def test_no_reviews_raises_extraction_empty(service, ledger):
    empty = [ScrapedReview(author="x", score=5)]
    with pytest.raises(ExtractionEmptyError):
        await service.analyze(AnalyzeRequest(hotel=_hotel(), reviews=empty), Identity.device("dev-1"))
    assert ledger.anonymous_status("dev-1").checks_used == 0


async def test_source_params_fetch_reviews(ledger, arbitrator):
    reviews = MagicMock()
    reviews.fetch_reviews = AsyncMock(return_value=_reviews(7))
    service = AnalysisService(ledger, arbitrator, reviews=reviews)
    source = ReviewSourceParams(hotel_id=1, ufi=2, country_code="fr", pagename="central")

    result = await service.analyze(AnalyzeRequest(hotel=_hotel(), source=source), Identity.user("u1"))

    reviews.fetch_reviews.assert_awaited_once_with(source)
    assert result.review_count_analyzed == 7


async def test_posted_reviews_are_capped(ledger, arbitrator):
    service = AnalysisService(ledger, arbitrator, max_reviews=20)
    result = await service.analyze(AnalyzeRequest(hotel=_hotel(), reviews=_reviews(50)), Identity.user("u1"))
    assert result.review_count_analyzed == 20


async def test_check_cache(service):
    user = Identity.user("u1")
    assert not (await service.check_cache(HOTEL_ID, user)).cached

    first = await service.analyze(AnalyzeRequest(hotel=_hotel(), reviews=_reviews()), user)
    cached = await service.check_cache(HOTEL_ID, user)

    assert cached.cached
    assert cached.verdict_data.hotel_id == HOTEL_ID
    assert cached.verdict_data.verdict_id == first.verdict_id
    assert cached.analyzed_at == cached.verdict_data.analyzed_at


@pytest.mark.parametrize("hotel_id", ["fr/central", URL, "https://www.booking.com/hotel/fr/central.html"])
async def test_check_cache_normalizes_hotel_id(service, hotel_id):
    user = Identity.user("u1")
    await service.analyze(AnalyzeRequest(hotel=_hotel(), reviews=_reviews()), user)

    cached = await service.check_cache(hotel_id, user)

    assert cached.cached
    assert cached.verdict_data.hotel_id == HOTEL_ID


async def test_committed_verdict_has_id(service):
    result = await service.analyze(AnalyzeRequest(hotel=_hotel(), reviews=_reviews()), Identity.user("u1"))
    assert result.verdict_id is not None

    ephemeral = await service.analyze(AnalyzeRequest(hotel=_hotel(), reviews=_reviews()), Identity.ephemeral())
    assert ephemeral.verdict_id is None


async def test_posted_reviews_keep_high_score_share(ledger, arbitrator):
    service = AnalysisService(ledger, arbitrator, max_reviews=20)
    posted = [
        ScrapedReview(author=f"{prefix}{i}", score=score, date="2024-05-01", cons="Thin walls")
        for prefix, score in (("low", 3), ("high", 9))
        for i in range(30)
    ]

    await service.analyze(AnalyzeRequest(hotel=_hotel(), reviews=posted), Identity.user("u1"))

    assert len(arbitrator.reviews) == 20
    assert sum(1 for r in arbitrator.reviews if r.score == 9) == 5


async def test_hotel_page_supplies_source_and_rating(ledger, arbitrator):
    source = ReviewSourceParams(hotel_id=1, ufi=2, country_code="fr", pagename="central")
    page = HotelInfo(hotel_name="Hotel Central", location="Rue 1, Paris", rating=6.1, review_count=321, url=URL)
    reviews = MagicMock()
    reviews.fetch_hotel_page = AsyncMock(return_value=(page, source))
    reviews.fetch_reviews = AsyncMock(return_value=_reviews(7))
    service = AnalysisService(ledger, arbitrator, reviews=reviews)
    bare = HotelInfo(hotel_name="Hotel Central", url=URL)

    result = await service.analyze(AnalyzeRequest(hotel=bare), Identity.user("u1"))

    reviews.fetch_hotel_page.assert_awaited_once_with(URL)
    reviews.fetch_reviews.assert_awaited_once_with(source)
    assert result.review_count_analyzed == 7
    assert arbitrator.hotel.rating == 6.1
    assert arbitrator.hotel.review_count == 321
    assert arbitrator.hotel.location == "Rue 1, Paris"
    assert arbitrator.hotel.hotel_id == HOTEL_ID


async def test_hotel_page_does_not_override_posted_rating(ledger, arbitrator):
    source = ReviewSourceParams(hotel_id=1, ufi=2, country_code="fr")
    page = HotelInfo(hotel_name="Hotel Central", rating=6.1, url=URL)
    reviews = MagicMock()
    reviews.fetch_hotel_page = AsyncMock(return_value=(page, source))
    reviews.fetch_reviews = AsyncMock(return_value=_reviews(3))
    service = AnalysisService(ledger, arbitrator, reviews=reviews)

    await service.analyze(AnalyzeRequest(hotel=_hotel()), Identity.user("u1"))

    assert arbitrator.hotel.rating == 8.3


async def test_unreadable_hotel_page_raises_extraction_empty(ledger, arbitrator):
    reviews = MagicMock()
    reviews.fetch_hotel_page = AsyncMock(return_value=(None, None))
    reviews.fetch_reviews = AsyncMock()
    service = AnalysisService(ledger, arbitrator, reviews=reviews)

    with pytest.raises(ExtractionEmptyError):
        await service.analyze(AnalyzeRequest(hotel=_hotel()), Identity.device("dev-1"))

    reviews.fetch_reviews.assert_not_awaited()
    assert ledger.anonymous_status("dev-1").checks_used == 0


async def test_ledger_runs_off_the_event_loop_thread(service, ledger):
    loop_thread = threading.get_ident()
    threads = []
    commit = ledger.commit

    def record_thread(intent):
        threads.append(threading.get_ident())
        return commit(intent)

    with patch.object(ledger, "commit", side_effect=record_thread):
        result = await service.analyze(AnalyzeRequest(hotel=_hotel(), reviews=_reviews()), Identity.user("u1"))

    assert not result.cached
    assert threads and loop_thread not in threads
