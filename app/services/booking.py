import asyncio
import logging

import httpx

from app.mappers.extractor import (
    extract_source_params,
    parse_graphql_reviews,
    parse_hotel_page,
    parse_review_list_html,
)
from app.mappers.sampler import HIGH_SCORE_RATIO, MAX_REVIEWS, select_reviews
from app.schemas.review import HotelInfo, ReviewSourceParams, ScrapedReview

logger = logging.getLogger(__name__)

GRAPHQL_URL = "https://www.booking.com/dml/graphql"
REVIEW_LIST_URL = "https://www.booking.com/reviewlist.en-gb.html"
REVIEWS_PER_REQUEST = 50
REVIEWS_PER_HTML_PAGE = 25
_TIMEOUT = 10.0
_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

# (GraphQL sorter, review-list sort) per pool
LOWEST_SCORE = ("LOWEST_SCORE", "f_score_asc")
MOST_RECENT = ("MOST_RECENT", "f_recent_desc")
HIGHEST_SCORE = ("HIGHEST_SCORE", "f_score_desc")

REVIEW_LIST_QUERY = """
  query ReviewList($input: ReviewListInput!) {
    reviewList(input: $input) {
      reviewCard {
        review {
          id
          countryCode
          reviewDate
          title
          positiveText
          negativeText
          reviewScore
          reviewer { name countryCode }
        }
      }
      pagination { hasMore total }
    }
  }
"""


class BookingReviewService:
    def __init__(
        self,
        client: httpx.AsyncClient,
        max_reviews: int = MAX_REVIEWS,
        high_score_ratio: float = HIGH_SCORE_RATIO,
    ):
        self._client = client
        self._max_reviews = max_reviews
        self._high_score_ratio = high_score_ratio

    async def fetch_hotel_page(self, url: str) -> tuple[HotelInfo | None, ReviewSourceParams | None]:
        """Header data and review-endpoint parameters scraped from the property page."""
        try:
            resp = await self._client.get(
                url,
                timeout=_TIMEOUT,
                follow_redirects=True,
                headers={
                    "User-Agent": _USER_AGENT,
                    "Accept": "text/html,application/xhtml+xml",
                    "Accept-Language": "en-US,en;q=0.9",
                },
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Hotel page %s failed: %s", url, exc)
            return None, None
        return parse_hotel_page(resp.text, url), extract_source_params(resp.text, url)

    async def fetch_reviews(self, params: ReviewSourceParams) -> list[ScrapedReview]:
        """Sampled reviews from GraphQL, falling back to review-list HTML.
        Returns [] when every source fails."""
        pools = await self._graphql_pools(params)
        if not any(pools):
            logger.info("GraphQL returned no reviews for %s, falling back to HTML", params.hotel_id)
            pools = await self._html_pools(params)

        low, recent, high = pools
        logger.info("Raw pools - low: %d, recent: %d, high: %d", len(low), len(recent), len(high))
        selected = select_reviews(
            low, recent, high,
            max_reviews=self._max_reviews,
            high_score_ratio=self._high_score_ratio,
        )
        logger.info("Final selection: %d reviews", len(selected))
        return selected

    async def _graphql_pools(self, params: ReviewSourceParams):
        low, recent, high = await asyncio.gather(
            self._graphql_page(params, LOWEST_SCORE[0], 0),
            self._graphql_page(params, MOST_RECENT[0], 0),
            self._graphql_page(params, HIGHEST_SCORE[0], 0),
        )
        # A full first page means more low-scoring reviews are likely available
        if len(low) == REVIEWS_PER_REQUEST:
            low = low + await self._graphql_page(params, LOWEST_SCORE[0], REVIEWS_PER_REQUEST)
        return low, recent, high

    async def _graphql_page(self, params: ReviewSourceParams, sorter: str, skip: int) -> list[ScrapedReview]:
        body = {
            "operationName": "ReviewList",
            "query": REVIEW_LIST_QUERY,
            "variables": {
                "input": {
                    "hotelId": params.hotel_id,
                    "ufi": params.ufi,
                    "hotelCountryCode": params.country_code,
                    "sorter": sorter,
                    "skip": skip,
                    "limit": REVIEWS_PER_REQUEST,
                }
            },
        }
        try:
            resp = await self._client.post(
                GRAPHQL_URL,
                json=body,
                timeout=_TIMEOUT,
                headers={
                    "User-Agent": _USER_AGENT,
                    "x-booking-pageview-id": params.pageview_id,
                    "x-apollo-operation-name": "ReviewList",
                },
            )
            resp.raise_for_status()
            return parse_graphql_reviews(resp.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("GraphQL %s page (skip=%d) failed: %s", sorter, skip, exc)
            return []

    async def _html_pools(self, params: ReviewSourceParams):
        if not params.pagename:
            logger.warning("No pagename for HTML fallback (hotel %s)", params.hotel_id)
            return [], [], []
        low, recent, high = await asyncio.gather(
            self._html_page(params, LOWEST_SCORE[1], 0),
            self._html_page(params, MOST_RECENT[1], 0),
            self._html_page(params, HIGHEST_SCORE[1], 0),
        )
        if len(low) == REVIEWS_PER_HTML_PAGE:
            low = low + await self._html_page(params, LOWEST_SCORE[1], REVIEWS_PER_HTML_PAGE)
        return low, recent, high

    async def _html_page(self, params: ReviewSourceParams, sort: str, offset: int) -> list[ScrapedReview]:
        try:
            resp = await self._client.get(
                REVIEW_LIST_URL,
                params={
                    "cc1": params.country_code,
                    "pagename": params.pagename,
                    "rows": str(REVIEWS_PER_HTML_PAGE),
                    "offset": str(offset),
                    "sort": sort,
                },
                timeout=_TIMEOUT,
                follow_redirects=True,
                headers={
                    "User-Agent": _USER_AGENT,
                    "Accept": "text/html,application/xhtml+xml",
                    "Accept-Language": "en-US,en;q=0.9",
                },
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Review list %s page (offset=%d) failed: %s", sort, offset, exc)
            return []
        return parse_review_list_html(resp.text)
