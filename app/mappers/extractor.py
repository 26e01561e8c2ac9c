import json
import logging
import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from app.schemas.review import HotelInfo, ReviewSourceParams, ScrapedReview

logger = logging.getLogger(__name__)

_HOTEL_PATH_RE = re.compile(r"/hotel/([a-z]{2})/([^/.?#]+)")
_BARE_ID_RE = re.compile(r"^([a-z]{2})/([^/.?#]+)$")
CANONICAL_PREFIX = "booking:"
_LOCALE_SUFFIX_RE = re.compile(r"\.[a-z]{2}(?:-[a-z]{2,4})?\.html$")
_NO_CONTENT_RE = re.compile(r"no comments available|there are no comments", re.I)
_REVIEW_COUNT_RE = re.compile(r"(\d[\d,.]*)\s*reviews?", re.I)
_LIKED_RE = re.compile(r"(?:Liked|Positive|Pros?)[\s:·]+([^·\n]+)", re.I)
_DISLIKED_RE = re.compile(r"(?:Disliked|Negative|Cons?)[\s:·]+([^·\n]+)", re.I)

# Review container strategies, tried in order until one yields results.
REVIEW_CONTAINER_SELECTORS = (
    ".review_list_new_item_block",
    "li[data-review-score]",
    "[data-review-url]",
    ".c-review-block",
    '[data-testid="review-card"]',
    '[itemprop="review"]',
)

_AUTHOR_SELECTORS = (
    ".bui-avatar-block__title",
    ".c-review__author",
    '[data-testid*="reviewer-name"]',
    '[itemprop="author"]',
)
_COUNTRY_SELECTORS = (
    ".bui-avatar-block__subtitle",
    ".c-review__country",
    '[data-testid*="reviewer-country"]',
)
_SCORE_SELECTORS = (
    ".bui-review-score__badge",
    ".c-score",
    '[data-testid*="review-score"]',
    '[itemprop="ratingValue"]',
)
_DATE_SELECTORS = (
    ".c-review-block__date",
    ".c-review__date",
    '[data-testid*="review-date"]',
    '[itemprop="datePublished"]',
)
_TITLE_SELECTORS = (
    ".c-review-block__title",
    ".c-review__title",
    '[data-testid*="review-title"]',
)
_PROS_SELECTORS = (
    ".c-review__row--positive .c-review__body",
    ".c-review-block__row--positive .c-review-block__text",
    '[data-testid="review-positive-text"]',
    '[data-testid*="positive"]',
    ".review_pos",
    '[class*="positive"] span[lang]',
)
_CONS_SELECTORS = (
    ".c-review__row--negative .c-review__body",
    ".c-review-block__row--negative .c-review-block__text",
    '[data-testid="review-negative-text"]',
    '[data-testid*="negative"]',
    ".review_neg",
    '[class*="negative"] span[lang]',
)
_TEXT_SELECTORS = ('[itemprop="reviewBody"]', ".c-review__body--original")

_HOTEL_NAME_SELECTORS = (
    '[data-testid="property-header-name"]',
    "h2.pp-header__title",
    ".hp__hotel-name",
    "h1",
)
_LOCATION_SELECTORS = ('[data-testid="property-header-address"]', ".hp_address_subtitle")
_RATING_SELECTORS = (
    '[data-testid="review-score-component"] > div:first-child',
    ".bui-review-score__badge",
    '[data-testid="review-score-right-component"]',
)
_REVIEW_COUNT_SELECTORS = (
    '[data-testid="review-score-component"]',
    ".bui-review-score__text",
    '[data-testid="review-score-right-component"]',
)


def canonical_hotel_id(url: str) -> str:
    """Stable cache/credit key for a hotel page.

    Accepts a hotel URL, a bare "cc/slug" id or an id that is already canonical:
    https://www.booking.com/hotel/us/hilton-new-york.en-gb.html?aid=1 -> booking:us/hilton-new-york
    us/hilton-new-york -> booking:us/hilton-new-york
    """
    url = url.strip()
    if url.startswith(CANONICAL_PREFIX):
        return url
    if match := _BARE_ID_RE.match(url):
        return f"{CANONICAL_PREFIX}{match.group(1)}/{match.group(2)}"
    path = urlparse(url).path or url
    match = _HOTEL_PATH_RE.search(path)
    if match:
        return f"{CANONICAL_PREFIX}{match.group(1)}/{match.group(2)}"
    path = _LOCALE_SUFFIX_RE.sub("", path)
    path = path.removesuffix(".html")
    return f"{CANONICAL_PREFIX}{path}"


def _to_float(text: str | None) -> float:
    if not text:
        return 0.0
    match = re.search(r"\d+(?:[.,]\d+)?", text)
    if not match:
        return 0.0
    try:
        return float(match.group(0).replace(",", "."))
    except ValueError:
        return 0.0


def _clean_content(text: str | None) -> str | None:
    if text and _NO_CONTENT_RE.search(text):
        return None
    return text


def _build_review(**fields) -> ScrapedReview | None:
    review = ScrapedReview(**fields)
    if not review.has_content():
        return None
    return review


# --- GraphQL ---


def transform_graphql_review(review: dict | None) -> ScrapedReview | None:
    if not isinstance(review, dict):
        return None
    reviewer = review.get("reviewer") or {}
    return _build_review(
        author=reviewer.get("name") or "Anonymous",
        country=reviewer.get("countryCode") or review.get("countryCode"),
        score=review.get("reviewScore") or 0,
        date=review.get("reviewDate") or "",
        title=review.get("title"),
        pros=_clean_content(review.get("positiveText")),
        cons=_clean_content(review.get("negativeText")),
    )


def parse_graphql_reviews(payload: dict) -> list[ScrapedReview]:
    """Normalize a ReviewList GraphQL response. Errors yield an empty page."""
    if not isinstance(payload, dict):
        return []
    errors = payload.get("errors")
    if errors:
        logger.warning(
            "GraphQL errors: %s",
            ", ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors),
        )
        return []

    review_list = (payload.get("data") or {}).get("reviewList") or {}
    cards = review_list.get("reviewCard") or []
    reviews = []
    for card in cards:
        if not isinstance(card, dict):
            continue
        review = transform_graphql_review(card.get("review"))
        if review:
            reviews.append(review)
    logger.debug("GraphQL returned %d cards, %d with text", len(cards), len(reviews))
    return reviews


# --- Rendered HTML ---


def _first_text(block: Tag, selectors: tuple[str, ...]) -> str | None:
    for selector in selectors:
        node = block.select_one(selector)
        if node:
            text = node.get_text(" ", strip=True)
            if text:
                return text
    return None


def find_review_containers(soup: BeautifulSoup) -> list[Tag]:
    for selector in REVIEW_CONTAINER_SELECTORS:
        blocks = soup.select(selector)
        if blocks:
            logger.debug("Review containers matched by %s: %d", selector, len(blocks))
            return blocks
    return []


def parse_review_block(block: Tag) -> ScrapedReview | None:
    score_text = block.get("data-review-score") or _first_text(block, _SCORE_SELECTORS)

    pros = _first_text(block, _PROS_SELECTORS)
    cons = _first_text(block, _CONS_SELECTORS)
    if not pros and not cons:
        all_text = block.get_text("\n", strip=True)
        if match := _LIKED_RE.search(all_text):
            pros = match.group(1).strip()
        if match := _DISLIKED_RE.search(all_text):
            cons = match.group(1).strip()

    return _build_review(
        author=_first_text(block, _AUTHOR_SELECTORS) or "Anonymous",
        country=_first_text(block, _COUNTRY_SELECTORS),
        score=_to_float(score_text),
        date=_first_text(block, _DATE_SELECTORS) or "",
        title=_first_text(block, _TITLE_SELECTORS),
        pros=_clean_content(pros),
        cons=_clean_content(cons),
        text=_clean_content(_first_text(block, _TEXT_SELECTORS)),
    )


def parse_review_list_html(html: str) -> list[ScrapedReview]:
    soup = BeautifulSoup(html, "html.parser")
    reviews = []
    for block in find_review_containers(soup):
        review = parse_review_block(block)
        if review:
            reviews.append(review)
    return reviews


def parse_hotel_page(html: str, url: str) -> HotelInfo | None:
    """Hotel header data from a rendered property page, or None without a name."""
    soup = BeautifulSoup(html, "html.parser")
    name = _first_text(soup, _HOTEL_NAME_SELECTORS)
    if not name:
        logger.warning("Could not find hotel name on %s", url)
        return None

    review_count = 0
    count_text = _first_text(soup, _REVIEW_COUNT_SELECTORS) or ""
    # Only "N reviews" counts, so the rating badge is never taken for a count
    if match := _REVIEW_COUNT_RE.search(count_text):
        review_count = int(re.sub(r"[,.]", "", match.group(1)))

    return HotelInfo(
        hotel_id=canonical_hotel_id(url),
        hotel_name=name,
        location=_first_text(soup, _LOCATION_SELECTORS) or "",
        rating=_to_float(_first_text(soup, _RATING_SELECTORS)),
        review_count=review_count,
        url=url,
    )


def _hotel_id_from_jsonld(soup: BeautifulSoup) -> int | None:
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            ld = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError):
            continue
        items = ld if isinstance(ld, list) else [ld]
        for item in items:
            if isinstance(item, dict) and item.get("@type") == "Hotel" and item.get("identifier"):
                try:
                    return int(item["identifier"])
                except (TypeError, ValueError):
                    continue
    return None


def _search_scripts(scripts: list[str], patterns: tuple[re.Pattern, ...]) -> str | None:
    for content in scripts:
        for pattern in patterns:
            if match := pattern.search(content):
                return match.group(1)
    return None


_HOTEL_ID_PATTERNS = (
    re.compile(r"b_hotel_id[\"']?\s*[:=]\s*[\"']?(\d+)"),
    re.compile(r"hotelId[\"']?\s*[:=]\s*[\"']?(\d+)"),
    re.compile(r"\"hotel_id\"\s*:\s*(\d+)"),
)
_UFI_PATTERNS = (
    re.compile(r"[\"']ufi[\"']\s*[:=]\s*(-?\d+)"),
    re.compile(r"\bufi\s*[:=]\s*(-?\d+)"),
    re.compile(r"dest_id[\"']?\s*[:=]\s*[\"']?(-?\d+)"),
    re.compile(r"\"destId\"\s*:\s*(-?\d+)"),
)
_PAGEVIEW_PATTERNS = (re.compile(r"pageview_id[\"']?\s*[:=]\s*[\"']([a-f0-9]+)[\"']"),)


def extract_source_params(html: str, url: str) -> ReviewSourceParams | None:
    """Parameters for the review endpoints, read from the hotel page."""
    path_match = _HOTEL_PATH_RE.search(urlparse(url).path)
    if not path_match:
        logger.warning("Could not parse hotel path from %s", url)
        return None

    soup = BeautifulSoup(html, "html.parser")
    scripts = [s.string or "" for s in soup.find_all("script") if not s.get("src")]

    hotel_id = _hotel_id_from_jsonld(soup)
    if hotel_id is None:
        raw = _search_scripts(scripts, _HOTEL_ID_PATTERNS)
        hotel_id = int(raw) if raw else None
    ufi = _search_scripts(scripts, _UFI_PATTERNS)
    if hotel_id is None or ufi is None:
        logger.warning("Missing hotel id or ufi on %s", url)
        return None

    return ReviewSourceParams(
        hotel_id=hotel_id,
        ufi=int(ufi),
        country_code=path_match.group(1),
        pageview_id=_search_scripts(scripts, _PAGEVIEW_PATTERNS) or "",
        pagename=path_match.group(2),
    )
