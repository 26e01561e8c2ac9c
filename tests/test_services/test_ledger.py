import sqlite3
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from app.exceptions.custom import InsufficientCreditsError, StorageUnavailableError
from app.schemas.entitlement import CommitIntent, Identity, UserTier
from app.schemas.verdict import Verdict, VerdictResult
from app.services.ledger import EntitlementLedger
from app.services.storage import SqliteStore


def _verdict(confidence: float = 80) -> VerdictResult:
    return VerdictResult(
        verdict=Verdict.stay,
        confidence=confidence,
        one_liner="No catch",
        bottom_line="Book it.",
    )


def _intent(identity: Identity, hotel_id: str = "booking:fr/central", confidence: float = 80) -> CommitIntent:
    return CommitIntent(
        identity=identity,
        hotel_id=hotel_id,
        hotel_url=f"https://www.booking.com/hotel/{hotel_id.split(':')[1]}.html",
        verdict=_verdict(confidence),
        review_count=40,
    )


@pytest.fixture
def store(tmp_path):
    s = SqliteStore(str(tmp_path / "test.db"))
    s.init()
    return s


@pytest.fixture
def ledger(store):
    return EntitlementLedger(store, anonymous_limit=5, signup_credits=5)


# --- rate check ---


def test_new_user_gets_signup_credits(ledger):
    result = ledger.check(Identity.user("u1"))
    assert result.allowed
    assert result.credits_remaining == 5
    assert result.tier is UserTier.authenticated


def test_user_without_credits_requires_purchase(ledger):
    user = Identity.user("u1")
    for i in range(5):
        ledger.commit(_intent(user, f"booking:fr/h{i}"))

    result = ledger.check(user)
    assert not result.allowed
    assert result.requires_purchase
    assert result.credits_remaining == 0


def test_device_exhausted_requires_signup(ledger):
    device = Identity.device("dev-1")
    for i in range(5):
        assert ledger.check(device).allowed
        ledger.commit(_intent(device, f"booking:fr/h{i}"))

    result = ledger.check(device)
    assert not result.allowed
    assert result.requires_signup
    assert result.credits_remaining == 0
    assert result.tier is UserTier.anonymous


def test_ephemeral_allowed_but_never_persisted(ledger, store):
    ephemeral = Identity.ephemeral()
    assert ledger.check(ephemeral).allowed

    committed = ledger.commit(_intent(ephemeral))
    assert not committed.charged
    assert not committed.cached
    assert ledger.cached_verdict(ephemeral, "booking:fr/central") is None
    assert ledger.credits_remaining(ephemeral) is None


def test_ephemeral_blocked_when_disabled(store):
    ledger = EntitlementLedger(store, allow_ephemeral=False)
    result = ledger.check(Identity.ephemeral())
    assert not result.allowed
    assert result.requires_signup


def test_check_fails_open_on_store_error():
    store = MagicMock()
    store.ensure_user.side_effect = sqlite3.OperationalError("database is locked")
    ledger = EntitlementLedger(store, fail_open=True)

    assert ledger.check(Identity.user("u1")).allowed


def test_check_fails_closed_when_configured():
    store = MagicMock()
    store.count_anonymous_checks.side_effect = sqlite3.OperationalError("disk I/O error")
    ledger = EntitlementLedger(store, fail_open=False)

    result = ledger.check(Identity.device("dev-1"))
    assert not result.allowed
    assert result.requires_signup


# --- commit ---


def test_commit_charges_once_and_caches(ledger):
    user = Identity.user("u1")
    committed = ledger.commit(_intent(user))

    assert committed.charged
    assert committed.cached
    assert committed.analyzed_at
    assert ledger.credits_remaining(user) == 4
    cached = ledger.cached_verdict(user, "booking:fr/central")
    assert cached.verdict == committed.verdict
    assert cached.review_count == 40


def test_cache_read_is_free(ledger):
    device = Identity.device("dev-1")
    ledger.commit(_intent(device))
    before = ledger.credits_remaining(device)

    for _ in range(3):
        assert ledger.cached_verdict(device, "booking:fr/central") is not None
    assert ledger.credits_remaining(device) == before == 4


def test_cache_is_per_identity(ledger):
    ledger.commit(_intent(Identity.user("u1")))
    assert ledger.cached_verdict(Identity.user("u2"), "booking:fr/central") is None
    assert ledger.cached_verdict(Identity.device("u1"), "booking:fr/central") is None


def test_second_commit_loses_race_and_returns_winner(ledger):
    user = Identity.user("u1")
    first = ledger.commit(_intent(user, confidence=80))
    second = ledger.commit(_intent(user, confidence=55))

    assert second.lost_race
    assert not second.charged
    assert second.verdict == first.verdict
    assert second.analyzed_at == first.analyzed_at
    assert ledger.credits_remaining(user) == 4


def test_concurrent_commits_charge_exactly_once(ledger):
    user = Identity.user("u1")
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda i: ledger.commit(_intent(user, confidence=50 + i)), range(8)))

    assert sum(r.charged for r in results) == 1
    assert len({r.verdict.confidence for r in results}) == 1
    assert ledger.credits_remaining(user) == 4


def test_commit_without_credit_rolls_back(ledger, store):
    device = Identity.device("dev-1")
    for i in range(5):
        ledger.commit(_intent(device, f"booking:fr/h{i}"))

    with pytest.raises(InsufficientCreditsError):
        ledger.commit(_intent(device, "booking:fr/h5"))
    assert store.get_verdict(device, "booking:fr/h5") is None
    assert store.count_anonymous_checks("dev-1") == 5


def test_commit_store_error_fail_open_returns_uncached():
    store = MagicMock()
    store.transaction.side_effect = sqlite3.OperationalError("database is locked")
    ledger = EntitlementLedger(store, fail_open=True)

    committed = ledger.commit(_intent(Identity.user("u1")))
    assert not committed.charged
    assert not committed.cached


def test_commit_store_error_fail_closed_raises():
    store = MagicMock()
    store.transaction.side_effect = sqlite3.OperationalError("database is locked")
    ledger = EntitlementLedger(store, fail_open=False)

    with pytest.raises(StorageUnavailableError):
        ledger.commit(_intent(Identity.user("u1")))


# --- claims and purchases ---


def test_claim_moves_unused_anonymous_checks(ledger):
    device = Identity.device("dev-1")
    for i in range(2):
        ledger.commit(_intent(device, f"booking:fr/h{i}"))

    claim = ledger.claim_anonymous_credits("u1", "dev-1")
    assert claim.success
    assert not claim.already_claimed
    assert claim.credits_added == 3
    assert ledger.user_status("u1").credits_remaining == 8


def test_claim_twice_is_idempotent(ledger):
    first = ledger.claim_anonymous_credits("u1", "dev-1")
    balance = ledger.user_status("u1").credits_remaining

    second = ledger.claim_anonymous_credits("u1", "dev-1")
    assert first.credits_added == 5
    assert second.already_claimed
    assert second.credits_added == 0
    assert ledger.user_status("u1").credits_remaining == balance


def test_claim_exhausted_device_adds_nothing(ledger):
    device = Identity.device("dev-1")
    for i in range(5):
        ledger.commit(_intent(device, f"booking:fr/h{i}"))

    claim = ledger.claim_anonymous_credits("u1", "dev-1")
    assert claim.credits_added == 0
    assert ledger.user_status("u1").credits_remaining == 5


def test_device_cannot_be_claimed_by_second_user(ledger):
    ledger.claim_anonymous_credits("u1", "dev-1")
    claim = ledger.claim_anonymous_credits("u2", "dev-1")
    assert claim.already_claimed
    assert ledger.user_status("u2").credits_remaining == 5


def test_purchase_only_increases_balance(ledger):
    before = ledger.user_status("u1")
    after = ledger.record_purchase("u1", 20)

    assert not before.has_purchased
    assert after.has_purchased
    assert after.credits_remaining == before.credits_remaining + 20
    assert ledger.has_purchased(Identity.user("u1"))


def test_anonymous_status(ledger):
    ledger.commit(_intent(Identity.device("dev-1")))
    status = ledger.anonymous_status("dev-1")

    assert status.checks_used == 1
    assert status.checks_remaining == 4
    assert status.limit == 5
    assert not status.claimed


def test_claimed_device_has_no_checks_left(ledger, store):
    device = Identity.device("dev-1")
    ledger.commit(_intent(device, "booking:fr/h0"))
    ledger.claim_anonymous_credits("u1", "dev-1")

    result = ledger.check(device)
    assert not result.allowed
    assert result.requires_signup
    assert result.credits_remaining == 0
    assert ledger.credits_remaining(device) == 0

    with pytest.raises(InsufficientCreditsError):
        ledger.commit(_intent(device, "booking:fr/h1"))
    assert store.get_verdict(device, "booking:fr/h1") is None

    status = ledger.anonymous_status("dev-1")
    assert status.claimed
    assert status.checks_used == 1
    assert status.checks_remaining == 0
    # the earlier verdict is still a free cache read
    assert ledger.cached_verdict(device, "booking:fr/h0") is not None


def test_commit_returns_verdict_id(ledger):
    user = Identity.user("u1")
    first = ledger.commit(_intent(user))
    loser = ledger.commit(_intent(user, confidence=55))

    assert first.verdict_id is not None
    assert loser.verdict_id == first.verdict_id
    assert ledger.cached_verdict(user, "booking:fr/central").id == first.verdict_id
