"""Entitlement state machine: who may trigger a paid analysis, and what it costs.

    no verdict for (identity, hotel)
        -> cached verdict exists: free re-read
        -> no cache: rate check
            -> allowed: LLM call, then commit (verdict insert + charge, one transaction)
            -> blocked: insufficient credits / requires signup

The verdicts table is unique on (identity, hotel). Of several concurrent
commits for the same key exactly one inserts and pays; the others read the
winner's row back at no cost.
"""

import logging
import sqlite3

from app.exceptions.custom import (
    InsufficientCreditsError,
    StorageConflictError,
    StorageUnavailableError,
)
from app.schemas.entitlement import (
    AnonymousStatus,
    CachedVerdict,
    ClaimResult,
    CommitIntent,
    CommitResult,
    EntitlementState,
    Identity,
    IdentityKind,
    RateLimitResult,
    UserStatus,
    UserTier,
)
from app.services.storage import SqliteStore

logger = logging.getLogger(__name__)

ANONYMOUS_TIER_LIMIT = 5
FREE_SIGNUP_CREDITS = 5


class EntitlementLedger:
    def __init__(
        self,
        store: SqliteStore,
        anonymous_limit: int = ANONYMOUS_TIER_LIMIT,
        signup_credits: int = FREE_SIGNUP_CREDITS,
        fail_open: bool = True,
        allow_ephemeral: bool = True,
    ):
        self._store = store
        self._anonymous_limit = anonymous_limit
        self._signup_credits = signup_credits
        self._fail_open = fail_open
        self._allow_ephemeral = allow_ephemeral

    @property
    def anonymous_limit(self) -> int:
        return self._anonymous_limit

    # --- reads ---

    def cached_verdict(self, identity: Identity, hotel_id: str) -> CachedVerdict | None:
        if not identity.persistent:
            return None
        try:
            return self._store.get_verdict(identity, hotel_id)
        except sqlite3.Error:
            logger.exception("Cache read failed for %s", hotel_id)
            return None

    def state(self, identity: Identity) -> EntitlementState:
        if identity.kind is IdentityKind.user:
            user = self._store.ensure_user(identity.key, self._signup_credits)
            return EntitlementState(
                credits_remaining=user.credits_remaining, has_purchased=user.has_purchased
            )
        if identity.kind is IdentityKind.device:
            used = self._store.count_anonymous_checks(identity.key)
            # Claimed checks now live in the user balance
            if self._store.has_claim(device_id=identity.key):
                return EntitlementState(credits_remaining=0, anonymous_checks_used=used)
            return EntitlementState(
                credits_remaining=max(0, self._anonymous_limit - used),
                anonymous_checks_used=used,
            )
        return EntitlementState()

    def credits_remaining(self, identity: Identity) -> int | None:
        """Recomputed on every read; None for ephemeral identities."""
        if not identity.persistent:
            return None
        try:
            return self.state(identity).credits_remaining
        except sqlite3.Error:
            logger.exception("Credit read failed")
            return None

    def has_purchased(self, identity: Identity) -> bool:
        if identity.kind is not IdentityKind.user:
            return False
        try:
            user = self._store.get_user(identity.key)
        except sqlite3.Error:
            logger.exception("Purchase status read failed")
            return False
        return bool(user and user.has_purchased)

    # --- rate check ---

    def check(self, identity: Identity) -> RateLimitResult:
        if not identity.persistent:
            return RateLimitResult(
                allowed=self._allow_ephemeral,
                credits_remaining=0,
                tier=UserTier.anonymous,
                requires_signup=not self._allow_ephemeral,
            )

        try:
            state = self.state(identity)
        except sqlite3.Error:
            logger.exception("Rate limit check failed (fail_open=%s)", self._fail_open)
            return RateLimitResult(
                allowed=self._fail_open,
                credits_remaining=0,
                tier=identity.tier,
                requires_signup=not self._fail_open and identity.kind is IdentityKind.device,
            )

        credits = state.credits_remaining
        if identity.kind is IdentityKind.user:
            return RateLimitResult(
                allowed=credits > 0,
                credits_remaining=credits,
                tier=UserTier.authenticated,
                requires_purchase=credits == 0,
            )
        return RateLimitResult(
            allowed=credits > 0,
            credits_remaining=credits,
            tier=UserTier.anonymous,
            requires_signup=credits == 0,
        )

    # --- commit ---

    def commit(self, intent: CommitIntent) -> CommitResult:
        identity = intent.identity
        if not identity.persistent:
            return CommitResult(verdict=intent.verdict, charged=False, cached=False)

        try:
            if identity.kind is IdentityKind.user:
                self._store.ensure_user(identity.key, self._signup_credits)
            with self._store.transaction() as tx:
                verdict_id, created_at = tx.insert_verdict(
                    identity, intent.hotel_id, intent.hotel_url, intent.verdict, intent.review_count
                )
                self._charge(tx, identity, intent.hotel_id)
        except StorageConflictError:
            return self._recover_race(intent)
        except sqlite3.Error as exc:
            if self._fail_open:
                logger.exception("Commit failed, returning uncached verdict for %s", intent.hotel_id)
                return CommitResult(verdict=intent.verdict, charged=False, cached=False)
            raise StorageUnavailableError(detail=str(exc)) from exc

        logger.info("Committed verdict for %s/%s", identity.kind.value, intent.hotel_id)
        return CommitResult(
            verdict=intent.verdict,
            charged=True,
            cached=True,
            analyzed_at=created_at,
            verdict_id=verdict_id,
        )

    def _charge(self, tx, identity: Identity, hotel_id: str) -> None:
        if identity.kind is IdentityKind.user:
            if tx.decrement_credit(identity.key) is None:
                raise InsufficientCreditsError(0)
            return
        used = tx.count_anonymous_checks(identity.key)
        if used >= self._anonymous_limit or tx.has_claim(identity.key):
            raise InsufficientCreditsError(0)
        tx.insert_anonymous_check(identity.key, hotel_id)

    def _recover_race(self, intent: CommitIntent) -> CommitResult:
        winner = self._store.get_verdict(intent.identity, intent.hotel_id)
        if winner is None:
            # Conflict without a readable row should not happen; do not charge.
            logger.error("Verdict conflict for %s but no winning row", intent.hotel_id)
            return CommitResult(verdict=intent.verdict, charged=False, cached=False)
        logger.info("Lost verdict race for %s, returning winner", intent.hotel_id)
        return CommitResult(
            verdict=winner.verdict,
            charged=False,
            cached=True,
            lost_race=True,
            analyzed_at=winner.created_at,
            verdict_id=winner.id,
        )

    # --- account operations ---

    def claim_anonymous_credits(self, user_id: str, device_id: str) -> ClaimResult:
        """Move a device's unused anonymous checks into the user's balance, once."""
        self._store.ensure_user(user_id, self._signup_credits)
        if self._store.has_claim(device_id=device_id, user_id=user_id):
            return ClaimResult(already_claimed=True, credits_added=0)

        try:
            with self._store.transaction() as tx:
                used = tx.count_anonymous_checks(device_id)
                # Counters are not guaranteed to reconcile; never go negative
                amount = max(0, self._anonymous_limit - used)
                tx.insert_claim(device_id, user_id, amount)
                if amount:
                    tx.add_credits(user_id, amount)
        except StorageConflictError:
            logger.info("Duplicate anonymous claim for device %s", device_id)
            return ClaimResult(already_claimed=True, credits_added=0)

        logger.info("User %s claimed %d anonymous credits", user_id, amount)
        return ClaimResult(already_claimed=False, credits_added=amount)

    def record_purchase(self, user_id: str, credits: int) -> UserStatus:
        self._store.ensure_user(user_id, self._signup_credits)
        with self._store.transaction() as tx:
            tx.add_credits(user_id, credits, purchased=True)
        return self.user_status(user_id)

    def user_status(self, user_id: str) -> UserStatus:
        user = self._store.ensure_user(user_id, self._signup_credits)
        return UserStatus(
            id=user.id,
            credits_remaining=user.credits_remaining,
            has_purchased=user.has_purchased,
        )

    def anonymous_status(self, device_id: str) -> AnonymousStatus:
        used = self._store.count_anonymous_checks(device_id)
        claimed = self._store.has_claim(device_id=device_id)
        return AnonymousStatus(
            device_id=device_id,
            checks_used=used,
            checks_remaining=0 if claimed else max(0, self._anonymous_limit - used),
            limit=self._anonymous_limit,
            claimed=claimed,
        )
