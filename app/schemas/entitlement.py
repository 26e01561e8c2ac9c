from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel

from app.schemas.verdict import VerdictResult


class IdentityKind(StrEnum):
    user = "user"
    device = "device"
    ephemeral = "ephemeral"


class UserTier(StrEnum):
    anonymous = "anonymous"
    authenticated = "authenticated"


@dataclass(frozen=True)
class Identity:
    kind: IdentityKind
    key: str | None = None

    @classmethod
    def user(cls, user_id: str) -> Identity:
        return cls(IdentityKind.user, user_id)

    @classmethod
    def device(cls, device_id: str) -> Identity:
        return cls(IdentityKind.device, device_id)

    @classmethod
    def ephemeral(cls) -> Identity:
        return cls(IdentityKind.ephemeral)

    @property
    def persistent(self) -> bool:
        return self.kind is not IdentityKind.ephemeral

    @property
    def tier(self) -> UserTier:
        if self.kind is IdentityKind.user:
            return UserTier.authenticated
        return UserTier.anonymous


class EntitlementState(BaseModel):
    credits_remaining: int = 0
    has_purchased: bool = False
    anonymous_checks_used: int = 0


class RateLimitResult(BaseModel):
    allowed: bool
    credits_remaining: int
    tier: UserTier
    requires_signup: bool = False
    requires_purchase: bool = False


class CachedVerdict(BaseModel):
    id: int | None = None
    hotel_id: str
    hotel_url: str
    verdict: VerdictResult
    review_count: int
    created_at: str


@dataclass(frozen=True)
class CommitIntent:
    identity: Identity
    hotel_id: str
    hotel_url: str
    verdict: VerdictResult
    review_count: int


class CommitResult(BaseModel):
    verdict: VerdictResult
    charged: bool
    cached: bool  # False when nothing was persisted (ephemeral or store down)
    lost_race: bool = False
    analyzed_at: str | None = None
    verdict_id: int | None = None


class ClaimResult(BaseModel):
    success: bool = True
    already_claimed: bool
    credits_added: int


class AnonymousStatus(BaseModel):
    device_id: str
    checks_used: int
    checks_remaining: int
    limit: int
    claimed: bool = False


class UserStatus(BaseModel):
    id: str
    credits_remaining: int
    has_purchased: bool
