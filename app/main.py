import logging
import sys
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from app.config import Settings
from app.exceptions.custom import DoNotStayError
from app.exceptions.handlers import donotstay_error_handler
from app.routers.account import router as account_router
from app.routers.analyze import router as analyze_router
from app.routers.feedback import router as feedback_router
from app.services.analysis import AnalysisService
from app.services.arbitrator import VerdictArbitrator
from app.services.booking import BookingReviewService
from app.services.claude import ClaudeService
from app.services.feedback import FeedbackService
from app.services.identity import SupabaseIdentityService
from app.services.ledger import EntitlementLedger
from app.services.storage import SqliteStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    store = SqliteStore(settings.database_path)
    store.init()

    async with httpx.AsyncClient(timeout=30.0) as client:
        identity: SupabaseIdentityService | None = None
        if settings.supabase_url and settings.supabase_anon_key:
            identity = SupabaseIdentityService(
                client, settings.supabase_url, settings.supabase_anon_key
            )

        ledger = EntitlementLedger(
            store,
            anonymous_limit=settings.anonymous_tier_limit,
            signup_credits=settings.free_signup_credits,
            fail_open=settings.rate_limit_fail_open,
            allow_ephemeral=settings.allow_ephemeral,
        )
        claude = ClaudeService(
            settings.anthropic_api_key,
            model=settings.llm_model,
            max_tokens=settings.llm_max_tokens,
        )
        reviews = BookingReviewService(
            client,
            max_reviews=settings.max_reviews,
            high_score_ratio=settings.high_score_ratio,
        )

        app.state.identity_service = identity
        app.state.ledger = ledger
        app.state.feedback_service = FeedbackService(store)
        app.state.internal_api_key = settings.internal_api_key
        app.state.analysis_service = AnalysisService(
            ledger,
            VerdictArbitrator(claude),
            reviews=reviews,
            max_reviews=settings.max_reviews,
            high_score_ratio=settings.high_score_ratio,
        )

        yield


app = FastAPI(title="DoNotStay", lifespan=lifespan)

app.add_exception_handler(DoNotStayError, donotstay_error_handler)

app.include_router(analyze_router)
app.include_router(account_router)
app.include_router(feedback_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
