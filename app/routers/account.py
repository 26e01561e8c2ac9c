import asyncio
import secrets
from typing import Annotated

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from app.dependencies import LedgerDep, UserIdDep
from app.schemas.entitlement import AnonymousStatus, ClaimResult, UserStatus
from app.schemas.responses import ApiError, ClaimRequest, PurchaseRequest

router = APIRouter()


def _unauthorized() -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Unauthorized", "code": "UNAUTHORIZED"})


@router.get("/anonymous-status", response_model=AnonymousStatus, responses={400: {"model": ApiError}})
async def anonymous_status(
    ledger: LedgerDep,
    x_device_id: Annotated[str | None, Header()] = None,
) -> AnonymousStatus:
    if not x_device_id:
        return JSONResponse(
            status_code=400,
            content={"error": "Missing X-Device-ID header", "code": "MISSING_DEVICE_ID"},
        )
    return await asyncio.to_thread(ledger.anonymous_status, x_device_id)


@router.post(
    "/claim-anonymous-credits", response_model=ClaimResult, responses={401: {"model": ApiError}}
)
async def claim_anonymous_credits(
    request: ClaimRequest,
    ledger: LedgerDep,
    user_id: UserIdDep,
) -> ClaimResult:
    if user_id is None:
        return _unauthorized()
    return await asyncio.to_thread(ledger.claim_anonymous_credits, user_id, request.device_id)


@router.get("/user", response_model=UserStatus, responses={401: {"model": ApiError}})
async def get_user(ledger: LedgerDep, user_id: UserIdDep) -> UserStatus:
    if user_id is None:
        return _unauthorized()
    return await asyncio.to_thread(ledger.user_status, user_id)


@router.post(
    "/internal/purchases",
    response_model=UserStatus,
    responses={403: {"model": ApiError}},
    include_in_schema=False,
)
async def record_purchase(
    purchase: PurchaseRequest,
    request: Request,
    ledger: LedgerDep,
    x_internal_key: Annotated[str | None, Header()] = None,
) -> UserStatus:
    """Credit a completed checkout. Called by the payment webhook relay, never by clients."""
    expected = request.app.state.internal_api_key
    if not expected or not x_internal_key or not secrets.compare_digest(x_internal_key, expected):
        return JSONResponse(status_code=403, content={"error": "Forbidden", "code": "FORBIDDEN"})
    return await asyncio.to_thread(ledger.record_purchase, purchase.user_id, purchase.credits)
