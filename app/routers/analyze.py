from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from app.dependencies import AnalysisDep, IdentityDep
from app.schemas.responses import (
    AnalyzeRequest,
    AnalyzeResponse,
    ApiError,
    CheckCacheResponse,
    RateLimitedResponse,
)

router = APIRouter()


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    responses={
        422: {"model": ApiError},
        429: {"model": RateLimitedResponse},
        502: {"model": ApiError},
        503: {"model": ApiError},
    },
)
async def analyze_hotel(
    request: AnalyzeRequest,
    service: AnalysisDep,
    identity: IdentityDep,
) -> AnalyzeResponse:
    result = await service.analyze(request, identity)
    if isinstance(result, RateLimitedResponse):
        return JSONResponse(status_code=429, content=result.model_dump(mode="json"))
    return result


@router.get("/check-cache", response_model=CheckCacheResponse)
async def check_cache(
    service: AnalysisDep,
    identity: IdentityDep,
    hotel_id: str = Query(min_length=1, description="Hotel URL, \"cc/slug\" or canonical id"),
) -> CheckCacheResponse:
    return await service.check_cache(hotel_id, identity)
