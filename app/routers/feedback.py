import asyncio

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.dependencies import FeedbackDep, UserIdDep
from app.schemas.feedback import FeedbackRequest, FeedbackResult
from app.schemas.responses import ApiError

router = APIRouter()


@router.post(
    "/feedback",
    response_model=FeedbackResult,
    responses={400: {"model": ApiError}, 401: {"model": ApiError}, 500: {"model": ApiError}},
)
async def submit_feedback(
    request: FeedbackRequest,
    feedback: FeedbackDep,
    user_id: UserIdDep,
) -> FeedbackResult:
    if user_id is None:
        return JSONResponse(status_code=401, content={"error": "Unauthorized", "code": "UNAUTHORIZED"})
    return await asyncio.to_thread(feedback.submit, user_id, request)
