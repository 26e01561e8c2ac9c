import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from .custom import DoNotStayError

logger = logging.getLogger(__name__)


async def donotstay_error_handler(_request: Request, exc: DoNotStayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s (detail=%s)", exc.code, exc.message, exc.detail)
    else:
        logger.info("%s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code},
    )
