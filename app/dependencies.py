from typing import Annotated

from fastapi import Depends, Header, Request

from app.schemas.entitlement import Identity
from app.services.analysis import AnalysisService
from app.services.feedback import FeedbackService
from app.services.identity import SupabaseIdentityService
from app.services.ledger import EntitlementLedger


def get_analysis_service(request: Request) -> AnalysisService:
    return request.app.state.analysis_service


def get_ledger(request: Request) -> EntitlementLedger:
    return request.app.state.ledger


def get_feedback_service(request: Request) -> FeedbackService:
    return request.app.state.feedback_service


def _bearer(authorization: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return None


async def get_user_id(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> str | None:
    identity: SupabaseIdentityService | None = getattr(request.app.state, "identity_service", None)
    token = _bearer(authorization)
    if identity is None or token is None:
        return None
    return await identity.resolve(token)


async def get_identity(
    user_id: Annotated[str | None, Depends(get_user_id)],
    x_device_id: Annotated[str | None, Header()] = None,
) -> Identity:
    """Authenticated user beats device; neither means ephemeral."""
    if user_id:
        return Identity.user(user_id)
    if x_device_id:
        return Identity.device(x_device_id)
    return Identity.ephemeral()


AnalysisDep = Annotated[AnalysisService, Depends(get_analysis_service)]
LedgerDep = Annotated[EntitlementLedger, Depends(get_ledger)]
FeedbackDep = Annotated[FeedbackService, Depends(get_feedback_service)]
UserIdDep = Annotated[str | None, Depends(get_user_id)]
IdentityDep = Annotated[Identity, Depends(get_identity)]
