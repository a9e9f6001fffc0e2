"""
Quota API Routes

Programmatic quota check for clients that want to warn before creating.
"""

from fastapi import APIRouter, Depends

from criaprompt.api.dependencies import AuthenticatedUser, QuotaServiceDep, get_current_user
from criaprompt.domain.subscription import QuotaCheckResponse, ResourceKind


router = APIRouter()


@router.get(
    "/limites/{kind}",
    response_model=QuotaCheckResponse,
    response_model_exclude_none=True,
)
async def check_limit(
    kind: ResourceKind,
    quota: QuotaServiceDep,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Whether the caller may create one more resource of ``kind``."""
    decision = await quota.check(user.id, kind)
    return decision.to_response()
