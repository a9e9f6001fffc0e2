"""
Resource API Routes

Creation endpoints for prompts and smart templates, guarded by plan quotas.
"""

from fastapi import APIRouter, Depends, status

from criaprompt.api.dependencies import (
    AuthenticatedUser,
    ResourceServiceDep,
    get_current_user,
    require_quota,
)
from criaprompt.domain.resources import (
    CreatePromptRequest,
    CreateSmartTemplateRequest,
    PromptResponse,
    SmartTemplateResponse,
)
from criaprompt.domain.subscription import ResourceKind


router = APIRouter()


@router.post(
    "/prompts",
    response_model=PromptResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_quota(ResourceKind.PROMPT))],
)
async def create_prompt(
    request: CreatePromptRequest,
    service: ResourceServiceDep,
    user: AuthenticatedUser = Depends(get_current_user),
):
    prompt = await service.create_prompt(user.id, request)
    return PromptResponse.model_validate(prompt)


@router.post(
    "/modelos",
    response_model=SmartTemplateResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_quota(ResourceKind.MODEL))],
)
async def create_template(
    request: CreateSmartTemplateRequest,
    service: ResourceServiceDep,
    user: AuthenticatedUser = Depends(get_current_user),
):
    template = await service.create_template(user.id, request)
    return SmartTemplateResponse.model_validate(template)
