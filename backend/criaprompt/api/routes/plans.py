"""
Plan API Routes

Public plan catalog.
"""

from typing import List

from fastapi import APIRouter

from criaprompt.api.dependencies import PlanRegistryDep
from criaprompt.domain.subscription import PlanResponse


router = APIRouter()


@router.get("/planos", response_model=List[PlanResponse])
async def list_plans(registry: PlanRegistryDep):
    """Active plans in display order."""
    plans = await registry.list_active_plans()
    return [PlanResponse.model_validate(plan) for plan in plans]


@router.get("/planos/{plan_id}", response_model=PlanResponse)
async def get_plan(plan_id: int, registry: PlanRegistryDep):
    plan = await registry.get_plan(plan_id)
    return PlanResponse.model_validate(plan)
