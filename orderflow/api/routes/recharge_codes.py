"""
Recharge code API Routes
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from orderflow.api.dependencies.auth import get_current_actor, get_repository
from orderflow.db.models.credit import RechargeCodeStatus
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.services.recharge_service import RechargeService

router = APIRouter()


class RechargeCodeCreate(BaseModel):
    amount_cents: int = Field(..., ge=1)
    intended_rider_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=500)


class RechargeCodeResponse(BaseModel):
    id: int
    code: str
    amount_cents: int
    status: RechargeCodeStatus
    generated_by_user_id: int
    intended_rider_id: Optional[int]
    redeemed_by_rider_id: Optional[int]
    redeemed_at: Optional[datetime]
    voided_at: Optional[datetime]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class RechargeCodePage(BaseModel):
    items: List[RechargeCodeResponse]
    total: int
    page: int
    limit: int


@router.post(
    "",
    response_model=RechargeCodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate a recharge code",
)
async def generate_code(
    body: RechargeCodeCreate,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> RechargeCodeResponse:
    return await RechargeService(repo).generate(
        body.amount_cents, actor, intended_rider_id=body.intended_rider_id, notes=body.notes
    )


@router.get(
    "",
    response_model=RechargeCodePage,
    summary="List recharge codes (agents see their own)",
)
async def list_codes(
    code_status: Optional[RechargeCodeStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> RechargeCodePage:
    items, total = await RechargeService(repo).list_codes(actor, status=code_status, page=page, limit=limit)
    return RechargeCodePage(
        items=[RechargeCodeResponse.model_validate(code) for code in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.post(
    "/{code_id}/void",
    response_model=RechargeCodeResponse,
    summary="Void a pending recharge code",
    responses={409: {"description": "Code already redeemed or voided"}},
)
async def void_code(
    code_id: int,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> RechargeCodeResponse:
    return await RechargeService(repo).void(code_id, actor)
