"""
Restaurant liquidation API Routes
"""
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from orderflow.api.dependencies.auth import get_current_actor, get_repository
from orderflow.db.models.credit import LiquidationMethod
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.services.liquidation_service import LiquidationService

router = APIRouter()


class LiquidationCreate(BaseModel):
    restaurant_id: int
    amount_cents: int = Field(..., ge=1)
    method: LiquidationMethod
    proof_url: Optional[str] = Field(None, max_length=2000)
    notes: Optional[str] = Field(None, max_length=1000)


class LiquidationResponse(BaseModel):
    id: int
    restaurant_id: int
    amount_cents: int
    method: LiquidationMethod
    proof_url: Optional[str]
    notes: Optional[str]
    business_date: date
    transaction_id: Optional[int]
    created_by_user_id: int
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class LiquidationListResponse(BaseModel):
    items: List[LiquidationResponse]
    total: int
    page: int
    limit: int


@router.get("", response_model=LiquidationListResponse, summary="List restaurant liquidations")
async def list_liquidations(
    restaurant_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> LiquidationListResponse:
    items, total = await LiquidationService(repo).list_liquidations(
        actor, restaurant_id=restaurant_id, page=page, limit=limit
    )
    return LiquidationListResponse(
        items=[LiquidationResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.post(
    "",
    response_model=LiquidationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Pay out a restaurant's credit balance",
    responses={
        400: {"description": "Missing proof or insufficient balance"},
        409: {"description": "Restaurant already liquidated today"},
    },
)
async def liquidate_restaurant(
    body: LiquidationCreate,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> LiquidationResponse:
    return await LiquidationService(repo).liquidate(
        body.restaurant_id,
        body.amount_cents,
        body.method,
        actor,
        proof_url=body.proof_url,
        notes=body.notes,
    )
