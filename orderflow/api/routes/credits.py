"""
Credit ledger API Routes
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator

from orderflow.api.dependencies.auth import get_current_actor, get_repository
from orderflow.core.exceptions import ValidationException
from orderflow.core.logging import get_logger
from orderflow.db.models.credit import AccountEntityType, CreditTransactionType
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.services.credit_ledger_service import (
    MAX_PAGE_SIZE,
    MIN_ADJUSTMENT_NOTE_LENGTH,
    CreditLedgerService,
)
from orderflow.domain.services.recharge_service import RechargeService

logger = get_logger(__name__)

router = APIRouter()


class RedeemRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    # Staff redeeming on a rider's behalf; riders redeem for themselves
    rider_id: Optional[int] = None


class AdjustmentRequest(BaseModel):
    entity_type: AccountEntityType
    entity_id: int
    amount: int
    note: str = Field(..., max_length=500)

    @field_validator("amount")
    @classmethod
    def non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("Adjustment amount must not be zero")
        return v

    @field_validator("note")
    @classmethod
    def long_enough(cls, v: str) -> str:
        v = v.strip()
        if len(v) < MIN_ADJUSTMENT_NOTE_LENGTH:
            raise ValueError(f"Note must have at least {MIN_ADJUSTMENT_NOTE_LENGTH} characters")
        return v


class TransactionResponse(BaseModel):
    id: int
    type: CreditTransactionType
    amount: int
    balance_before: int
    balance_after: int
    order_id: Optional[int]
    recharge_code_id: Optional[int]
    note: Optional[str]
    actor_user_id: Optional[int]
    created_at: datetime

    model_config = {"from_attributes": True}


class CreditHealthResponse(BaseModel):
    status: str
    can_take_cash_orders: bool
    shortfall_cents: int

    model_config = {"from_attributes": True}


class AccountSummaryResponse(BaseModel):
    entity_type: AccountEntityType
    entity_id: int
    balance: int
    total_earned: int
    total_liquidated: int
    health: Optional[CreditHealthResponse]
    recent: List[TransactionResponse]

    model_config = {"from_attributes": True}


class TransactionPage(BaseModel):
    items: List[TransactionResponse]
    total: int
    page: int
    limit: int


@router.post(
    "/redeem",
    response_model=TransactionResponse,
    summary="Redeem a recharge code into a rider's credit account",
    responses={
        404: {"description": "Code not found"},
        409: {"description": "Code already redeemed or voided"},
    },
)
async def redeem_code(
    body: RedeemRequest,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> TransactionResponse:
    rider_id = body.rider_id if body.rider_id is not None else actor.rider_id
    if rider_id is None:
        raise ValidationException("rider_id is required", field="rider_id")
    return await RechargeService(repo).redeem(body.code, rider_id, actor)


@router.post(
    "/adjustments",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Owner-only manual adjustment",
    responses={
        400: {"description": "Adjustment would overdraw the account"},
        403: {"description": "Caller is not the owner"},
        404: {"description": "Account not found"},
    },
)
async def manual_adjustment(
    body: AdjustmentRequest,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> TransactionResponse:
    return await CreditLedgerService(repo).manual_adjustment(
        body.entity_type, body.entity_id, body.amount, body.note, actor
    )


@router.get(
    "/{entity_type}/{entity_id}",
    response_model=AccountSummaryResponse,
    summary="Balance, totals and latest transactions",
    responses={404: {"description": "Account not found or not visible"}},
)
async def account_summary(
    entity_type: AccountEntityType,
    entity_id: int,
    repo: Repository = Depends(get_repository),
) -> AccountSummaryResponse:
    summary = await CreditLedgerService(repo).get_summary(entity_type, entity_id)
    return AccountSummaryResponse.model_validate(summary)


@router.get(
    "/{entity_type}/{entity_id}/transactions",
    response_model=TransactionPage,
    summary="Transaction history, newest first",
)
async def account_transactions(
    entity_type: AccountEntityType,
    entity_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    repo: Repository = Depends(get_repository),
) -> TransactionPage:
    items, total = await CreditLedgerService(repo).list_transactions(
        entity_type, entity_id, page=page, limit=limit
    )
    return TransactionPage(
        items=[TransactionResponse.model_validate(tx) for tx in items],
        total=total,
        page=page,
        limit=limit,
    )
