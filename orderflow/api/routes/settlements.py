"""
Settlement API Routes
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field, model_validator

from orderflow.api.dependencies.auth import get_current_actor, get_repository
from orderflow.core.logging import get_logger
from orderflow.db.models.order import PaymentMethod
from orderflow.db.models.rider import PayType
from orderflow.db.models.settlement import SettlementStatus
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.services.settlement_service import (
    MAX_LIST_LIMIT,
    RestaurantSettlementPreview,
    RiderSettlementPreview,
    SettlementKind,
    SettlementService,
)

logger = get_logger(__name__)

router = APIRouter()

_MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


# ==================== Requests ====================


class _PeriodRequest(BaseModel):
    period_start: date
    period_end: date
    notes: Optional[str] = Field(None, max_length=1000)
    dry_run: bool = False

    @model_validator(mode="after")
    def check_period(self) -> "_PeriodRequest":
        if self.period_start > self.period_end:
            raise ValueError("period_start must not be after period_end")
        return self


class RiderSettlementCreate(_PeriodRequest):
    rider_id: int
    fuel_reimbursement_cents: Optional[int] = Field(None, ge=0)


class RestaurantSettlementCreate(_PeriodRequest):
    restaurant_id: int


class SettlementUpdate(BaseModel):
    status: Optional[SettlementStatus] = None
    fuel_reimbursement_cents: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=1000)
    reopen: bool = False


# ==================== Responses ====================


class RiderSettlementResponse(BaseModel):
    id: int
    rider_id: int
    period_start: date
    period_end: date
    pay_type: PayType
    commission_rate: Decimal
    fixed_salary_cents: int
    total_deliveries: int
    total_cash_collected_cents: int
    total_pos_collected_cents: int
    total_digital_collected_cents: int
    total_delivery_fees_cents: int
    rider_commission_cents: int
    total_bonuses_cents: int
    fuel_reimbursement_cents: int
    net_payout_cents: int
    status: SettlementStatus
    paid_at: Optional[datetime]
    notes: Optional[str]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class RestaurantSettlementResponse(BaseModel):
    id: int
    restaurant_id: int
    period_start: date
    period_end: date
    commission_rate: Decimal
    total_orders: int
    gross_sales_cents: int
    commission_cents: int
    net_payout_cents: int
    status: SettlementStatus
    paid_at: Optional[datetime]
    notes: Optional[str]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class SettlementOrderResponse(BaseModel):
    order_id: int
    code: str
    delivered_at: datetime
    payment_method: PaymentMethod
    subtotal_cents: int
    delivery_fee_cents: int
    rider_bonus_cents: int
    total_cents: int

    model_config = {"from_attributes": True}


class RiderSettlementDetailResponse(RiderSettlementResponse):
    orders: List[SettlementOrderResponse]


class RestaurantSettlementDetailResponse(RestaurantSettlementResponse):
    orders: List[SettlementOrderResponse]


class _OverlapFields(BaseModel):
    dry_run: bool = True
    has_overlap: bool
    overlap_start: Optional[date]
    overlap_end: Optional[date]


class RiderSettlementPreviewResponse(_OverlapFields):
    rider_id: int
    period_start: date
    period_end: date
    pay_type: PayType
    commission_rate: Decimal
    fixed_salary_cents: int
    total_deliveries: int
    total_cash_collected_cents: int
    total_pos_collected_cents: int
    total_digital_collected_cents: int
    total_delivery_fees_cents: int
    rider_commission_cents: int
    total_bonuses_cents: int
    fuel_reimbursement_cents: int
    net_payout_cents: int

    model_config = {"from_attributes": True}


class RestaurantSettlementPreviewResponse(_OverlapFields):
    restaurant_id: int
    period_start: date
    period_end: date
    commission_rate: Decimal
    total_orders: int
    gross_sales_cents: int
    commission_cents: int
    net_payout_cents: int

    model_config = {"from_attributes": True}


class SettlementListResponse(BaseModel):
    items: List[Union[RiderSettlementResponse, RestaurantSettlementResponse]]
    total: int
    page: int
    limit: int


_RESPONSE_SCHEMAS = {
    SettlementKind.RIDERS: RiderSettlementResponse,
    SettlementKind.RESTAURANTS: RestaurantSettlementResponse,
}

_DETAIL_SCHEMAS = {
    SettlementKind.RIDERS: RiderSettlementDetailResponse,
    SettlementKind.RESTAURANTS: RestaurantSettlementDetailResponse,
}


# ==================== Create ====================


@router.post(
    "/riders",
    response_model=Union[RiderSettlementResponse, RiderSettlementPreviewResponse],
    summary="Create (or preview with dry_run) a rider settlement",
    responses={409: {"description": "Period overlaps an existing settlement"}},
)
async def create_rider_settlement(
    body: RiderSettlementCreate,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> Union[RiderSettlementResponse, RiderSettlementPreviewResponse]:
    result = await SettlementService(repo).create_rider_settlement(
        rider_id=body.rider_id,
        period_start=body.period_start,
        period_end=body.period_end,
        actor=actor,
        fuel_reimbursement_cents=body.fuel_reimbursement_cents,
        notes=body.notes,
        dry_run=body.dry_run,
    )
    if isinstance(result, RiderSettlementPreview):
        return RiderSettlementPreviewResponse.model_validate(result)
    return RiderSettlementResponse.model_validate(result)


@router.post(
    "/restaurants",
    response_model=Union[RestaurantSettlementResponse, RestaurantSettlementPreviewResponse],
    summary="Create (or preview with dry_run) a restaurant settlement",
    responses={409: {"description": "Period overlaps an existing settlement"}},
)
async def create_restaurant_settlement(
    body: RestaurantSettlementCreate,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> Union[RestaurantSettlementResponse, RestaurantSettlementPreviewResponse]:
    result = await SettlementService(repo).create_restaurant_settlement(
        restaurant_id=body.restaurant_id,
        period_start=body.period_start,
        period_end=body.period_end,
        actor=actor,
        notes=body.notes,
        dry_run=body.dry_run,
    )
    if isinstance(result, RestaurantSettlementPreview):
        return RestaurantSettlementPreviewResponse.model_validate(result)
    return RestaurantSettlementResponse.model_validate(result)


# ==================== Read / export / update ====================


@router.get(
    "/{kind}/export",
    summary="Export a month of settlements to Excel",
    responses={
        200: {
            "description": "XLSX file",
            "content": {"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": {}},
        },
    },
)
async def export_settlements(
    kind: SettlementKind,
    month: str = Query(..., pattern=_MONTH_PATTERN, description="YYYY-MM"),
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> Response:
    content = await SettlementService(repo).export_month(kind, month, actor)
    filename = f"{kind.value}_settlements_{month}.xlsx"
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get(
    "/{kind}",
    response_model=SettlementListResponse,
    summary="List settlements",
)
async def list_settlements(
    kind: SettlementKind,
    status: Optional[SettlementStatus] = None,
    entity_id: Optional[int] = None,
    month: Optional[str] = Query(None, pattern=_MONTH_PATTERN, description="YYYY-MM"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_LIST_LIMIT),
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> SettlementListResponse:
    items, total = await SettlementService(repo).list_settlements(
        kind, actor, status=status, entity_id=entity_id, month=month, page=page, limit=limit
    )
    schema = _RESPONSE_SCHEMAS[kind]
    return SettlementListResponse(
        items=[schema.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.get(
    "/{kind}/{settlement_id}",
    response_model=Union[RiderSettlementDetailResponse, RestaurantSettlementDetailResponse],
    summary="Get a settlement with the delivered orders of its period",
)
async def get_settlement(
    kind: SettlementKind,
    settlement_id: int,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> Union[RiderSettlementDetailResponse, RestaurantSettlementDetailResponse]:
    settlement, lines = await SettlementService(repo).get_settlement_detail(kind, settlement_id, actor)
    summary = _RESPONSE_SCHEMAS[kind].model_validate(settlement)
    return _DETAIL_SCHEMAS[kind](
        **summary.model_dump(),
        orders=[SettlementOrderResponse.model_validate(line) for line in lines],
    )


@router.patch(
    "/{kind}/{settlement_id}",
    response_model=Union[RiderSettlementResponse, RestaurantSettlementResponse],
    summary="Change status, fuel reimbursement or notes",
    responses={409: {"description": "Leaving 'paid' without reopen"}},
)
async def update_settlement(
    kind: SettlementKind,
    settlement_id: int,
    body: SettlementUpdate,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> Union[RiderSettlementResponse, RestaurantSettlementResponse]:
    settlement = await SettlementService(repo).update_status(
        kind,
        settlement_id,
        actor,
        status=body.status,
        fuel_reimbursement_cents=body.fuel_reimbursement_cents,
        notes=body.notes,
        reopen=body.reopen,
    )
    return _RESPONSE_SCHEMAS[kind].model_validate(settlement)
