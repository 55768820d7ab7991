"""
Daily cash report API Routes
"""
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from orderflow.api.dependencies.auth import get_current_actor, get_repository
from orderflow.db.models.daily_cash_report import CashReportStatus
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.services.cash_reconciliation_service import CashReconciliationService

router = APIRouter()


class CashDeclaration(BaseModel):
    declared_cash_cents: int = Field(..., ge=0)
    declared_pos_cents: int = Field(0, ge=0)
    declared_digital_cents: int = Field(0, ge=0)
    report_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=1000)


class CashReview(BaseModel):
    status: CashReportStatus
    review_notes: Optional[str] = Field(None, max_length=1000)


class ReconciliationResponse(BaseModel):
    rider_id: int
    report_date: date
    delivered_orders: int
    expected_cash_cents: int
    expected_pos_cents: int
    expected_digital_cents: int
    declared_cash_cents: int
    declared_pos_cents: int
    declared_digital_cents: int
    discrepancy_cents: int
    is_flagged: bool
    tolerance_cents: int

    model_config = {"from_attributes": True}


class CashReportResponse(BaseModel):
    id: int
    rider_id: int
    report_date: date
    declared_cash_cents: int
    declared_pos_cents: int
    declared_digital_cents: int
    expected_cash_cents: int
    expected_pos_cents: int
    expected_digital_cents: int
    delivered_orders: int
    discrepancy_cents: int
    is_flagged: bool
    status: CashReportStatus
    notes: Optional[str]
    submitted_at: Optional[datetime]
    reviewed_by_user_id: Optional[int]
    reviewed_at: Optional[datetime]
    review_notes: Optional[str]

    model_config = {"from_attributes": True}


class CashReportListResponse(BaseModel):
    items: List[CashReportResponse]
    total: int
    page: int
    limit: int


@router.get(
    "/reconcile",
    response_model=ReconciliationResponse,
    summary="Compare declared against expected collections (nothing is stored)",
)
async def reconcile(
    rider_id: int,
    report_date: date,
    declared_cash_cents: int = Query(0, ge=0),
    declared_pos_cents: int = Query(0, ge=0),
    declared_digital_cents: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> ReconciliationResponse:
    result = await CashReconciliationService(repo).reconcile(
        rider_id,
        report_date,
        actor,
        declared_cash_cents=declared_cash_cents,
        declared_pos_cents=declared_pos_cents,
        declared_digital_cents=declared_digital_cents,
    )
    return ReconciliationResponse.model_validate(result)


@router.get(
    "",
    response_model=CashReportListResponse,
    summary="List daily cash reports",
)
async def list_reports(
    report_date: Optional[date] = None,
    status: Optional[CashReportStatus] = None,
    rider_id: Optional[int] = None,
    flagged: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> CashReportListResponse:
    items, total = await CashReconciliationService(repo).list_reports(
        actor,
        report_date=report_date,
        status=status,
        rider_id=rider_id,
        flagged=flagged,
        page=page,
        limit=limit,
    )
    return CashReportListResponse(
        items=[CashReportResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{report_id}", response_model=CashReportResponse, summary="Get a daily cash report")
async def get_report(
    report_id: int,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> CashReportResponse:
    return await CashReconciliationService(repo).get_report(report_id, actor)


@router.put(
    "",
    response_model=CashReportResponse,
    summary="Create or update the rider's draft report for a day",
    responses={409: {"description": "The day's report was already submitted"}},
)
async def declare(
    body: CashDeclaration,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> CashReportResponse:
    return await CashReconciliationService(repo).declare(
        actor,
        body.declared_cash_cents,
        body.declared_pos_cents,
        body.declared_digital_cents,
        report_date=body.report_date,
        notes=body.notes,
    )


@router.post(
    "/{report_id}/submit",
    response_model=CashReportResponse,
    summary="Submit a draft report for review",
)
async def submit(
    report_id: int,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> CashReportResponse:
    return await CashReconciliationService(repo).submit(report_id, actor)


@router.patch(
    "/{report_id}",
    response_model=CashReportResponse,
    summary="Approve or reject a submitted report",
)
async def review(
    report_id: int,
    body: CashReview,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> CashReportResponse:
    return await CashReconciliationService(repo).review(
        report_id, body.status, actor, review_notes=body.review_notes
    )
