"""
Order API Routes
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator

from orderflow.api.dependencies.auth import get_current_actor, get_fee_calculator, get_repository
from orderflow.core.logging import get_logger
from orderflow.db.models.order import OrderStatus, PaymentMethod, RejectionReason
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.services.delivery_credit_processor import DeliveryCreditProcessor
from orderflow.domain.services.fee_client import FeeCalculator
from orderflow.domain.services.order_service import OrderItemInput, OrderService

logger = get_logger(__name__)

router = APIRouter()


# ==================== Requests ====================


class OrderItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    quantity: int = Field(..., ge=1, le=100)
    unit_price_cents: int = Field(..., ge=0)
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Item name must not be blank")
        return v


class OrderCreate(BaseModel):
    """Checkout request; money in cents"""
    restaurant_id: int
    items: List[OrderItemCreate] = Field(..., min_length=1)
    payment_method: PaymentMethod
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    discount_cents: int = Field(0, ge=0)
    rider_bonus_cents: int = Field(0, ge=0)
    customer_id: Optional[int] = None


class _TransitionBase(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)

    def service_kwargs(self) -> dict:
        return {"notes": self.notes}


class StepTransition(_TransitionBase):
    """Edges that carry no payload beyond optional notes"""
    status: Literal["confirmed", "preparing", "ready", "picked_up", "in_transit", "cancelled"]


class RejectTransition(_TransitionBase):
    status: Literal["rejected"]
    rejection_reason: Optional[RejectionReason] = None

    def service_kwargs(self) -> dict:
        return {"notes": self.notes, "rejection_reason": self.rejection_reason}


class AssignRiderTransition(_TransitionBase):
    status: Literal["assigned_rider"]
    rider_id: Optional[int] = None

    def service_kwargs(self) -> dict:
        return {"notes": self.notes, "rider_id": self.rider_id}


class DeliverTransition(_TransitionBase):
    status: Literal["delivered"]
    delivery_proof_url: Optional[str] = Field(None, max_length=2000)
    payment_proof_url: Optional[str] = Field(None, max_length=2000)
    actual_payment_method: Optional[PaymentMethod] = None

    def service_kwargs(self) -> dict:
        return {
            "notes": self.notes,
            "delivery_proof_url": self.delivery_proof_url,
            "payment_proof_url": self.payment_proof_url,
            "actual_payment_method": self.actual_payment_method,
        }


TransitionRequest = Annotated[
    Union[StepTransition, RejectTransition, AssignRiderTransition, DeliverTransition],
    Field(discriminator="status"),
]


# ==================== Responses ====================


class OrderResponse(BaseModel):
    id: int
    code: str
    status: OrderStatus
    restaurant_id: int
    rider_id: Optional[int]
    customer_id: Optional[int]
    zone_id: Optional[str]
    items: list
    subtotal_cents: int
    delivery_fee_cents: int
    service_fee_cents: int
    discount_cents: int
    total_cents: int
    rounding_surplus_cents: int
    rider_bonus_cents: int
    payment_method: PaymentMethod
    actual_payment_method: Optional[PaymentMethod]
    rejection_reason: Optional[RejectionReason]
    restaurant_commission_cents: Optional[int]
    rider_delivery_credit_cents: Optional[int]
    platform_delivery_share_cents: Optional[int]
    credits_processed_at: Optional[datetime]
    created_at: Optional[datetime]
    delivered_at: Optional[datetime]

    model_config = {"from_attributes": True}


class OrderHistoryEntry(BaseModel):
    from_status: Optional[OrderStatus]
    to_status: OrderStatus
    actor_user_id: Optional[int]
    notes: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class DeliveryCreditsResponse(BaseModel):
    order_id: int
    restaurant_commission_cents: int
    rider_delivery_credit_cents: int
    platform_delivery_share_cents: int
    already_processed: bool
    transactions_posted: int


# ==================== Endpoints ====================


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    responses={
        400: {"description": "Invalid items, discount, or address without coverage"},
        404: {"description": "Restaurant not found"},
        503: {"description": "Fee service unavailable"},
    },
)
async def create_order(
    order_data: OrderCreate,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
    fee_calculator: FeeCalculator = Depends(get_fee_calculator),
) -> OrderResponse:
    service = OrderService(repo, fee_calculator=fee_calculator)
    order = await service.create_order(
        restaurant_id=order_data.restaurant_id,
        items=[OrderItemInput(**item.model_dump()) for item in order_data.items],
        payment_method=order_data.payment_method,
        latitude=order_data.latitude,
        longitude=order_data.longitude,
        actor=actor,
        discount_cents=order_data.discount_cents,
        rider_bonus_cents=order_data.rider_bonus_cents,
        customer_id=order_data.customer_id,
    )
    return order


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order by ID",
    responses={404: {"description": "Order not found or not visible to the caller"}},
)
async def get_order(
    order_id: int,
    repo: Repository = Depends(get_repository),
) -> OrderResponse:
    return await OrderService(repo).get_order(order_id)


@router.get(
    "/{order_id}/history",
    response_model=List[OrderHistoryEntry],
    summary="Status history of an order",
)
async def get_order_history(
    order_id: int,
    repo: Repository = Depends(get_repository),
) -> List[OrderHistoryEntry]:
    return await OrderService(repo).get_history(order_id)


@router.post(
    "/{order_id}/transition",
    response_model=OrderResponse,
    summary="Move an order to a new status",
    description=(
        "The body is discriminated by `status`: `rejected` takes a rejection_reason, "
        "`assigned_rider` a rider_id, `delivered` the proof URLs and the actual payment method."
    ),
    responses={
        400: {"description": "Missing evidence or invalid input"},
        403: {"description": "Caller's role may not drive this transition"},
        404: {"description": "Order not found"},
        409: {"description": "Transition not allowed from the current status"},
        503: {"description": "Credits could not be posted, retry"},
    },
)
async def transition_order(
    order_id: int,
    body: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> OrderResponse:
    service = OrderService(repo)
    return await service.transition(order_id, OrderStatus(body.status), actor, **body.service_kwargs())


@router.post(
    "/{order_id}/credits/reprocess",
    response_model=DeliveryCreditsResponse,
    summary="Post a delivered order's credits if they are missing",
    responses={
        400: {"description": "Order is not delivered"},
        403: {"description": "Owner or city admin only"},
        404: {"description": "Order not found"},
    },
)
async def reprocess_order_credits(
    order_id: int,
    actor: Actor = Depends(get_current_actor),
    repo: Repository = Depends(get_repository),
) -> DeliveryCreditsResponse:
    result = await DeliveryCreditProcessor(repo).reprocess(order_id, actor)
    return DeliveryCreditsResponse(
        order_id=result.order_id,
        restaurant_commission_cents=result.restaurant_commission_cents,
        rider_delivery_credit_cents=result.rider_delivery_credit_cents,
        platform_delivery_share_cents=result.platform_delivery_share_cents,
        already_processed=result.already_processed,
        transactions_posted=len(result.transactions),
    )
