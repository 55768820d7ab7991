"""
Rider self-service routes
"""
from fastapi import APIRouter, Depends

from orderflow.api.dependencies.auth import get_repository, require_roles
from orderflow.api.routes.orders import OrderResponse, TransitionRequest
from orderflow.db.models.order import OrderStatus
from orderflow.db.models.user import UserRole
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.services.order_service import OrderService

router = APIRouter()


@router.post(
    "/current-order/transition",
    response_model=OrderResponse,
    summary="Move the order the rider is currently carrying",
    responses={
        404: {"description": "No current order, or the reference points at a missing order"},
        409: {"description": "Transition not allowed from the current status"},
        503: {"description": "Credits could not be posted, retry"},
    },
)
async def transition_current_order(
    body: TransitionRequest,
    actor: Actor = Depends(require_roles(UserRole.RIDER)),
    repo: Repository = Depends(get_repository),
) -> OrderResponse:
    service = OrderService(repo)
    return await service.transition_current_order(OrderStatus(body.status), actor, **body.service_kwargs())
