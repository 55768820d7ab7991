"""
FastAPI dependencies: the authenticated Actor and the per-request Repository

Usage:
    @router.post("/{order_id}/transition")
    async def transition(
        actor: Actor = Depends(get_current_actor),
        repo: Repository = Depends(get_repository),
    ):
        ...

The repository is elevated for staff and row-scoped for riders, restaurants
and customers (see orderflow.db.repository).
"""
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.auth import verify_token
from orderflow.core.exceptions import InsufficientPermissionError
from orderflow.core.logging import get_logger
from orderflow.db.database import get_db
from orderflow.db.models.user import User, UserRole
from orderflow.db.repository import Repository, repository_for
from orderflow.domain.actor import Actor
from orderflow.domain.services.fee_client import FeeCalculator, HttpFeeCalculator

logger = get_logger(__name__)

security = HTTPBearer()


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """
    Verify the bearer token and check the user is still active.

    Raises 401 for an invalid token and 403 for an inactive user or a
    rider/restaurant token that does not name its entity.
    """
    token_data = verify_token(credentials.credentials)
    if not token_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    try:
        role = UserRole(token_data.role)
    except ValueError:
        logger.warning(
            "Token carries unknown role",
            extra_data={"user_id": token_data.user_id, "role": token_data.role},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    result = await db.execute(select(User).where(User.id == token_data.user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        logger.warning(
            "Access denied, user inactive",
            extra_data={
                "user_id": token_data.user_id,
                "user_found": user is not None,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active",
        )

    if role == UserRole.RIDER and token_data.rider_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Rider token without rider_id")
    if role == UserRole.RESTAURANT and token_data.restaurant_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Restaurant token without restaurant_id")

    return Actor(
        user_id=user.id,
        role=role,
        rider_id=token_data.rider_id,
        restaurant_id=token_data.restaurant_id,
    )


async def get_repository(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> Repository:
    return repository_for(db, actor)


def require_roles(*roles: UserRole) -> Callable:
    """Dependency factory: the current actor, restricted to ``roles``"""
    async def _dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.has_role(*roles):
            raise InsufficientPermissionError("access this endpoint", actor.role.value)
        return actor
    return _dependency


def get_fee_calculator() -> FeeCalculator:
    return HttpFeeCalculator()
