"""
Liquidation Service - paying out a restaurant's credit balance
"""
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from orderflow.core.config import settings
from orderflow.core.exceptions import (
    InsufficientPermissionError,
    LiquidationExistsError,
    NotFoundException,
    ValidationException,
)
from orderflow.core.logging import get_logger
from orderflow.db.models.credit import (
    AccountEntityType,
    CreditTransactionType,
    LiquidationMethod,
    RestaurantLiquidation,
)
from orderflow.db.models.restaurant import Restaurant
from orderflow.db.models.user import UserRole
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.business_calendar import business_today
from orderflow.domain.money import format_cents
from orderflow.domain.services.credit_ledger_service import CreditLedgerService

logger = get_logger(__name__)

LIQUIDATOR_ROLES = (UserRole.OWNER, UserRole.CITY_ADMIN, UserRole.AGENT)


class LiquidationService:
    def __init__(self, repo: Repository):
        self.repo = repo
        self.db = repo.db
        self.ledger = CreditLedgerService(repo)

    async def liquidate(
        self,
        restaurant_id: int,
        amount_cents: int,
        method: LiquidationMethod,
        actor: Actor,
        proof_url: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> RestaurantLiquidation:
        """
        Pay a restaurant and debit its account.

        At most one liquidation per restaurant per business day; payouts above
        LIQUIDATION_PROOF_THRESHOLD_CENTS need a proof URL; the balance must
        cover the amount.
        """
        if not actor.has_role(*LIQUIDATOR_ROLES):
            raise InsufficientPermissionError("liquidate restaurants", actor.role.value)
        if amount_cents <= 0:
            raise ValidationException("Amount must be positive", field="amount_cents")
        if amount_cents > settings.LIQUIDATION_PROOF_THRESHOLD_CENTS and not proof_url:
            raise ValidationException(
                f"Liquidations above {settings.LIQUIDATION_PROOF_THRESHOLD_CENTS} cents require a proof",
                field="proof_url",
            )

        restaurant = await self.repo.get(Restaurant, restaurant_id, for_update=True)
        if not restaurant:
            raise NotFoundException("Restaurant", restaurant_id)

        today = business_today()
        try:
            existing = await self.db.execute(
                select(RestaurantLiquidation.id).where(
                    RestaurantLiquidation.restaurant_id == restaurant_id,
                    RestaurantLiquidation.business_date == today,
                )
            )
            if existing.scalar_one_or_none() is not None:
                raise LiquidationExistsError(restaurant_id, today.isoformat())

            transaction = await self.ledger.post_to_entity(
                AccountEntityType.RESTAURANT,
                restaurant_id,
                CreditTransactionType.LIQUIDATION,
                -amount_cents,
                create_account=False,
                note=f"Liquidation of {format_cents(amount_cents)} via {method.value}",
                actor_user_id=actor.user_id,
            )
            liquidation = RestaurantLiquidation(
                restaurant_id=restaurant_id,
                amount_cents=amount_cents,
                method=method,
                proof_url=proof_url,
                notes=notes,
                business_date=today,
                transaction_id=transaction.id,
                created_by_user_id=actor.user_id,
            )
            self.repo.add(liquidation)
            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Liquidation failed",
                extra_data={"restaurant_id": restaurant_id, "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise
        except Exception:
            await self.repo.rollback()
            raise

        logger.info(
            "Restaurant liquidated",
            extra_data={
                "restaurant_id": restaurant_id,
                "amount_cents": amount_cents,
                "method": method.value,
                "balance_after": transaction.balance_after,
                **actor.log_context(),
            },
        )
        return liquidation

    async def list_liquidations(
        self,
        actor: Actor,
        restaurant_id: Optional[int] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[RestaurantLiquidation], int]:
        """Newest business day first; a restaurant sees only its own payouts"""
        if not (actor.has_role(*LIQUIDATOR_ROLES) or actor.role == UserRole.RESTAURANT):
            raise InsufficientPermissionError("view liquidations", actor.role.value)
        limit = max(1, min(limit, 100))
        page = max(1, page)

        base = self.repo.select(RestaurantLiquidation)
        if restaurant_id is not None:
            base = base.where(RestaurantLiquidation.restaurant_id == restaurant_id)
        total_result = await self.db.execute(select(func.count()).select_from(base.subquery()))
        result = await self.db.execute(
            base.order_by(RestaurantLiquidation.business_date.desc(), RestaurantLiquidation.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total_result.scalar() or 0
