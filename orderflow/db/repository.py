"""
Repository / unit of work over one AsyncSession.

Every domain service receives a Repository instead of reaching for a global
client. Two implementations exist:

* ElevatedRepository: unrestricted reads, used for platform staff and for
  internal processing (delivery credits, settlement aggregation).
* ScopedRepository: row-level filtering by the caller; a rider only sees its
  own orders, account, reports and settlements, a restaurant only its own.

``repository_for`` picks one from the caller's role. A scoped repository can
hand out ``elevate()`` for system-side work that must touch other entities'
rows; the elevated copy shares the same session and transaction.
"""
from typing import Any, Optional, TypeVar

from sqlalchemy import select, false
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from orderflow.db.models.order import Order, OrderStatusHistory
from orderflow.db.models.rider import Rider
from orderflow.db.models.restaurant import Restaurant
from orderflow.db.models.credit import (
    AccountEntityType,
    CreditAccount,
    CreditTransaction,
    RestaurantLiquidation,
)
from orderflow.db.models.settlement import RiderSettlement, RestaurantSettlement
from orderflow.db.models.daily_cash_report import DailyCashReport
from orderflow.db.models.user import UserRole
from orderflow.domain.actor import Actor

M = TypeVar("M")


class Repository:
    """Unit of work: scoped reads plus add/flush/commit/rollback on one session"""

    elevated = False

    def __init__(self, db: AsyncSession):
        self.db = db

    def _scope(self, model: Any, query: Select) -> Select:
        return query

    def select(self, model: Any) -> Select:
        """SELECT over ``model`` with the caller's row filter applied"""
        return self._scope(model, select(model))

    async def get(self, model: type[M], ident: Any, *, for_update: bool = False) -> Optional[M]:
        query = self.select(model).where(model.id == ident)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def lookup(self, model: type[M], key: Any) -> Optional[M]:
        """Soft-reference resolution entry point (see orderflow.db.soft_refs)"""
        if key is None:
            return None
        return await self.get(model, key)

    async def get_account(
        self,
        entity_type: AccountEntityType,
        entity_id: int,
        *,
        for_update: bool = False,
    ) -> Optional[CreditAccount]:
        query = self.select(CreditAccount).where(
            CreditAccount.entity_type == entity_type,
            CreditAccount.entity_id == entity_id,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    def add(self, instance: Any) -> None:
        self.db.add(instance)

    async def flush(self) -> None:
        await self.db.flush()

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    async def refresh(self, instance: Any) -> None:
        await self.db.refresh(instance)

    def elevate(self) -> "ElevatedRepository":
        return ElevatedRepository(self.db)


class ElevatedRepository(Repository):
    """No row filtering"""

    elevated = True

    def elevate(self) -> "ElevatedRepository":
        return self


class ScopedRepository(Repository):
    """Row-level filtering by the acting rider / restaurant / customer"""

    def __init__(self, db: AsyncSession, actor: Actor):
        super().__init__(db)
        self.actor = actor

    def _scope(self, model: Any, query: Select) -> Select:
        actor = self.actor

        if model is Order:
            if actor.role == UserRole.RIDER:
                return query.where(Order.rider_id == actor.rider_id)
            if actor.role == UserRole.RESTAURANT:
                return query.where(Order.restaurant_id == actor.restaurant_id)
            return query.where(Order.customer_id == actor.user_id)

        if model is OrderStatusHistory:
            return query.where(OrderStatusHistory.order_id.in_(self.select(Order).with_only_columns(Order.id)))

        if model is CreditAccount:
            entity = self._own_entity()
            if entity is None:
                return query.where(false())
            return query.where(CreditAccount.entity_type == entity[0], CreditAccount.entity_id == entity[1])

        if model is CreditTransaction:
            own_accounts = self.select(CreditAccount).with_only_columns(CreditAccount.id)
            return query.where(CreditTransaction.account_id.in_(own_accounts))

        if model is Rider:
            return query.where(Rider.id == actor.rider_id) if actor.role == UserRole.RIDER else query.where(false())

        if model in (DailyCashReport, RiderSettlement):
            if actor.role != UserRole.RIDER:
                return query.where(false())
            return query.where(model.rider_id == actor.rider_id)

        if model in (RestaurantSettlement, RestaurantLiquidation):
            if actor.role != UserRole.RESTAURANT:
                return query.where(false())
            return query.where(model.restaurant_id == actor.restaurant_id)

        if model is Restaurant and actor.role == UserRole.RESTAURANT:
            return query.where(Restaurant.id == actor.restaurant_id)

        # Remaining tables (restaurant directory, recharge codes looked up by
        # their secret code) are not entity-owned
        return query

    def _own_entity(self) -> Optional[tuple[AccountEntityType, int]]:
        if self.actor.role == UserRole.RIDER and self.actor.rider_id is not None:
            return AccountEntityType.RIDER, self.actor.rider_id
        if self.actor.role == UserRole.RESTAURANT and self.actor.restaurant_id is not None:
            return AccountEntityType.RESTAURANT, self.actor.restaurant_id
        return None


def repository_for(db: AsyncSession, actor: Actor) -> Repository:
    """Elevated for platform staff, row-scoped for everyone else"""
    if actor.is_staff:
        return ElevatedRepository(db)
    return ScopedRepository(db, actor)
