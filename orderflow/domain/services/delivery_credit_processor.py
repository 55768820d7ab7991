"""
Delivery Credit Processor - the ledger postings produced by one delivered order

Postings per order:
1. Restaurant: order_credit +subtotal, order_commission_debit -commission
   (flat rate over the subtotal, or per-item rates in per_item mode).
2. Commission rider: order_delivery_credit +floor(delivery_fee × rate); the
   flooring residue is the platform's. Fixed-salary riders get nothing here.
3. Commission rider holding the money (rider-held method, cash by default):
   order_food_debit -subtotal and order_commission_debit -delivery_fee. Net of
   the delivery credit the rider owes subtotal + the platform's share.

``process`` runs inside the caller's transaction and never commits; the order
status change and these postings succeed or fail together. It is idempotent:
an order whose credits_processed_at is set is returned as-is, and the unique
(account, order, type) constraint rejects any duplicate that slips past.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from orderflow.core.config import settings
from orderflow.core.exceptions import (
    InsufficientPermissionError,
    NotFoundException,
    OrderNotFoundError,
    ValidationException,
)
from orderflow.core.logging import get_logger
from orderflow.db.models.credit import AccountEntityType, CreditTransaction, CreditTransactionType
from orderflow.db.models.order import Order, OrderStatus
from orderflow.db.models.restaurant import CommissionMode, Restaurant
from orderflow.db.models.rider import Rider
from orderflow.db.models.user import UserRole
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.money import floor_share, split_delivery_fee
from orderflow.domain.services.credit_ledger_service import CreditLedgerService

logger = get_logger(__name__)

REPROCESS_ROLES = (UserRole.OWNER, UserRole.CITY_ADMIN)


@dataclass
class DeliveryCreditResult:
    order_id: int
    restaurant_commission_cents: int
    rider_delivery_credit_cents: int
    platform_delivery_share_cents: int
    already_processed: bool = False
    transactions: list[CreditTransaction] = field(default_factory=list)


def restaurant_commission_cents(order: Order, restaurant: Restaurant) -> int:
    """floor(subtotal × rate), or Σ floor(line total × line rate) in per-item mode"""
    if restaurant.commission_mode == CommissionMode.PER_ITEM and order.items:
        total = 0
        for item in order.items:
            rate = item.get("commission_rate")
            if rate is None:
                rate = restaurant.commission_rate
            total += floor_share(int(item.get("total_cents", 0)), rate)
        return total
    return floor_share(order.subtotal_cents, restaurant.commission_rate)


class DeliveryCreditProcessor:
    """Posts the credit movements of a delivered order exactly once"""

    def __init__(self, repo: Repository):
        # Touches restaurant and rider accounts regardless of who delivered
        self.repo = repo.elevate()
        self.ledger = CreditLedgerService(self.repo)

    async def process(self, order: Order) -> DeliveryCreditResult:
        """Post this order's credits within the caller's transaction"""
        if order.status != OrderStatus.DELIVERED:
            raise ValidationException(
                f"Order {order.id} is '{order.status.value}', credits are posted on delivery",
                field="status",
            )

        if order.credits_processed_at is not None:
            logger.info(
                "Delivery credits already processed, skipping",
                extra_data={"order_id": order.id, "processed_at": order.credits_processed_at},
            )
            return DeliveryCreditResult(
                order_id=order.id,
                restaurant_commission_cents=order.restaurant_commission_cents or 0,
                rider_delivery_credit_cents=order.rider_delivery_credit_cents or 0,
                platform_delivery_share_cents=order.platform_delivery_share_cents or 0,
                already_processed=True,
            )

        restaurant = await self.repo.get(Restaurant, order.restaurant_id)
        if not restaurant:
            raise NotFoundException("Restaurant", order.restaurant_id)
        rider: Optional[Rider] = None
        if order.rider_id is not None:
            rider = await self.repo.get(Rider, order.rider_id)
            if not rider:
                raise NotFoundException("Rider", order.rider_id)

        transactions: list[CreditTransaction] = []
        note = f"Order {order.code}"

        # 1. Restaurant
        commission = restaurant_commission_cents(order, restaurant)
        if order.subtotal_cents > 0:
            transactions.append(await self.ledger.post_to_entity(
                AccountEntityType.RESTAURANT, restaurant.id,
                CreditTransactionType.ORDER_CREDIT, order.subtotal_cents,
                order_id=order.id, note=note,
            ))
        if commission > 0:
            transactions.append(await self.ledger.post_to_entity(
                AccountEntityType.RESTAURANT, restaurant.id,
                CreditTransactionType.ORDER_COMMISSION_DEBIT, -commission,
                order_id=order.id, note=note,
            ))

        # 2. Delivery fee split
        if rider is not None and rider.is_commission_paid:
            rider_share, platform_share = split_delivery_fee(order.delivery_fee_cents, rider.commission_rate)
        else:
            rider_share, platform_share = 0, order.delivery_fee_cents

        if rider is not None and rider.is_commission_paid:
            if rider_share > 0:
                transactions.append(await self.ledger.post_to_entity(
                    AccountEntityType.RIDER, rider.id,
                    CreditTransactionType.ORDER_DELIVERY_CREDIT, rider_share,
                    order_id=order.id, note=note,
                ))

            # 3. Money the rider kept on behalf of the restaurant and platform
            method = order.effective_payment_method
            if method.value in settings.rider_held_payment_methods:
                if order.subtotal_cents > 0:
                    transactions.append(await self.ledger.post_to_entity(
                        AccountEntityType.RIDER, rider.id,
                        CreditTransactionType.ORDER_FOOD_DEBIT, -order.subtotal_cents,
                        order_id=order.id, note=note,
                    ))
                if order.delivery_fee_cents > 0:
                    transactions.append(await self.ledger.post_to_entity(
                        AccountEntityType.RIDER, rider.id,
                        CreditTransactionType.ORDER_COMMISSION_DEBIT, -order.delivery_fee_cents,
                        order_id=order.id, note=note,
                    ))

        order.restaurant_commission_cents = commission
        order.rider_delivery_credit_cents = rider_share
        order.platform_delivery_share_cents = platform_share
        order.credits_processed_at = datetime.utcnow()
        await self.repo.flush()

        logger.info(
            "Delivery credits processed",
            extra_data={
                "order_id": order.id,
                "restaurant_id": restaurant.id,
                "rider_id": rider.id if rider else None,
                "restaurant_commission_cents": commission,
                "rider_delivery_credit_cents": rider_share,
                "platform_delivery_share_cents": platform_share,
                "transactions": len(transactions),
            },
        )
        return DeliveryCreditResult(
            order_id=order.id,
            restaurant_commission_cents=commission,
            rider_delivery_credit_cents=rider_share,
            platform_delivery_share_cents=platform_share,
            transactions=transactions,
        )

    async def reprocess(self, order_id: int, actor: Actor) -> DeliveryCreditResult:
        """
        Standalone entry for a delivered order: lock, process, commit.

        Backfills an order delivered without its postings. An order already
        processed comes back with already_processed set.
        """
        if not actor.has_role(*REPROCESS_ROLES):
            raise InsufficientPermissionError("reprocess delivery credits", actor.role.value)

        try:
            order = await self.repo.get(Order, order_id, for_update=True)
            if not order:
                raise OrderNotFoundError(order_id)
            result = await self.process(order)
            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Delivery credit reprocessing failed",
                extra_data={"order_id": order_id, "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise
        except Exception:
            await self.repo.rollback()
            raise

        logger.info(
            "Delivery credits reprocessed",
            extra_data={
                "order_id": order_id,
                "already_processed": result.already_processed,
                **actor.log_context(),
            },
        )
        return result
