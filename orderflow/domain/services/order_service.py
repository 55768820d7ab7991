"""
Order Service - checkout pricing and the order lifecycle

Every transition runs as one unit of work:
1. Lock the order row (SELECT ... FOR UPDATE)
2. Check the edge, the caller's role and the evidence the edge needs
3. Write status + milestone timestamp and append a history row
4. Maintain the rider's current-order soft reference
5. On delivery, reprice for the actual payment method and post credits
6. Commit, or roll everything back

A failure while posting credits leaves the order in_transit and surfaces as
CreditProcessingError so the rider can retry the delivery.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from orderflow.core.config import settings
from orderflow.core.exceptions import (
    AppException,
    CreditProcessingError,
    ErrorCode,
    InsufficientPermissionError,
    InvalidStateTransitionError,
    MissingEvidenceError,
    NotFoundException,
    OrderNotFoundError,
    ValidationException,
)
from orderflow.core.logging import get_logger
from orderflow.db.models.order import (
    Order,
    OrderStatus,
    OrderStatusHistory,
    PaymentMethod,
    RejectionReason,
)
from orderflow.db.models.restaurant import Restaurant
from orderflow.db.models.rider import Rider
from orderflow.db.models.user import UserRole
from orderflow.db.repository import Repository
from orderflow.db.soft_refs import RIDER_CURRENT_ORDER
from orderflow.domain.actor import Actor
from orderflow.domain.money import order_total, pos_surcharge
from orderflow.domain.services.delivery_credit_processor import DeliveryCreditProcessor
from orderflow.domain.services.fee_client import FeeCalculator, HttpFeeCalculator
from orderflow.domain.services.order_codes import OrderCodeGenerator, random_order_code
from orderflow.state_machine import (
    MILESTONE_TIMESTAMPS,
    TERMINAL_STATUSES,
    is_valid_transition,
    role_may_transition,
)

logger = get_logger(__name__)

_MAX_CODE_ATTEMPTS = 5

CREATOR_ROLES = (UserRole.CUSTOMER, UserRole.OWNER, UserRole.CITY_ADMIN, UserRole.AGENT)


@dataclass
class OrderItemInput:
    name: str
    quantity: int
    unit_price_cents: int
    commission_rate: Optional[Decimal] = None

    @property
    def total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


def service_fee_for(payment_method: PaymentMethod, subtotal_cents: int, delivery_fee_cents: int) -> int:
    """POS surcharge when enabled, otherwise no service fee"""
    if payment_method != PaymentMethod.POS or not settings.POS_SURCHARGE_ENABLED:
        return 0
    return pos_surcharge(
        subtotal_cents,
        delivery_fee_cents,
        settings.POS_COMMISSION_RATE,
        settings.POS_IGV_RATE,
    )


class OrderService:
    def __init__(
        self,
        repo: Repository,
        fee_calculator: Optional[FeeCalculator] = None,
        code_generator: OrderCodeGenerator = random_order_code,
    ):
        self.repo = repo
        self.db = repo.db
        self.fee_calculator = fee_calculator or HttpFeeCalculator()
        self.code_generator = code_generator
        self.processor = DeliveryCreditProcessor(repo)

    # ==================== Checkout ====================

    async def create_order(
        self,
        restaurant_id: int,
        items: list[OrderItemInput],
        payment_method: PaymentMethod,
        latitude: float,
        longitude: float,
        actor: Actor,
        discount_cents: int = 0,
        rider_bonus_cents: int = 0,
        customer_id: Optional[int] = None,
    ) -> Order:
        """
        Price and store a new order in pending_confirmation.

        Raises:
            InsufficientPermissionError: caller may not place orders
            ValidationException: empty or invalid items, bad discount, no coverage
            NotFoundException: restaurant missing or inactive
        """
        if not actor.has_role(*CREATOR_ROLES):
            raise InsufficientPermissionError("place orders", actor.role.value)
        if actor.role == UserRole.CUSTOMER:
            customer_id = actor.user_id
        if rider_bonus_cents and not actor.is_staff:
            raise InsufficientPermissionError("set rider bonuses", actor.role.value)

        if not items:
            raise ValidationException("An order needs at least one item", field="items")
        for item in items:
            if item.quantity < 1 or item.unit_price_cents < 0:
                raise ValidationException(f"Invalid quantity or price for '{item.name}'", field="items")
        if discount_cents < 0 or rider_bonus_cents < 0:
            raise ValidationException("Discount and bonus must not be negative", field="discount_cents")

        restaurant = await self.repo.elevate().get(Restaurant, restaurant_id)
        if not restaurant or not restaurant.is_active:
            raise NotFoundException("Restaurant", restaurant_id)

        quote = await self.fee_calculator.quote(restaurant_id, latitude, longitude)
        if not quote.has_coverage:
            raise ValidationException(
                "The delivery address is outside the coverage area",
                field="coordinates",
                details={"reason": "no_coverage"},
            )

        subtotal = sum(item.total_cents for item in items)
        if discount_cents > subtotal:
            raise ValidationException("Discount cannot exceed the subtotal", field="discount_cents")
        delivery_fee = quote.base_fee_cents
        service_fee = service_fee_for(payment_method, subtotal, delivery_fee)
        total, surplus = order_total(subtotal, delivery_fee, service_fee, discount_cents)

        code = await self._allocate_code()
        order = Order(
            code=code,
            status=OrderStatus.PENDING_CONFIRMATION,
            restaurant_id=restaurant.id,
            customer_id=customer_id,
            city_id=restaurant.city_id,
            zone_id=quote.zone_id,
            items=[self._item_json(item) for item in items],
            subtotal_cents=subtotal,
            delivery_fee_cents=delivery_fee,
            service_fee_cents=service_fee,
            discount_cents=discount_cents,
            total_cents=total,
            rounding_surplus_cents=surplus,
            rider_bonus_cents=rider_bonus_cents,
            payment_method=payment_method,
        )

        try:
            self.repo.add(order)
            await self.repo.flush()
            self.repo.add(OrderStatusHistory(
                order_id=order.id,
                from_status=None,
                to_status=OrderStatus.PENDING_CONFIRMATION,
                actor_user_id=actor.user_id,
            ))
            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Order creation failed",
                extra_data={"restaurant_id": restaurant_id, "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise

        logger.info(
            "Order created",
            extra_data={
                "order_id": order.id,
                "code": order.code,
                "restaurant_id": restaurant.id,
                "total_cents": total,
                "payment_method": payment_method.value,
                **actor.log_context(),
            },
        )
        return order

    @staticmethod
    def _item_json(item: OrderItemInput) -> dict:
        line = {
            "name": item.name,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "total_cents": item.total_cents,
        }
        if item.commission_rate is not None:
            line["commission_rate"] = str(item.commission_rate)
        return line

    async def _allocate_code(self) -> str:
        for _ in range(_MAX_CODE_ATTEMPTS):
            candidate = self.code_generator()
            exists = await self.db.execute(select(Order.id).where(Order.code == candidate))
            if exists.scalar_one_or_none() is None:
                return candidate
        raise AppException(
            "Could not allocate a unique order code",
            error_code=ErrorCode.ALREADY_EXISTS,
            status_code=503,
        )

    # ==================== Reads ====================

    async def get_order(self, order_id: int) -> Order:
        order = await self.repo.get(Order, order_id)
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    async def get_history(self, order_id: int) -> list[OrderStatusHistory]:
        await self.get_order(order_id)
        result = await self.db.execute(
            self.repo.select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.created_at.asc(), OrderStatusHistory.id.asc())
        )
        return list(result.scalars().all())

    # ==================== Lifecycle ====================

    async def transition(
        self,
        order_id: int,
        target: OrderStatus,
        actor: Actor,
        *,
        notes: Optional[str] = None,
        rejection_reason: Optional[RejectionReason] = None,
        rider_id: Optional[int] = None,
        delivery_proof_url: Optional[str] = None,
        payment_proof_url: Optional[str] = None,
        actual_payment_method: Optional[PaymentMethod] = None,
    ) -> Order:
        """
        Move an order to ``target``.

        Raises:
            OrderNotFoundError: unknown order, or not visible to the caller
            InvalidStateTransitionError: edge not in the lifecycle
            InsufficientPermissionError: caller's role may not drive the edge
            ValidationException: missing rejection reason / rider, busy rider
            MissingEvidenceError: delivery without the required proofs
            CreditProcessingError: credits could not be posted; nothing was saved
        """
        try:
            order = await self.repo.get(Order, order_id, for_update=True)
            if not order:
                raise OrderNotFoundError(order_id)

            current = order.status
            if not is_valid_transition(current, target):
                raise InvalidStateTransitionError(current.value, target.value, order.id)
            if not role_may_transition(actor.role, current, target):
                raise InsufficientPermissionError(
                    f"move orders from '{current.value}' to '{target.value}'", actor.role.value
                )

            if target == OrderStatus.REJECTED:
                self._apply_rejection(order, rejection_reason, notes)
            elif target == OrderStatus.ASSIGNED_RIDER:
                await self._assign_rider(order, rider_id)
            elif target == OrderStatus.DELIVERED:
                self._apply_delivery_evidence(order, delivery_proof_url, payment_proof_url, actual_payment_method)
            elif target == OrderStatus.CANCELLED:
                order.cancellation_reason = notes

            now = datetime.utcnow()
            order.status = target
            setattr(order, MILESTONE_TIMESTAMPS[target], now)
            self.repo.add(OrderStatusHistory(
                order_id=order.id,
                from_status=current,
                to_status=target,
                actor_user_id=actor.user_id,
                notes=notes,
            ))

            if target in TERMINAL_STATUSES:
                await self._release_rider(order)

            if target == OrderStatus.DELIVERED:
                try:
                    await self.processor.process(order)
                except Exception as e:
                    logger.error(
                        "Delivery credit processing failed, delivery aborted",
                        extra_data={"order_id": order.id, "error": str(e)},
                        exc_info=True,
                    )
                    raise CreditProcessingError(order_id, str(e)) from e

            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Order transition failed",
                extra_data={"order_id": order_id, "target": target.value, "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise
        except Exception:
            await self.repo.rollback()
            raise

        logger.info(
            "Order status changed",
            extra_data={
                "order_id": order.id,
                "from_status": current.value,
                "to_status": target.value,
                "rider_id": order.rider_id,
                **actor.log_context(),
            },
        )
        return order

    async def transition_current_order(self, target: OrderStatus, actor: Actor, **kwargs) -> Order:
        """Apply a transition to the order the calling rider is currently carrying"""
        if actor.role != UserRole.RIDER or actor.rider_id is None:
            raise InsufficientPermissionError("drive a current order", actor.role.value)

        rider = await self.repo.get(Rider, actor.rider_id)
        if not rider:
            raise NotFoundException("Rider", actor.rider_id)

        current = await RIDER_CURRENT_ORDER.resolve(rider, self.repo)
        if not current.is_set:
            raise NotFoundException("Current order", rider.id)
        if current.dangling:
            logger.warning(
                "Rider current order reference is dangling",
                extra_data={"rider_id": rider.id, "current_order_id": current.key},
            )
            raise OrderNotFoundError(current.key)

        return await self.transition(current.key, target, actor, **kwargs)

    @staticmethod
    def _apply_rejection(order: Order, reason: Optional[RejectionReason], notes: Optional[str]) -> None:
        if reason is None:
            raise ValidationException("A rejection reason is required", field="rejection_reason")
        if reason == RejectionReason.OTHER and not (notes or "").strip():
            raise ValidationException("Rejections for 'other' need notes", field="notes")
        order.rejection_reason = reason
        order.rejection_notes = notes

    async def _assign_rider(self, order: Order, rider_id: Optional[int]) -> None:
        if rider_id is None:
            raise ValidationException("A rider is required", field="rider_id")

        elevated = self.repo.elevate()
        rider = await elevated.get(Rider, rider_id, for_update=True)
        if not rider or not rider.is_active:
            raise NotFoundException("Rider", rider_id)

        busy = await RIDER_CURRENT_ORDER.resolve(rider, elevated)
        if busy.dangling:
            logger.warning(
                "Overwriting dangling current order reference",
                extra_data={"rider_id": rider.id, "current_order_id": busy.key},
            )
        elif busy.is_set and busy.target.id != order.id and busy.target.status not in TERMINAL_STATUSES:
            raise ValidationException(
                f"Rider {rider.id} is already carrying order {busy.target.id}",
                field="rider_id",
            )

        order.rider_id = rider.id
        RIDER_CURRENT_ORDER.assign(rider, order)

    async def _release_rider(self, order: Order) -> None:
        if order.rider_id is None:
            return
        rider = await self.repo.elevate().get(Rider, order.rider_id, for_update=True)
        if rider and RIDER_CURRENT_ORDER.key_of(rider) == order.id:
            RIDER_CURRENT_ORDER.assign(rider, None)

    @staticmethod
    def _apply_delivery_evidence(
        order: Order,
        delivery_proof_url: Optional[str],
        payment_proof_url: Optional[str],
        actual_payment_method: Optional[PaymentMethod],
    ) -> None:
        actual = actual_payment_method or order.payment_method
        if not delivery_proof_url:
            raise MissingEvidenceError(order.id, "a delivery proof")
        if actual != PaymentMethod.CASH and not payment_proof_url:
            raise MissingEvidenceError(order.id, f"a payment proof for '{actual.value}'")

        order.delivery_proof_url = delivery_proof_url
        order.payment_proof_url = payment_proof_url
        order.actual_payment_method = actual

        if actual != order.payment_method:
            # Service fee follows the method actually used
            service_fee = service_fee_for(actual, order.subtotal_cents, order.delivery_fee_cents)
            total, surplus = order_total(
                order.subtotal_cents, order.delivery_fee_cents, service_fee, order.discount_cents
            )
            logger.info(
                "Order repriced for actual payment method",
                extra_data={
                    "order_id": order.id,
                    "declared": order.payment_method.value,
                    "actual": actual.value,
                    "old_total_cents": order.total_cents,
                    "new_total_cents": total,
                },
            )
            order.service_fee_cents = service_fee
            order.total_cents = total
            order.rounding_surplus_cents = surplus
