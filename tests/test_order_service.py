"""
Unit tests for OrderService - checkout pricing and lifecycle transitions
"""
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from orderflow.core.config import settings
from orderflow.core.exceptions import (
    AppException,
    CreditProcessingError,
    InsufficientPermissionError,
    InvalidStateTransitionError,
    MissingEvidenceError,
    NotFoundException,
    OrderNotFoundError,
    ValidationException,
)
from orderflow.db.models.credit import CreditTransaction
from orderflow.db.models.order import Order, OrderStatus, PaymentMethod, RejectionReason
from orderflow.db.models.rider import Rider
from orderflow.db.models.user import UserRole
from orderflow.db.repository import repository_for
from orderflow.domain.services.order_service import OrderItemInput, OrderService


@pytest.fixture
def service_for(db_session, fee_calculator):
    """OrderService bound to the repository an actor would get"""
    def _service_for(actor, **kwargs) -> OrderService:
        return OrderService(repository_for(db_session, actor), fee_calculator, **kwargs)
    return _service_for


@pytest.fixture
def items():
    return [OrderItemInput(name="Ceviche mixto", quantity=2, unit_price_cents=1500)]


@pytest.fixture
def ready_order(restaurant_factory, order_factory):
    async def _ready_order(**kwargs) -> Order:
        restaurant = await restaurant_factory()
        return await order_factory(restaurant.id, status=OrderStatus.READY, **kwargs)
    return _ready_order


class TestCreateOrder:

    @pytest.mark.unit
    async def test_prices_order_and_records_history(self, db_session, service_for, customer, restaurant_factory, items, fee_calculator):
        restaurant = await restaurant_factory()

        order = await service_for(customer).create_order(
            restaurant.id, items, PaymentMethod.CASH, -12.05, -77.04, customer
        )

        assert order.status == OrderStatus.PENDING_CONFIRMATION
        assert order.code.startswith("OF-")
        assert order.subtotal_cents == 3000
        assert order.delivery_fee_cents == 800
        assert order.service_fee_cents == 0
        assert order.total_cents == 3800
        assert order.rounding_surplus_cents == 0
        assert order.customer_id == customer.user_id
        assert order.zone_id == "Z-CENTRO"
        assert fee_calculator.calls == [(restaurant.id, -12.05, -77.04)]

        history = await service_for(customer).get_history(order.id)
        assert [(h.from_status, h.to_status) for h in history] == [(None, OrderStatus.PENDING_CONFIRMATION)]

    @pytest.mark.unit
    async def test_discount_rounds_total_up(self, service_for, owner, restaurant_factory, items):
        restaurant = await restaurant_factory()

        order = await service_for(owner).create_order(
            restaurant.id, items, PaymentMethod.YAPE, 0, 0, owner, discount_cents=35
        )

        assert order.total_cents == 3770
        assert order.rounding_surplus_cents == 5

    @pytest.mark.unit
    async def test_pos_surcharge_when_enabled(self, service_for, owner, restaurant_factory):
        restaurant = await restaurant_factory()
        items = [OrderItemInput(name="Parrilla", quantity=1, unit_price_cents=4555)]

        with patch.object(settings, "POS_SURCHARGE_ENABLED", True):
            order = await service_for(owner).create_order(restaurant.id, items, PaymentMethod.POS, 0, 0, owner)

        assert order.service_fee_cents == 290
        assert order.total_cents == 5650
        assert order.rounding_surplus_cents == 5

    @pytest.mark.unit
    async def test_pos_without_surcharge(self, service_for, owner, restaurant_factory, items):
        restaurant = await restaurant_factory()
        order = await service_for(owner).create_order(restaurant.id, items, PaymentMethod.POS, 0, 0, owner)
        assert order.service_fee_cents == 0

    @pytest.mark.unit
    async def test_no_coverage(self, service_for, owner, restaurant_factory, items, fee_calculator):
        restaurant = await restaurant_factory()
        fee_calculator.has_coverage = False

        with pytest.raises(ValidationException) as exc_info:
            await service_for(owner).create_order(restaurant.id, items, PaymentMethod.CASH, 0, 0, owner)
        assert exc_info.value.details["reason"] == "no_coverage"

    @pytest.mark.unit
    async def test_empty_items(self, service_for, owner, restaurant_factory):
        restaurant = await restaurant_factory()
        with pytest.raises(ValidationException):
            await service_for(owner).create_order(restaurant.id, [], PaymentMethod.CASH, 0, 0, owner)

    @pytest.mark.unit
    async def test_discount_above_subtotal(self, service_for, owner, restaurant_factory, items):
        restaurant = await restaurant_factory()
        with pytest.raises(ValidationException):
            await service_for(owner).create_order(
                restaurant.id, items, PaymentMethod.CASH, 0, 0, owner, discount_cents=3001
            )

    @pytest.mark.unit
    async def test_inactive_restaurant(self, service_for, owner, restaurant_factory, items):
        restaurant = await restaurant_factory(is_active=False)
        with pytest.raises(NotFoundException):
            await service_for(owner).create_order(restaurant.id, items, PaymentMethod.CASH, 0, 0, owner)

    @pytest.mark.unit
    async def test_customer_cannot_set_rider_bonus(self, service_for, customer, restaurant_factory, items):
        restaurant = await restaurant_factory()
        with pytest.raises(InsufficientPermissionError):
            await service_for(customer).create_order(
                restaurant.id, items, PaymentMethod.CASH, 0, 0, customer, rider_bonus_cents=500
            )

    @pytest.mark.unit
    async def test_riders_cannot_place_orders(self, service_for, actor_factory, restaurant_factory, items):
        restaurant = await restaurant_factory()
        actor = await actor_factory(UserRole.RIDER)
        with pytest.raises(InsufficientPermissionError):
            await service_for(actor).create_order(restaurant.id, items, PaymentMethod.CASH, 0, 0, actor)

    @pytest.mark.unit
    async def test_code_collisions_exhaust_attempts(self, service_for, owner, restaurant_factory, items):
        restaurant = await restaurant_factory()
        service = service_for(owner, code_generator=lambda: "OF-AAAAAA")
        await service.create_order(restaurant.id, items, PaymentMethod.CASH, 0, 0, owner)

        with pytest.raises(AppException) as exc_info:
            await service.create_order(restaurant.id, items, PaymentMethod.CASH, 0, 0, owner)
        assert exc_info.value.status_code == 503


class TestLifecycle:

    @pytest.mark.unit
    async def test_full_lifecycle_posts_credits_once(
        self, db_session, service_for, owner, customer, restaurant_factory, rider_factory,
        restaurant_actor, rider_actor, items,
    ):
        restaurant = await restaurant_factory()
        rider = await rider_factory()
        order = await service_for(customer).create_order(
            restaurant.id, items, PaymentMethod.CASH, 0, 0, customer
        )
        kitchen = service_for(restaurant_actor(restaurant))
        staff = service_for(owner)
        courier = service_for(rider_actor(rider))

        await kitchen.transition(order.id, OrderStatus.CONFIRMED, restaurant_actor(restaurant))
        await kitchen.transition(order.id, OrderStatus.PREPARING, restaurant_actor(restaurant))
        await kitchen.transition(order.id, OrderStatus.READY, restaurant_actor(restaurant))
        await staff.transition(order.id, OrderStatus.ASSIGNED_RIDER, owner, rider_id=rider.id)

        await db_session.refresh(rider)
        assert rider.current_order_id == order.id

        await courier.transition_current_order(OrderStatus.PICKED_UP, rider_actor(rider))
        await courier.transition_current_order(OrderStatus.IN_TRANSIT, rider_actor(rider))
        delivered = await courier.transition_current_order(
            OrderStatus.DELIVERED, rider_actor(rider), delivery_proof_url="https://files.example/d.jpg"
        )

        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.delivered_at is not None
        assert delivered.credits_processed_at is not None
        assert delivered.rider_delivery_credit_cents == 160
        assert delivered.restaurant_commission_cents == 450

        await db_session.refresh(rider)
        assert rider.current_order_id is None

        history = await staff.get_history(order.id)
        assert [h.to_status for h in history] == [
            OrderStatus.PENDING_CONFIRMATION,
            OrderStatus.CONFIRMED,
            OrderStatus.PREPARING,
            OrderStatus.READY,
            OrderStatus.ASSIGNED_RIDER,
            OrderStatus.PICKED_UP,
            OrderStatus.IN_TRANSIT,
            OrderStatus.DELIVERED,
        ]
        tx_rows = (await db_session.execute(
            select(CreditTransaction.id).where(CreditTransaction.order_id == order.id)
        )).all()
        assert len(tx_rows) == 5

    @pytest.mark.unit
    async def test_invalid_edge(self, service_for, owner, ready_order):
        order = await ready_order()
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await service_for(owner).transition(order.id, OrderStatus.DELIVERED, owner)
        assert exc_info.value.details["current_state"] == "ready"

    @pytest.mark.unit
    async def test_terminal_order_cannot_move(self, service_for, owner, restaurant_factory, order_factory):
        restaurant = await restaurant_factory()
        order = await order_factory(restaurant.id, status=OrderStatus.CANCELLED)
        with pytest.raises(InvalidStateTransitionError):
            await service_for(owner).transition(order.id, OrderStatus.CONFIRMED, owner)

    @pytest.mark.unit
    async def test_restaurant_cannot_cancel(self, service_for, restaurant_factory, order_factory, restaurant_actor):
        restaurant = await restaurant_factory()
        order = await order_factory(restaurant.id, status=OrderStatus.PENDING_CONFIRMATION)
        actor = restaurant_actor(restaurant)

        with pytest.raises(InsufficientPermissionError):
            await service_for(actor).transition(order.id, OrderStatus.CANCELLED, actor)

    @pytest.mark.unit
    async def test_other_restaurant_cannot_see_order(self, service_for, restaurant_factory, order_factory, restaurant_actor):
        mine = await restaurant_factory(name="Mine")
        theirs = await restaurant_factory(name="Theirs")
        order = await order_factory(theirs.id, status=OrderStatus.PENDING_CONFIRMATION)
        actor = restaurant_actor(mine)

        with pytest.raises(OrderNotFoundError):
            await service_for(actor).transition(order.id, OrderStatus.CONFIRMED, actor)

    @pytest.mark.unit
    async def test_customer_cancels_pending_order(self, service_for, customer, restaurant_factory, order_factory):
        restaurant = await restaurant_factory()
        order = await order_factory(
            restaurant.id, status=OrderStatus.PENDING_CONFIRMATION, customer_id=customer.user_id
        )

        cancelled = await service_for(customer).transition(
            order.id, OrderStatus.CANCELLED, customer, notes="Changed my mind"
        )

        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.cancellation_reason == "Changed my mind"
        assert cancelled.cancelled_at is not None

    @pytest.mark.unit
    async def test_rejection_requires_reason(self, service_for, owner, restaurant_factory, order_factory):
        restaurant = await restaurant_factory()
        order = await order_factory(restaurant.id, status=OrderStatus.PENDING_CONFIRMATION)
        order_id = order.id

        with pytest.raises(ValidationException):
            await service_for(owner).transition(order_id, OrderStatus.REJECTED, owner)
        with pytest.raises(ValidationException):
            await service_for(owner).transition(
                order_id, OrderStatus.REJECTED, owner, rejection_reason=RejectionReason.OTHER
            )

        rejected = await service_for(owner).transition(
            order_id, OrderStatus.REJECTED, owner, rejection_reason=RejectionReason.ITEM_OUT_OF_STOCK
        )
        assert rejected.rejection_reason == RejectionReason.ITEM_OUT_OF_STOCK
        assert rejected.rejected_at is not None


class TestRiderAssignment:

    @pytest.mark.unit
    async def test_assignment_requires_rider(self, service_for, owner, ready_order):
        order = await ready_order()
        with pytest.raises(ValidationException):
            await service_for(owner).transition(order.id, OrderStatus.ASSIGNED_RIDER, owner)

    @pytest.mark.unit
    async def test_busy_rider_rejected(self, service_for, owner, ready_order, restaurant_factory, order_factory, rider_factory):
        restaurant = await restaurant_factory(name="Other")
        carrying = await order_factory(restaurant.id, status=OrderStatus.PICKED_UP)
        rider = await rider_factory(current_order_id=carrying.id)
        order = await ready_order()

        with pytest.raises(ValidationException) as exc_info:
            await service_for(owner).transition(order.id, OrderStatus.ASSIGNED_RIDER, owner, rider_id=rider.id)
        assert exc_info.value.details["field"] == "rider_id"

    @pytest.mark.unit
    async def test_dangling_reference_is_overwritten(self, db_session, service_for, owner, ready_order, rider_factory):
        rider = await rider_factory(current_order_id=987654)
        order = await ready_order()

        assigned = await service_for(owner).transition(
            order.id, OrderStatus.ASSIGNED_RIDER, owner, rider_id=rider.id
        )

        assert assigned.rider_id == rider.id
        await db_session.refresh(rider)
        assert rider.current_order_id == order.id

    @pytest.mark.unit
    async def test_inactive_rider(self, service_for, owner, ready_order, rider_factory):
        rider = await rider_factory(is_active=False)
        order = await ready_order()
        with pytest.raises(NotFoundException):
            await service_for(owner).transition(order.id, OrderStatus.ASSIGNED_RIDER, owner, rider_id=rider.id)

    @pytest.mark.unit
    async def test_cancel_releases_rider(self, db_session, service_for, owner, ready_order, rider_factory):
        rider = await rider_factory()
        order = await ready_order()
        staff = service_for(owner)
        await staff.transition(order.id, OrderStatus.ASSIGNED_RIDER, owner, rider_id=rider.id)

        await staff.transition(order.id, OrderStatus.CANCELLED, owner, notes="Restaurant closed")

        await db_session.refresh(rider)
        assert rider.current_order_id is None

    @pytest.mark.unit
    async def test_current_order_not_set(self, service_for, rider_factory, rider_actor):
        rider = await rider_factory()
        actor = rider_actor(rider)
        with pytest.raises(NotFoundException):
            await service_for(actor).transition_current_order(OrderStatus.PICKED_UP, actor)

    @pytest.mark.unit
    async def test_current_order_dangling(self, service_for, rider_factory, rider_actor):
        rider = await rider_factory(current_order_id=555555)
        actor = rider_actor(rider)
        with pytest.raises(OrderNotFoundError):
            await service_for(actor).transition_current_order(OrderStatus.PICKED_UP, actor)

    @pytest.mark.unit
    async def test_current_order_requires_rider_role(self, service_for, owner):
        with pytest.raises(InsufficientPermissionError):
            await service_for(owner).transition_current_order(OrderStatus.PICKED_UP, owner)


class TestDelivery:

    @pytest.fixture
    def in_transit_order(self, restaurant_factory, rider_factory, order_factory):
        async def _in_transit(payment_method: PaymentMethod = PaymentMethod.CASH) -> tuple[Order, Rider]:
            restaurant = await restaurant_factory()
            rider = await rider_factory()
            order = await order_factory(
                restaurant.id,
                status=OrderStatus.IN_TRANSIT,
                rider_id=rider.id,
                subtotal_cents=4555,
                delivery_fee_cents=800,
                total_cents=5360,
                payment_method=payment_method,
            )
            return order, rider
        return _in_transit

    @pytest.mark.unit
    async def test_delivery_proof_required(self, db_session, service_for, in_transit_order, rider_actor):
        order, rider = await in_transit_order()
        order_id = order.id
        actor = rider_actor(rider)

        with pytest.raises(MissingEvidenceError):
            await service_for(actor).transition(order_id, OrderStatus.DELIVERED, actor)

        reloaded = await db_session.get(Order, order_id, populate_existing=True)
        assert reloaded.status == OrderStatus.IN_TRANSIT

    @pytest.mark.unit
    async def test_digital_payment_needs_payment_proof(self, service_for, in_transit_order, rider_actor):
        order, rider = await in_transit_order(PaymentMethod.YAPE)
        actor = rider_actor(rider)
        with pytest.raises(MissingEvidenceError):
            await service_for(actor).transition(
                order.id, OrderStatus.DELIVERED, actor, delivery_proof_url="https://files.example/d.jpg"
            )

    @pytest.mark.unit
    async def test_reprice_for_actual_pos_payment(self, service_for, in_transit_order, rider_actor):
        order, rider = await in_transit_order(PaymentMethod.CASH)
        actor = rider_actor(rider)

        with patch.object(settings, "POS_SURCHARGE_ENABLED", True):
            delivered = await service_for(actor).transition(
                order.id,
                OrderStatus.DELIVERED,
                actor,
                delivery_proof_url="https://files.example/d.jpg",
                payment_proof_url="https://files.example/voucher.jpg",
                actual_payment_method=PaymentMethod.POS,
            )

        assert delivered.actual_payment_method == PaymentMethod.POS
        assert delivered.service_fee_cents == 290
        assert delivered.total_cents == 5650
        assert delivered.rounding_surplus_cents == 5

    @pytest.mark.unit
    async def test_credit_failure_aborts_delivery(self, db_session, service_for, in_transit_order, rider_actor):
        order, rider = await in_transit_order()
        order_id = order.id
        actor = rider_actor(rider)
        service = service_for(actor)
        service.processor.process = AsyncMock(side_effect=RuntimeError("ledger unavailable"))

        with pytest.raises(CreditProcessingError):
            await service.transition(
                order_id, OrderStatus.DELIVERED, actor, delivery_proof_url="https://files.example/d.jpg"
            )

        reloaded = await db_session.get(Order, order_id, populate_existing=True)
        assert reloaded.status == OrderStatus.IN_TRANSIT
        assert reloaded.delivered_at is None
        assert reloaded.credits_processed_at is None
