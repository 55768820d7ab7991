"""
Settlement Engine - periodic payouts computed from delivered orders

A period is an inclusive range of business dates; an order belongs to it when
its delivered_at falls inside [start 00:00, end + 1 00:00) local time.

Rider net payout:
    commission pay:   Σ floor(delivery_fee × rate) + bonuses + fuel
    fixed salary:     fixed_salary + bonuses + fuel
floored at zero. The per-order commission sum is stored on the settlement and
reused when fuel is adjusted later, so create and update always agree.

Restaurant commission is round_up_10(ceil(gross × rate)), or the per-item
floors summed over the period and then rounded up.
"""
import enum
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from orderflow.core.exceptions import (
    InsufficientPermissionError,
    NotFoundException,
    OverlappingPeriodError,
    SettlementStatusError,
    ValidationException,
)
from orderflow.core.logging import get_logger, log_async_operation
from orderflow.db.models.order import Order, OrderStatus, PaymentMethod
from orderflow.db.models.restaurant import CommissionMode, Restaurant
from orderflow.db.models.rider import PayType, Rider
from orderflow.db.models.settlement import RestaurantSettlement, RiderSettlement, SettlementStatus
from orderflow.db.models.user import UserRole
from orderflow.db.repository import Repository
from orderflow.domain.actor import Actor
from orderflow.domain.business_calendar import month_bounds, period_bounds_utc
from orderflow.domain.money import ceil_share, floor_share, round_up_cents
from orderflow.domain.services.delivery_credit_processor import restaurant_commission_cents
from orderflow.domain.services.export_service import (
    generate_restaurant_settlements_excel,
    generate_rider_settlements_excel,
)

logger = get_logger(__name__)

MAX_LIST_LIMIT = 50

WRITER_ROLES = (UserRole.OWNER, UserRole.CITY_ADMIN)
READER_ROLES = (UserRole.OWNER, UserRole.CITY_ADMIN, UserRole.AGENT)


class SettlementKind(str, enum.Enum):
    RIDERS = "riders"
    RESTAURANTS = "restaurants"

    @property
    def model(self):
        return RiderSettlement if self == SettlementKind.RIDERS else RestaurantSettlement

    @property
    def entity_column(self):
        return self.model.rider_id if self == SettlementKind.RIDERS else self.model.restaurant_id

    @property
    def order_column(self):
        return Order.rider_id if self == SettlementKind.RIDERS else Order.restaurant_id

    @property
    def self_service_role(self) -> UserRole:
        return UserRole.RIDER if self == SettlementKind.RIDERS else UserRole.RESTAURANT


@dataclass
class RiderSettlementPreview:
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
    has_overlap: bool = False
    overlap_start: Optional[date] = None
    overlap_end: Optional[date] = None


@dataclass
class RestaurantSettlementPreview:
    restaurant_id: int
    period_start: date
    period_end: date
    commission_rate: Decimal
    total_orders: int
    gross_sales_cents: int
    commission_cents: int
    net_payout_cents: int
    has_overlap: bool = False
    overlap_start: Optional[date] = None
    overlap_end: Optional[date] = None


@dataclass
class SettlementOrderLine:
    order_id: int
    code: str
    delivered_at: datetime
    payment_method: PaymentMethod
    subtotal_cents: int
    delivery_fee_cents: int
    rider_bonus_cents: int
    total_cents: int

def rider_net_payout(
    pay_type: PayType,
    rider_commission_cents: int,
    fixed_salary_cents: int,
    bonuses_cents: int,
    fuel_cents: int,
) -> int:
    base = rider_commission_cents if pay_type == PayType.COMMISSION else fixed_salary_cents
    return max(0, base + bonuses_cents + fuel_cents)


def _normalize_fuel(fuel_cents: Optional[int]) -> int:
    if fuel_cents is None:
        return 0
    if fuel_cents < 0:
        raise ValidationException("Fuel reimbursement must not be negative", field="fuel_reimbursement_cents")
    return round_up_cents(fuel_cents)


class SettlementService:
    def __init__(self, repo: Repository):
        self.repo = repo
        self.db = repo.db
        # Aggregation reads every order of the entity
        self.system = repo.elevate()

    # ==================== Aggregation ====================

    async def _delivered_orders(self, column, entity_id: int, start: date, end: date) -> list[Order]:
        lower, upper = period_bounds_utc(start, end)
        result = await self.db.execute(
            self.system.select(Order)
            .where(
                column == entity_id,
                Order.status == OrderStatus.DELIVERED,
                Order.delivered_at >= lower,
                Order.delivered_at < upper,
            )
            .order_by(Order.delivered_at.asc(), Order.id.asc())
        )
        return list(result.scalars().all())

    async def _find_overlap(self, kind: SettlementKind, entity_id: int, start: date, end: date):
        model = kind.model
        result = await self.db.execute(
            self.system.select(model)
            .where(
                kind.entity_column == entity_id,
                model.period_start <= end,
                model.period_end >= start,
            )
            .order_by(model.period_start.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _rider_preview(self, rider: Rider, start: date, end: date, fuel_cents: int) -> RiderSettlementPreview:
        orders = await self._delivered_orders(Order.rider_id, rider.id, start, end)

        cash = pos = digital = fees = bonuses = commission = 0
        for order in orders:
            method = order.effective_payment_method
            if method == PaymentMethod.CASH:
                cash += order.total_cents
            elif method == PaymentMethod.POS:
                pos += order.total_cents
            else:
                digital += order.total_cents
            fees += order.delivery_fee_cents
            bonuses += order.rider_bonus_cents or 0
            if rider.is_commission_paid:
                # One floor per order, never over the period total
                commission += floor_share(order.delivery_fee_cents, rider.commission_rate)

        return RiderSettlementPreview(
            rider_id=rider.id,
            period_start=start,
            period_end=end,
            pay_type=rider.pay_type,
            commission_rate=rider.commission_rate,
            fixed_salary_cents=rider.fixed_salary_cents or 0,
            total_deliveries=len(orders),
            total_cash_collected_cents=cash,
            total_pos_collected_cents=pos,
            total_digital_collected_cents=digital,
            total_delivery_fees_cents=fees,
            rider_commission_cents=commission,
            total_bonuses_cents=bonuses,
            fuel_reimbursement_cents=fuel_cents,
            net_payout_cents=rider_net_payout(
                rider.pay_type, commission, rider.fixed_salary_cents or 0, bonuses, fuel_cents
            ),
        )

    async def _restaurant_preview(self, restaurant: Restaurant, start: date, end: date) -> RestaurantSettlementPreview:
        orders = await self._delivered_orders(Order.restaurant_id, restaurant.id, start, end)
        gross = sum(order.subtotal_cents for order in orders)

        if restaurant.commission_mode == CommissionMode.PER_ITEM:
            raw_commission = sum(restaurant_commission_cents(order, restaurant) for order in orders)
        else:
            raw_commission = ceil_share(gross, restaurant.commission_rate)
        commission = round_up_cents(raw_commission)

        return RestaurantSettlementPreview(
            restaurant_id=restaurant.id,
            period_start=start,
            period_end=end,
            commission_rate=restaurant.commission_rate,
            total_orders=len(orders),
            gross_sales_cents=gross,
            commission_cents=commission,
            net_payout_cents=max(0, gross - commission),
        )

    async def _get_rider(self, rider_id: int, for_update: bool = False) -> Rider:
        rider = await self.system.get(Rider, rider_id, for_update=for_update)
        if not rider:
            raise NotFoundException("Rider", rider_id)
        return rider

    async def _get_restaurant(self, restaurant_id: int, for_update: bool = False) -> Restaurant:
        restaurant = await self.system.get(Restaurant, restaurant_id, for_update=for_update)
        if not restaurant:
            raise NotFoundException("Restaurant", restaurant_id)
        return restaurant

    @staticmethod
    def _require_writer(actor: Actor, action: str) -> None:
        if not actor.has_role(*WRITER_ROLES):
            raise InsufficientPermissionError(action, actor.role.value)

    # ==================== Preview / Create ====================

    async def preview_rider(
        self,
        rider_id: int,
        period_start: date,
        period_end: date,
        actor: Actor,
        fuel_reimbursement_cents: Optional[int] = None,
    ) -> RiderSettlementPreview:
        """Compute without persisting; an overlap is reported, not raised"""
        self._require_writer(actor, "preview settlements")
        fuel = _normalize_fuel(fuel_reimbursement_cents)
        rider = await self._get_rider(rider_id)
        preview = await self._rider_preview(rider, period_start, period_end, fuel)
        conflict = await self._find_overlap(SettlementKind.RIDERS, rider_id, period_start, period_end)
        if conflict:
            preview.has_overlap = True
            preview.overlap_start, preview.overlap_end = conflict.period_start, conflict.period_end
        return preview

    async def preview_restaurant(
        self,
        restaurant_id: int,
        period_start: date,
        period_end: date,
        actor: Actor,
    ) -> RestaurantSettlementPreview:
        """Compute without persisting; an overlap is reported, not raised"""
        self._require_writer(actor, "preview settlements")
        restaurant = await self._get_restaurant(restaurant_id)
        preview = await self._restaurant_preview(restaurant, period_start, period_end)
        conflict = await self._find_overlap(SettlementKind.RESTAURANTS, restaurant_id, period_start, period_end)
        if conflict:
            preview.has_overlap = True
            preview.overlap_start, preview.overlap_end = conflict.period_start, conflict.period_end
        return preview

    @log_async_operation("create_rider_settlement")
    async def create_rider_settlement(
        self,
        rider_id: int,
        period_start: date,
        period_end: date,
        actor: Actor,
        fuel_reimbursement_cents: Optional[int] = None,
        notes: Optional[str] = None,
        dry_run: bool = False,
    ) -> Union[RiderSettlement, RiderSettlementPreview]:
        """
        Persist a pending rider settlement, or return the preview when dry_run.

        Raises:
            OverlappingPeriodError: another settlement of this rider touches the period
        """
        if dry_run:
            return await self.preview_rider(rider_id, period_start, period_end, actor, fuel_reimbursement_cents)

        self._require_writer(actor, "create settlements")
        fuel = _normalize_fuel(fuel_reimbursement_cents)

        try:
            rider = await self._get_rider(rider_id, for_update=True)
            conflict = await self._find_overlap(SettlementKind.RIDERS, rider_id, period_start, period_end)
            if conflict:
                raise OverlappingPeriodError(
                    "rider", rider_id, conflict.period_start.isoformat(), conflict.period_end.isoformat(),
                    settlement_id=conflict.id,
                )

            preview = await self._rider_preview(rider, period_start, period_end, fuel)
            settlement = RiderSettlement(
                rider_id=rider.id,
                period_start=period_start,
                period_end=period_end,
                pay_type=preview.pay_type,
                commission_rate=preview.commission_rate,
                fixed_salary_cents=preview.fixed_salary_cents,
                total_deliveries=preview.total_deliveries,
                total_cash_collected_cents=preview.total_cash_collected_cents,
                total_pos_collected_cents=preview.total_pos_collected_cents,
                total_digital_collected_cents=preview.total_digital_collected_cents,
                total_delivery_fees_cents=preview.total_delivery_fees_cents,
                rider_commission_cents=preview.rider_commission_cents,
                total_bonuses_cents=preview.total_bonuses_cents,
                fuel_reimbursement_cents=fuel,
                net_payout_cents=preview.net_payout_cents,
                status=SettlementStatus.PENDING,
                notes=notes,
                created_by_user_id=actor.user_id,
            )
            self.repo.add(settlement)
            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Rider settlement creation failed",
                extra_data={"rider_id": rider_id, "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise
        except Exception:
            await self.repo.rollback()
            raise

        logger.info(
            "Rider settlement created",
            extra_data={
                "settlement_id": settlement.id,
                "rider_id": rider_id,
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "total_deliveries": settlement.total_deliveries,
                "net_payout_cents": settlement.net_payout_cents,
                **actor.log_context(),
            },
        )
        return settlement

    @log_async_operation("create_restaurant_settlement")
    async def create_restaurant_settlement(
        self,
        restaurant_id: int,
        period_start: date,
        period_end: date,
        actor: Actor,
        notes: Optional[str] = None,
        dry_run: bool = False,
    ) -> Union[RestaurantSettlement, RestaurantSettlementPreview]:
        if dry_run:
            return await self.preview_restaurant(restaurant_id, period_start, period_end, actor)

        self._require_writer(actor, "create settlements")

        try:
            restaurant = await self._get_restaurant(restaurant_id, for_update=True)
            conflict = await self._find_overlap(SettlementKind.RESTAURANTS, restaurant_id, period_start, period_end)
            if conflict:
                raise OverlappingPeriodError(
                    "restaurant", restaurant_id, conflict.period_start.isoformat(), conflict.period_end.isoformat(),
                    settlement_id=conflict.id,
                )

            preview = await self._restaurant_preview(restaurant, period_start, period_end)
            settlement = RestaurantSettlement(
                restaurant_id=restaurant.id,
                period_start=period_start,
                period_end=period_end,
                commission_rate=preview.commission_rate,
                total_orders=preview.total_orders,
                gross_sales_cents=preview.gross_sales_cents,
                commission_cents=preview.commission_cents,
                net_payout_cents=preview.net_payout_cents,
                status=SettlementStatus.PENDING,
                notes=notes,
                created_by_user_id=actor.user_id,
            )
            self.repo.add(settlement)
            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Restaurant settlement creation failed",
                extra_data={"restaurant_id": restaurant_id, "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise
        except Exception:
            await self.repo.rollback()
            raise

        logger.info(
            "Restaurant settlement created",
            extra_data={
                "settlement_id": settlement.id,
                "restaurant_id": restaurant_id,
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "gross_sales_cents": settlement.gross_sales_cents,
                "commission_cents": settlement.commission_cents,
                **actor.log_context(),
            },
        )
        return settlement

    # ==================== Status ====================

    async def update_status(
        self,
        kind: SettlementKind,
        settlement_id: int,
        actor: Actor,
        status: Optional[SettlementStatus] = None,
        fuel_reimbursement_cents: Optional[int] = None,
        notes: Optional[str] = None,
        reopen: bool = False,
    ):
        """
        Move between pending, disputed and paid, adjust fuel, or annotate.

        Leaving paid needs reopen=True. paid_at is stamped on entering paid and
        cleared on leaving it. A paid settlement's figures are frozen.
        """
        self._require_writer(actor, "update settlements")
        if fuel_reimbursement_cents is not None and kind != SettlementKind.RIDERS:
            raise ValidationException(
                "Only rider settlements carry fuel reimbursement", field="fuel_reimbursement_cents"
            )

        try:
            settlement = await self.repo.get(kind.model, settlement_id, for_update=True)
            if not settlement:
                raise NotFoundException("Settlement", settlement_id)

            previous = settlement.status
            if status is not None and status != previous:
                if previous == SettlementStatus.PAID and not reopen:
                    raise SettlementStatusError(settlement.id, previous.value, status.value)
                settlement.status = status
                if status == SettlementStatus.PAID:
                    settlement.paid_at = datetime.utcnow()
                elif previous == SettlementStatus.PAID:
                    settlement.paid_at = None

            if fuel_reimbursement_cents is not None:
                fuel = _normalize_fuel(fuel_reimbursement_cents)
                if fuel != settlement.fuel_reimbursement_cents:
                    # Frozen only when it was paid before this call and stays paid
                    if previous == SettlementStatus.PAID and settlement.status == SettlementStatus.PAID:
                        raise ValidationException(
                            "Paid settlements cannot be adjusted, reopen first",
                            field="fuel_reimbursement_cents",
                        )
                    settlement.fuel_reimbursement_cents = fuel
                    settlement.net_payout_cents = rider_net_payout(
                        settlement.pay_type,
                        settlement.rider_commission_cents,
                        settlement.fixed_salary_cents,
                        settlement.total_bonuses_cents,
                        fuel,
                    )

            if notes is not None:
                settlement.notes = notes

            await self.repo.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Settlement update failed",
                extra_data={"kind": kind.value, "settlement_id": settlement_id, "error": str(e)},
                exc_info=True,
            )
            await self.repo.rollback()
            raise
        except Exception:
            await self.repo.rollback()
            raise

        logger.info(
            "Settlement updated",
            extra_data={
                "kind": kind.value,
                "settlement_id": settlement.id,
                "from_status": previous.value,
                "to_status": settlement.status.value,
                "net_payout_cents": settlement.net_payout_cents,
                **actor.log_context(),
            },
        )
        return settlement

    # ==================== Reads ====================

    def _require_reader(self, kind: SettlementKind, actor: Actor) -> None:
        # Riders and restaurants read their own rows through the scoped repository
        if actor.has_role(*READER_ROLES) or actor.role == kind.self_service_role:
            return
        raise InsufficientPermissionError("view settlements", actor.role.value)

    async def get_settlement(self, kind: SettlementKind, settlement_id: int, actor: Actor):
        self._require_reader(kind, actor)
        settlement = await self.repo.get(kind.model, settlement_id)
        if not settlement:
            raise NotFoundException("Settlement", settlement_id)
        return settlement

    async def settlement_orders(self, kind: SettlementKind, settlement) -> list[SettlementOrderLine]:
        """Delivered orders inside the stored period, one line each"""
        entity_id = settlement.rider_id if kind == SettlementKind.RIDERS else settlement.restaurant_id
        orders = await self._delivered_orders(
            kind.order_column, entity_id, settlement.period_start, settlement.period_end
        )
        return [
            SettlementOrderLine(
                order_id=order.id,
                code=order.code,
                delivered_at=order.delivered_at,
                payment_method=order.effective_payment_method,
                subtotal_cents=order.subtotal_cents,
                delivery_fee_cents=order.delivery_fee_cents,
                rider_bonus_cents=order.rider_bonus_cents or 0,
                total_cents=order.total_cents,
            )
            for order in orders
        ]

    async def get_settlement_detail(self, kind: SettlementKind, settlement_id: int, actor: Actor):
        """A settlement plus the order lines behind its totals"""
        settlement = await self.get_settlement(kind, settlement_id, actor)
        return settlement, await self.settlement_orders(kind, settlement)

    async def list_settlements(
        self,
        kind: SettlementKind,
        actor: Actor,
        status: Optional[SettlementStatus] = None,
        entity_id: Optional[int] = None,
        month: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list, int]:
        """Newest period first; month (YYYY-MM) matches periods touching that month"""
        self._require_reader(kind, actor)
        model = kind.model
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        page = max(1, page)

        conditions = []
        if status is not None:
            conditions.append(model.status == status)
        if entity_id is not None:
            conditions.append(kind.entity_column == entity_id)
        if month:
            first, last = month_bounds(month)
            conditions.append(model.period_start <= last)
            conditions.append(model.period_end >= first)

        base = self.repo.select(model).where(*conditions)
        total_result = await self.db.execute(
            select(func.count()).select_from(base.subquery())
        )
        result = await self.db.execute(
            base.order_by(model.period_start.desc(), model.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total_result.scalar() or 0

    # ==================== Export ====================

    async def export_month(self, kind: SettlementKind, month: str, actor: Actor) -> bytes:
        """Every settlement of ``kind`` touching ``month`` as an XLSX workbook"""
        if not actor.has_role(*READER_ROLES):
            raise InsufficientPermissionError("export settlements", actor.role.value)
        first, last = month_bounds(month)
        model = kind.model
        result = await self.db.execute(
            self.repo.select(model)
            .where(model.period_start <= last, model.period_end >= first)
            .order_by(model.period_start.asc(), model.id.asc())
        )
        settlements = list(result.scalars().all())

        entity_ids = {getattr(s, kind.entity_column.key) for s in settlements}
        if kind == SettlementKind.RIDERS:
            names = await self._names(Rider, entity_ids)
            content = generate_rider_settlements_excel(settlements, month, names)
        else:
            names = await self._names(Restaurant, entity_ids)
            content = generate_restaurant_settlements_excel(settlements, month, names)

        logger.info(
            "Settlements exported",
            extra_data={"kind": kind.value, "month": month, "rows": len(settlements), **actor.log_context()},
        )
        return content

    async def _names(self, model, ids: set[int]) -> dict[int, str]:
        if not ids:
            return {}
        result = await self.db.execute(select(model.id, model.name).where(model.id.in_(ids)))
        return {row.id: row.name for row in result}
