"""
Settlement Models - persisted payout computations per rider / restaurant

Periods are inclusive business dates. Two settlements of the same entity never
overlap; creation checks this while holding a lock on the entity row.
"""
import enum
from decimal import Decimal
from datetime import datetime
from sqlalchemy import (
    Column, Integer, Date, DateTime, Enum as SQLEnum, ForeignKey, Text, Numeric, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from orderflow.db.database import Base
from orderflow.db.models.rider import PayType


class SettlementStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    DISPUTED = "disputed"


class RiderSettlement(Base):
    __tablename__ = "rider_settlements"

    id = Column(Integer, primary_key=True, index=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)

    # Pay configuration at creation time
    pay_type = Column(SQLEnum(PayType), nullable=False)
    commission_rate = Column(Numeric(5, 4), nullable=False, default=Decimal("0"))
    fixed_salary_cents = Column(Integer, nullable=False, default=0)

    total_deliveries = Column(Integer, nullable=False, default=0)
    total_cash_collected_cents = Column(Integer, nullable=False, default=0)
    total_pos_collected_cents = Column(Integer, nullable=False, default=0)
    total_digital_collected_cents = Column(Integer, nullable=False, default=0)
    total_delivery_fees_cents = Column(Integer, nullable=False, default=0)
    # Σ floor(delivery_fee × rate), one floor per order
    rider_commission_cents = Column(Integer, nullable=False, default=0)
    total_bonuses_cents = Column(Integer, nullable=False, default=0)
    fuel_reimbursement_cents = Column(Integer, nullable=False, default=0)
    net_payout_cents = Column(Integer, nullable=False, default=0)

    status = Column(SQLEnum(SettlementStatus), nullable=False, default=SettlementStatus.PENDING, index=True)
    paid_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    rider = relationship("Rider")

    __table_args__ = (
        CheckConstraint("period_start <= period_end", name="ck_rider_settlement_period"),
        CheckConstraint("net_payout_cents >= 0", name="ck_rider_settlement_net"),
        Index("ix_rider_settlements_rider_period", "rider_id", "period_start", "period_end"),
    )


class RestaurantSettlement(Base):
    __tablename__ = "restaurant_settlements"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)

    commission_rate = Column(Numeric(5, 4), nullable=False, default=Decimal("0"))
    total_orders = Column(Integer, nullable=False, default=0)
    gross_sales_cents = Column(Integer, nullable=False, default=0)
    commission_cents = Column(Integer, nullable=False, default=0)
    net_payout_cents = Column(Integer, nullable=False, default=0)

    status = Column(SQLEnum(SettlementStatus), nullable=False, default=SettlementStatus.PENDING, index=True)
    paid_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    restaurant = relationship("Restaurant")

    __table_args__ = (
        CheckConstraint("period_start <= period_end", name="ck_restaurant_settlement_period"),
        Index("ix_restaurant_settlements_restaurant_period", "restaurant_id", "period_start", "period_end"),
    )
