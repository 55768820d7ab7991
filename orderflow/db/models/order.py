"""
Order Model - food orders and their lifecycle milestones

Monetary columns are integer cents. The financial snapshot columns are written
once, when the order is delivered and its credits are posted.
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey, Text, JSON, CheckConstraint,
)
from sqlalchemy.orm import relationship

from orderflow.db.database import Base


class OrderStatus(str, enum.Enum):
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    ASSIGNED_RIDER = "assigned_rider"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    POS = "pos"
    YAPE = "yape"
    PLIN = "plin"


class RejectionReason(str, enum.Enum):
    ITEM_OUT_OF_STOCK = "item_out_of_stock"
    CLOSING_SOON = "closing_soon"
    KITCHEN_ISSUE = "kitchen_issue"
    OTHER = "other"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, nullable=False, index=True)
    status = Column(SQLEnum(OrderStatus), default=OrderStatus.PENDING_CONFIRMATION, nullable=False, index=True)

    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=True, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    city_id = Column(Integer, nullable=True, index=True)
    zone_id = Column(String(50), nullable=True)

    # [{"name", "quantity", "total_cents", "commission_rate"?}]
    items = Column(JSON, nullable=False, default=list)

    # Money (cents)
    subtotal_cents = Column(Integer, nullable=False)
    delivery_fee_cents = Column(Integer, nullable=False, default=0)
    service_fee_cents = Column(Integer, nullable=False, default=0)
    discount_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False)
    rounding_surplus_cents = Column(Integer, nullable=False, default=0)
    rider_bonus_cents = Column(Integer, nullable=False, default=0)

    payment_method = Column(SQLEnum(PaymentMethod), nullable=False)
    actual_payment_method = Column(SQLEnum(PaymentMethod), nullable=True)

    # Evidence (URLs from the upload service)
    delivery_proof_url = Column(Text, nullable=True)
    payment_proof_url = Column(Text, nullable=True)

    rejection_reason = Column(SQLEnum(RejectionReason), nullable=True)
    rejection_notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Financial snapshot, written at delivery
    restaurant_commission_cents = Column(Integer, nullable=True)
    rider_delivery_credit_cents = Column(Integer, nullable=True)
    platform_delivery_share_cents = Column(Integer, nullable=True)
    credits_processed_at = Column(DateTime, nullable=True)

    # Lifecycle timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    confirmed_at = Column(DateTime, nullable=True)
    preparing_at = Column(DateTime, nullable=True)
    ready_at = Column(DateTime, nullable=True)
    assigned_at = Column(DateTime, nullable=True)
    picked_up_at = Column(DateTime, nullable=True)
    in_transit_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True, index=True)
    rejected_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    restaurant = relationship("Restaurant")
    rider = relationship("Rider")

    __table_args__ = (
        CheckConstraint("subtotal_cents >= 0", name="ck_order_subtotal"),
        CheckConstraint("delivery_fee_cents >= 0", name="ck_order_delivery_fee"),
        CheckConstraint("service_fee_cents >= 0", name="ck_order_service_fee"),
        CheckConstraint("discount_cents >= 0", name="ck_order_discount"),
        CheckConstraint("total_cents >= 0", name="ck_order_total"),
    )

    @property
    def effective_payment_method(self) -> PaymentMethod:
        """Method observed at delivery, falling back to the declared one"""
        return self.actual_payment_method or self.payment_method


class OrderStatusHistory(Base):
    """Append-only record of every applied transition"""

    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    from_status = Column(SQLEnum(OrderStatus), nullable=True)  # None for creation
    to_status = Column(SQLEnum(OrderStatus), nullable=False)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
