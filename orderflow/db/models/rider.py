"""
Rider Model - pay configuration and the current-order soft reference
"""
import enum
from decimal import Decimal
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Numeric, ForeignKey, CheckConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from orderflow.db.database import Base


class PayType(str, enum.Enum):
    COMMISSION = "commission"
    FIXED_SALARY = "fixed_salary"


class Rider(Base):
    __tablename__ = "riders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=True)
    name = Column(String(100), nullable=False)
    city_id = Column(Integer, nullable=True, index=True)

    pay_type = Column(SQLEnum(PayType), nullable=False, default=PayType.COMMISSION)
    # Rider's fraction of each delivery fee (commission pay type)
    commission_rate = Column(Numeric(5, 4), nullable=False, default=Decimal("0"))
    # Per settlement period (fixed_salary pay type)
    fixed_salary_cents = Column(Integer, nullable=False, default=0)

    # Soft reference: orders.id without a foreign key, see orderflow.db.soft_refs
    current_order_id = Column(Integer, nullable=True)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")

    __table_args__ = (
        CheckConstraint("commission_rate >= 0 AND commission_rate <= 1", name="ck_rider_commission_rate"),
        CheckConstraint("fixed_salary_cents >= 0", name="ck_rider_fixed_salary"),
    )

    @property
    def is_commission_paid(self) -> bool:
        return self.pay_type == PayType.COMMISSION
