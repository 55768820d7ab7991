"""
Restaurant Model - commission configuration
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


class CommissionMode(str, enum.Enum):
    GLOBAL = "global"      # one rate over the subtotal
    PER_ITEM = "per_item"  # per-line rates, restaurant rate as fallback


class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    city_id = Column(Integer, nullable=True, index=True)

    # Fraction of the food subtotal kept by the platform (0.15 = 15%)
    commission_rate = Column(Numeric(5, 4), nullable=False, default=Decimal("0"))
    commission_mode = Column(SQLEnum(CommissionMode), nullable=False, default=CommissionMode.GLOBAL)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User")

    __table_args__ = (
        CheckConstraint("commission_rate >= 0 AND commission_rate <= 1", name="ck_restaurant_commission_rate"),
    )
