"""
Credit Ledger Models - per-entity accounts and their immutable transaction log
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Enum as SQLEnum, ForeignKey, Text, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from orderflow.db.database import Base


class AccountEntityType(str, enum.Enum):
    RIDER = "rider"
    RESTAURANT = "restaurant"


class CreditTransactionType(str, enum.Enum):
    ORDER_FOOD_DEBIT = "order_food_debit"
    ORDER_COMMISSION_DEBIT = "order_commission_debit"
    ORDER_DELIVERY_CREDIT = "order_delivery_credit"
    ORDER_CREDIT = "order_credit"
    RECHARGE = "recharge"
    ADJUSTMENT = "adjustment"
    LIQUIDATION = "liquidation"
    VOIDED_RECHARGE = "voided_recharge"


class CreditAccount(Base):
    """Cached balance; always equals the running sum of its transactions"""

    __tablename__ = "credit_accounts"

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(SQLEnum(AccountEntityType), nullable=False)
    entity_id = Column(Integer, nullable=False)

    balance = Column(Integer, nullable=False, default=0)
    total_earned = Column(Integer, nullable=False, default=0)
    total_liquidated = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_credit_account_entity"),
    )


class CreditTransaction(Base):
    """Immutable ledger row"""

    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("credit_accounts.id"), nullable=False, index=True)
    type = Column(SQLEnum(CreditTransactionType), nullable=False)
    amount = Column(Integer, nullable=False)  # positive credit, negative debit
    balance_before = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)

    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    recharge_code_id = Column(Integer, ForeignKey("recharge_codes.id"), nullable=True)
    note = Column(Text, nullable=True)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    account = relationship("CreditAccount")

    # One posting of each type per order per account
    __table_args__ = (
        UniqueConstraint("account_id", "order_id", "type", name="uq_credit_account_order_type"),
        Index("ix_credit_transactions_account_created", "account_id", "created_at"),
    )


class RechargeCodeStatus(str, enum.Enum):
    PENDING = "pending"
    REDEEMED = "redeemed"
    VOIDED = "voided"


class RechargeCode(Base):
    __tablename__ = "recharge_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(8), unique=True, nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    status = Column(SQLEnum(RechargeCodeStatus), nullable=False, default=RechargeCodeStatus.PENDING, index=True)

    generated_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    intended_rider_id = Column(Integer, ForeignKey("riders.id"), nullable=True)
    notes = Column(Text, nullable=True)

    redeemed_by_rider_id = Column(Integer, ForeignKey("riders.id"), nullable=True)
    redeemed_at = Column(DateTime, nullable=True)
    voided_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    voided_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)


class LiquidationMethod(str, enum.Enum):
    YAPE = "yape"
    PLIN = "plin"
    TRANSFER = "transfer"
    CASH = "cash"


class RestaurantLiquidation(Base):
    """Payout to a restaurant; at most one per restaurant per business day"""

    __tablename__ = "restaurant_liquidations"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    method = Column(SQLEnum(LiquidationMethod), nullable=False)
    proof_url = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    business_date = Column(Date, nullable=False)
    transaction_id = Column(Integer, ForeignKey("credit_transactions.id"), nullable=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("restaurant_id", "business_date", name="uq_liquidation_restaurant_day"),
    )
