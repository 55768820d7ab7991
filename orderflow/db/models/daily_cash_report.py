"""
Daily Cash Report Model - rider end-of-day declaration vs. expected collections
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, Date, DateTime, Boolean, Enum as SQLEnum, ForeignKey, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from orderflow.db.database import Base


class CashReportStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class DailyCashReport(Base):
    __tablename__ = "daily_cash_reports"

    id = Column(Integer, primary_key=True, index=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=False, index=True)
    report_date = Column(Date, nullable=False)

    declared_cash_cents = Column(Integer, nullable=False, default=0)
    declared_pos_cents = Column(Integer, nullable=False, default=0)
    declared_digital_cents = Column(Integer, nullable=False, default=0)

    expected_cash_cents = Column(Integer, nullable=False, default=0)
    expected_pos_cents = Column(Integer, nullable=False, default=0)
    expected_digital_cents = Column(Integer, nullable=False, default=0)
    delivered_orders = Column(Integer, nullable=False, default=0)

    # declared_cash - expected_cash
    discrepancy_cents = Column(Integer, nullable=False, default=0)
    is_flagged = Column(Boolean, nullable=False, default=False)

    status = Column(SQLEnum(CashReportStatus), nullable=False, default=CashReportStatus.DRAFT, index=True)
    notes = Column(Text, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    reviewed_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    rider = relationship("Rider")

    __table_args__ = (
        UniqueConstraint("rider_id", "report_date", name="uq_daily_cash_report_rider_date"),
    )
