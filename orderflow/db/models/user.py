"""
User Model - platform staff, restaurant staff, riders and customers
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Boolean

from orderflow.db.database import Base


class UserRole(str, enum.Enum):
    OWNER = "owner"
    CITY_ADMIN = "city_admin"
    AGENT = "agent"
    RESTAURANT = "restaurant"
    RIDER = "rider"
    CUSTOMER = "customer"


# Roles whose requests run against the elevated repository
STAFF_ROLES = frozenset({UserRole.OWNER, UserRole.CITY_ADMIN, UserRole.AGENT})


class User(Base):
    """Any authenticated principal"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    phone_number = Column(String(20), unique=True, nullable=True)
    role = Column(SQLEnum(UserRole), default=UserRole.CUSTOMER, nullable=False)
    city_id = Column(Integer, nullable=True, index=True)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
