"""
Database Models
"""
from orderflow.db.models.user import User
from orderflow.db.models.restaurant import Restaurant
from orderflow.db.models.rider import Rider
from orderflow.db.models.order import Order, OrderStatusHistory
from orderflow.db.models.credit import (
    CreditAccount,
    CreditTransaction,
    RechargeCode,
    RestaurantLiquidation,
)
from orderflow.db.models.settlement import RiderSettlement, RestaurantSettlement
from orderflow.db.models.daily_cash_report import DailyCashReport

__all__ = [
    "User",
    "Restaurant",
    "Rider",
    "Order",
    "OrderStatusHistory",
    "CreditAccount",
    "CreditTransaction",
    "RechargeCode",
    "RestaurantLiquidation",
    "RiderSettlement",
    "RestaurantSettlement",
    "DailyCashReport",
]
