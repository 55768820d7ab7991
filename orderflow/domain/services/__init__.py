"""
Domain Services
"""
from orderflow.domain.services.order_service import OrderService
from orderflow.domain.services.credit_ledger_service import CreditLedgerService
from orderflow.domain.services.recharge_service import RechargeService
from orderflow.domain.services.liquidation_service import LiquidationService
from orderflow.domain.services.delivery_credit_processor import DeliveryCreditProcessor
from orderflow.domain.services.settlement_service import SettlementService
from orderflow.domain.services.cash_reconciliation_service import CashReconciliationService

__all__ = [
    "OrderService",
    "CreditLedgerService",
    "RechargeService",
    "LiquidationService",
    "DeliveryCreditProcessor",
    "SettlementService",
    "CashReconciliationService",
]
