"""
Custom Exception Hierarchy

Structured exceptions for consistent error handling across the application.
Every domain error carries an ErrorCode, an HTTP status and a details mapping.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"
    FORBIDDEN = "ERR_1005"

    # Order errors (2xxx)
    ORDER_NOT_FOUND = "ERR_2001"
    MISSING_EVIDENCE = "ERR_2002"
    CREDIT_PROCESSING_FAILED = "ERR_2003"

    # Credit errors (4xxx)
    UNKNOWN_ACCOUNT = "ERR_4001"
    INSUFFICIENT_CREDIT = "ERR_4002"
    CODE_NOT_FOUND = "ERR_4010"
    CODE_ALREADY_REDEEMED = "ERR_4011"
    CODE_VOIDED = "ERR_4012"
    LIQUIDATION_EXISTS = "ERR_4020"

    # External service errors (5xxx)
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"

    # State errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"
    INVALID_REPORT_STATE = "ERR_6002"
    INVALID_SETTLEMENT_STATE = "ERR_6003"

    # Settlement errors (7xxx)
    OVERLAPPING_PERIOD = "ERR_7001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class InsufficientPermissionError(AppException):
    """Raised when the caller's role may not perform an operation"""

    def __init__(self, action: str, role: str | None = None):
        super().__init__(
            message=f"Not allowed to {action}",
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
            details={"action": action, "role": role}
        )


# ==================== Orders ====================


class OrderNotFoundError(NotFoundException):
    """Raised when an order is not found (or not visible to the caller)"""

    def __init__(self, order_id: Any):
        super().__init__("Order", order_id, error_code=ErrorCode.ORDER_NOT_FOUND)


class MissingEvidenceError(AppException):
    """Raised when a transition needs a proof reference that was not supplied"""

    def __init__(self, order_id: int, evidence: str):
        super().__init__(
            message=f"Order {order_id} requires {evidence}",
            error_code=ErrorCode.MISSING_EVIDENCE,
            status_code=400,
            details={"order_id": order_id, "evidence": evidence}
        )


class CreditProcessingError(AppException):
    """Raised when delivery credits could not be posted; the transition was aborted"""

    def __init__(self, order_id: int, reason: str):
        super().__init__(
            message=f"Credits for order {order_id} could not be processed, retry the delivery",
            error_code=ErrorCode.CREDIT_PROCESSING_FAILED,
            status_code=503,
            details={"order_id": order_id, "reason": reason, "retry": True}
        )


# ==================== Credits ====================


class CreditException(AppException):
    """Base exception for credit ledger errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 400,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )


class UnknownAccountError(CreditException):
    """Raised when a credit account is required but does not exist"""

    def __init__(self, entity_type: str, entity_id: int):
        super().__init__(
            message=f"No credit account for {entity_type} {entity_id}",
            error_code=ErrorCode.UNKNOWN_ACCOUNT,
            status_code=404,
            details={"entity_type": entity_type, "entity_id": entity_id}
        )


class InsufficientCreditError(CreditException):
    """Raised when a debit would take a non-negative-only account below zero"""

    def __init__(
        self,
        entity_type: str,
        entity_id: int,
        current_balance: int,
        required_amount: int
    ):
        super().__init__(
            message=f"Insufficient credit for {entity_type} {entity_id}",
            error_code=ErrorCode.INSUFFICIENT_CREDIT,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_balance": current_balance,
                "required_amount": required_amount,
            }
        )


class RechargeCodeNotFoundError(CreditException):
    def __init__(self, code: str):
        super().__init__(
            message="Recharge code not found",
            error_code=ErrorCode.CODE_NOT_FOUND,
            status_code=404,
            details={"code": code}
        )


class RechargeCodeAlreadyRedeemedError(CreditException):
    def __init__(self, code: str):
        super().__init__(
            message="Recharge code was already redeemed",
            error_code=ErrorCode.CODE_ALREADY_REDEEMED,
            status_code=409,
            details={"code": code}
        )


class RechargeCodeVoidedError(CreditException):
    def __init__(self, code: str):
        super().__init__(
            message="Recharge code was voided",
            error_code=ErrorCode.CODE_VOIDED,
            status_code=409,
            details={"code": code}
        )


class LiquidationExistsError(CreditException):
    """Raised when a restaurant was already liquidated on the same business day"""

    def __init__(self, restaurant_id: int, business_date: str):
        super().__init__(
            message=f"Restaurant {restaurant_id} already has a liquidation for {business_date}",
            error_code=ErrorCode.LIQUIDATION_EXISTS,
            status_code=409,
            details={"restaurant_id": restaurant_id, "date": business_date}
        )


# ==================== Settlements / reports ====================


class OverlappingPeriodError(AppException):
    """Raised when a settlement period overlaps an existing one for the same entity"""

    def __init__(
        self,
        entity_type: str,
        entity_id: int,
        conflict_start: str,
        conflict_end: str,
        settlement_id: int | None = None
    ):
        super().__init__(
            message=(
                f"Settlement period overlaps an existing settlement "
                f"({conflict_start} to {conflict_end})"
            ),
            error_code=ErrorCode.OVERLAPPING_PERIOD,
            status_code=409,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "overlap_period": {"start": conflict_start, "end": conflict_end},
                "settlement_id": settlement_id,
            }
        )


class SettlementStatusError(AppException):
    """Raised for a settlement status change that is not allowed"""

    def __init__(self, settlement_id: int, current_status: str, target_status: str):
        super().__init__(
            message=(
                f"Settlement {settlement_id} cannot move from '{current_status}' "
                f"to '{target_status}'"
            ),
            error_code=ErrorCode.INVALID_SETTLEMENT_STATE,
            status_code=409,
            details={
                "settlement_id": settlement_id,
                "current_status": current_status,
                "target_status": target_status,
            }
        )


class InvalidReportStateError(AppException):
    """Raised when a daily cash report is not in a state that allows the operation"""

    def __init__(self, report_id: int | None, current_status: str, operation: str):
        super().__init__(
            message=f"Cash report in status '{current_status}' cannot be {operation}",
            error_code=ErrorCode.INVALID_REPORT_STATE,
            status_code=409,
            details={
                "report_id": report_id,
                "current_status": current_status,
                "operation": operation,
            }
        )


# ==================== External services ====================


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name

    @classmethod
    def from_response(
        cls,
        service_name: str,
        operation: str,
        response: Any,
        *,
        max_response_chars: int = 500
    ) -> "ExternalServiceException":
        """Build the error from an HTTP response (e.g. httpx.Response)"""
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            service_name=service_name,
            message=f"{service_name} {operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )


# ==================== State machine ====================


class StateMachineException(AppException):
    """Base exception for state machine errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 409,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )


class InvalidStateTransitionError(StateMachineException):
    """Raised when an order status transition is not allowed"""

    def __init__(self, current_state: str, target_state: str, order_id: int | None = None):
        super().__init__(
            message=f"Invalid transition from '{current_state}' to '{target_state}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            details={
                "current_state": current_state,
                "target_state": target_state,
                "order_id": order_id
            }
        )
