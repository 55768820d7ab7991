"""
Health checks - liveness needs nothing, readiness checks the store and the fee service
"""
from typing import Any

import httpx
from sqlalchemy import text

from orderflow.core.circuit_breaker import get_fee_service_circuit_breaker
from orderflow.core.config import settings
from orderflow.core.logging import get_logger
from orderflow.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# No infrastructure details in responses
_ERROR_DB = "error: db_unavailable"
_ERROR_FEE_SERVICE = "error: fee_service_unavailable"
_ERROR_FEE_SERVICE_CIRCUIT_OPEN = "error: fee_service_circuit_open"


async def _check_db() -> str:
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("Database health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_fee_service() -> str:
    breaker = get_fee_service_circuit_breaker()
    if breaker.is_open:
        logger.warning("Fee service circuit open", extra_data=breaker.snapshot())
        return _ERROR_FEE_SERVICE_CIRCUIT_OPEN
    try:
        async with httpx.AsyncClient(timeout=settings.FEE_SERVICE_TIMEOUT_SECONDS) as client:
            response = await client.get(f"{settings.FEE_SERVICE_URL}/health")
        if response.status_code != 200:
            logger.warning(
                "Fee service health check returned bad status",
                extra_data={"status_code": response.status_code},
            )
            return _ERROR_FEE_SERVICE
        return _CHECK_OK
    except httpx.HTTPError as e:
        logger.warning("Fee service health check failed", extra_data={"error": str(e)})
        return _ERROR_FEE_SERVICE


async def check_readiness() -> dict[str, Any]:
    """{"status": healthy|degraded, "db": ..., "fee_service": ...}"""
    checks = {
        "db": await _check_db(),
        "fee_service": await _check_fee_service(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED, **checks}
