"""
Fee / coverage calculator client

The geographic fee service decides whether a drop-off point is covered and what
delivery fee applies. Calls go through the fee_service circuit breaker.
"""
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from orderflow.core.circuit_breaker import CircuitBreaker, get_fee_service_circuit_breaker
from orderflow.core.config import settings
from orderflow.core.exceptions import ExternalServiceException, ServiceTimeoutError
from orderflow.core.logging import get_logger

logger = get_logger(__name__)

SERVICE_NAME = "fee_service"


@dataclass(frozen=True)
class FeeQuote:
    has_coverage: bool
    base_fee_cents: int
    zone_id: Optional[str] = None


class FeeCalculator(Protocol):
    async def quote(self, restaurant_id: int, latitude: float, longitude: float) -> FeeQuote:
        ...


class HttpFeeCalculator:
    """POST {FEE_SERVICE_URL}/calculate -> {has_coverage, base_fee, zone_id}"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.FEE_SERVICE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.FEE_SERVICE_TIMEOUT_SECONDS
        self.circuit_breaker = circuit_breaker or get_fee_service_circuit_breaker()
        self._transport = transport

    async def quote(self, restaurant_id: int, latitude: float, longitude: float) -> FeeQuote:
        payload = {
            "restaurant_id": restaurant_id,
            "latitude": latitude,
            "longitude": longitude,
        }

        async def _calculate() -> FeeQuote:
            try:
                async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                    response = await client.post(f"{self.base_url}/calculate", json=payload)
            except httpx.TimeoutException:
                raise ServiceTimeoutError(SERVICE_NAME, self.timeout_seconds)
            except httpx.RequestError as exc:
                raise ExternalServiceException(
                    SERVICE_NAME,
                    f"{SERVICE_NAME} unreachable: {exc}",
                    details={"operation": "calculate"},
                )

            if response.status_code != 200:
                raise ExternalServiceException.from_response(SERVICE_NAME, "calculate", response)

            try:
                data = response.json()
                return FeeQuote(
                    has_coverage=bool(data["has_coverage"]),
                    base_fee_cents=int(data.get("base_fee") or 0),
                    zone_id=data.get("zone_id"),
                )
            except (ValueError, KeyError, TypeError):
                raise ExternalServiceException.from_response(SERVICE_NAME, "calculate", response)

        try:
            quote = await self.circuit_breaker.execute(_calculate)
        except ExternalServiceException as e:
            logger.error(
                "Fee service call failed",
                extra_data={"restaurant_id": restaurant_id, "error": str(e)},
            )
            raise

        logger.debug(
            "Fee quote received",
            extra_data={
                "restaurant_id": restaurant_id,
                "has_coverage": quote.has_coverage,
                "base_fee_cents": quote.base_fee_cents,
                "zone_id": quote.zone_id,
            },
        )
        return quote
