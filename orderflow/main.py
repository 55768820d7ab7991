"""
Orderflow - FastAPI application

Routers live under /api; the liveness and readiness checks sit at the root so
load balancers reach them without credentials.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from orderflow.api.routes import router as api_router
from orderflow.core.config import settings
from orderflow.core.logging import get_logger, setup_logging
from orderflow.core.middleware import CORRELATION_HEADER, setup_exception_handlers, setup_middleware
from orderflow.db.database import Base, engine
from orderflow.domain.services.health_service import check_readiness

setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME,
)

logger = get_logger(__name__)

_DEV_ORIGINS = ["http://localhost", "http://localhost:3000", "http://127.0.0.1:3000"]

_OPENAPI_TAGS = [
    {"name": "orders", "description": "Order creation, lookup and lifecycle transitions."},
    {"name": "rider", "description": "Rider self-service on the order they are carrying."},
    {"name": "settlements", "description": "Periodic rider and restaurant settlements, with Excel export."},
    {"name": "credits", "description": "Credit accounts: balances, history, redemptions and adjustments."},
    {"name": "recharge-codes", "description": "Single-use prepaid codes for rider credit."},
    {"name": "liquidations", "description": "Payouts of restaurant credit balances."},
    {"name": "cash-reports", "description": "Daily rider cash declarations and their review."},
    {"name": "Health", "description": "Liveness and readiness checks."},
]


def _parse_allowed_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info(
        "Starting application",
        extra_data={"app_name": settings.APP_NAME, "timezone": settings.BUSINESS_TIMEZONE},
    )
    # Schema management beyond create_all belongs to migrations
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()
    logger.info("Database connections disposed")


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Order lifecycle, credit ledger and settlement service for a food-delivery platform.",
    openapi_tags=_OPENAPI_TAGS,
    lifespan=lifespan,
)

setup_middleware(app, debug=settings.DEBUG)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS) or (_DEV_ORIGINS if settings.DEBUG else [])
if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", CORRELATION_HEADER],
        expose_headers=[CORRELATION_HEADER, "Retry-After"],
    )

app.include_router(api_router, prefix="/api")


@app.get("/health", summary="Liveness check", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Process is up; dependencies are not touched"""
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness check",
    tags=["Health"],
    responses={
        200: {"description": "Database and fee service reachable"},
        503: {
            "description": "At least one dependency unavailable",
            "content": {
                "application/json": {
                    "example": {"status": "degraded", "db": "ok", "fee_service": "error: fee_service_circuit_open"}
                }
            },
        },
    },
)
async def readiness_check() -> JSONResponse:
    result = await check_readiness()
    return JSONResponse(content=result, status_code=200 if result["status"] == "healthy" else 503)
