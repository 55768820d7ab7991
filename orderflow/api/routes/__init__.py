"""
API Routes
"""
from fastapi import APIRouter

from orderflow.api.routes.orders import router as orders_router
from orderflow.api.routes.rider import router as rider_router
from orderflow.api.routes.settlements import router as settlements_router
from orderflow.api.routes.credits import router as credits_router
from orderflow.api.routes.recharge_codes import router as recharge_codes_router
from orderflow.api.routes.liquidations import router as liquidations_router
from orderflow.api.routes.cash_reports import router as cash_reports_router

router = APIRouter()

router.include_router(orders_router, prefix="/orders", tags=["orders"])
router.include_router(rider_router, prefix="/rider", tags=["rider"])
router.include_router(settlements_router, prefix="/settlements", tags=["settlements"])
router.include_router(credits_router, prefix="/credits", tags=["credits"])
router.include_router(recharge_codes_router, prefix="/recharge-codes", tags=["recharge-codes"])
router.include_router(liquidations_router, prefix="/liquidations", tags=["liquidations"])
router.include_router(cash_reports_router, prefix="/cash-reports", tags=["cash-reports"])
