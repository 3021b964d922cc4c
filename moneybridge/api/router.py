"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from moneybridge.api.income import router as income_router
from moneybridge.api.pms_bridge import router as pms_bridge_router
from moneybridge.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(income_router)
api_router.include_router(pms_bridge_router)
api_router.include_router(health_router)
