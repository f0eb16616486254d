"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from clubreferral.api.referrals import router as referrals_router
from clubreferral.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(referrals_router)
api_router.include_router(health_router)
