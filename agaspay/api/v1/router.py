"""API V1 Router"""

from fastapi import APIRouter

from agaspay.api.v1.endpoints import billing, payments

api_router = APIRouter()

api_router.include_router(billing.router, prefix="/billing", tags=["Billing"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
