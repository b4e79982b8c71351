"""Billing endpoints - what a connection owes and how each bill is shown"""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from agaspay.api import deps
from agaspay.schemas.billing import BillingOverview
from agaspay.schemas.responses import SuccessResponse
from agaspay.services.billing_service import BillingService

router = APIRouter()


@router.get("/connections/{connection_id}", response_model=SuccessResponse[BillingOverview])
async def get_billing_summary(
    connection_id: str,
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    """Bills of a connection with their balances, rendered statuses and the amount due."""
    overview = await service.get_billing_summary(db, connection_id)
    return SuccessResponse(data=overview)
