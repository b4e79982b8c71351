"""API Dependencies"""

from typing import Optional

from fastapi import Depends

from agaspay.core.events import EventBus, event_bus
from agaspay.database import get_db
from agaspay.services.billing_api import BillingApiClient
from agaspay.services.billing_service import BillingService
from agaspay.services.payment_service import PaymentService, WorkflowRegistry
from agaspay.services.reconciliation_service import ReconciliationService

# Process-wide instances, created on first use
_billing_api: Optional[BillingApiClient] = None
_billing_service: Optional[BillingService] = None
_workflow_registry = WorkflowRegistry()


def get_event_bus() -> EventBus:
    return event_bus


def get_billing_api() -> BillingApiClient:
    global _billing_api
    if _billing_api is None:
        _billing_api = BillingApiClient()
    return _billing_api


async def close_billing_api() -> None:
    global _billing_api, _billing_service
    if _billing_service is not None:
        _billing_service.close()
    if _billing_api is not None:
        await _billing_api.aclose()
    _billing_api = None
    _billing_service = None


def get_workflow_registry() -> WorkflowRegistry:
    return _workflow_registry


def get_billing_service(
    api: BillingApiClient = Depends(get_billing_api),
    events: EventBus = Depends(get_event_bus),
) -> BillingService:
    """Shared so the summary cache outlives a single request."""
    global _billing_service
    if _billing_service is None or _billing_service.api is not api or _billing_service.events is not events:
        if _billing_service is not None:
            _billing_service.close()
        _billing_service = BillingService(api, events)
    return _billing_service


def get_reconciliation_service(
    api: BillingApiClient = Depends(get_billing_api),
    events: EventBus = Depends(get_event_bus),
) -> ReconciliationService:
    return ReconciliationService(api, events)


def get_payment_service(
    api: BillingApiClient = Depends(get_billing_api),
    reconciler: ReconciliationService = Depends(get_reconciliation_service),
    registry: WorkflowRegistry = Depends(get_workflow_registry),
) -> PaymentService:
    return PaymentService(api, reconciler, registry)
