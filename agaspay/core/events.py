"""Domain events published after a payment is reconciled"""

import inspect
from decimal import Decimal
from typing import Awaitable, Callable, List, Union

from pydantic import BaseModel

from agaspay.core.logging import get_logger

logger = get_logger(__name__)


class PaymentResolved(BaseModel):
    """
    A payment was applied to a bill.

    Consumers (summary caches, the portal's live views) refresh the bill
    from ``new_balance`` instead of trusting what they had cached.
    """
    bill_id: str
    connection_id: str
    new_balance: Decimal
    amount_applied: Decimal
    external_reference: str


PaymentResolvedHandler = Callable[[PaymentResolved], Union[None, Awaitable[None]]]


class EventBus:
    """In-process publish/subscribe for PaymentResolved."""

    def __init__(self) -> None:
        self._handlers: List[PaymentResolvedHandler] = []

    def on_payment_resolved(self, handler: PaymentResolvedHandler) -> Callable[[], None]:
        """Register a handler; returns a function that unregisters it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: PaymentResolved) -> None:
        # Runs after the payment is committed; handler failures are logged, not raised
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.error(
                    "PaymentResolved handler failed",
                    extra={"bill_id": event.bill_id, "external_reference": event.external_reference},
                    exc_info=True,
                )


# Global event bus instance
event_bus = EventBus()
