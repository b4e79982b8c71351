"""Models Package - Export all models for easy imports"""

from agaspay.models.base import BaseModel, ConnectionScopedMixin
from agaspay.models.enums import *
from agaspay.models.payment import PendingPaymentMarker, PaymentRecord


__all__ = [
    # Base classes
    "BaseModel",
    "ConnectionScopedMixin",

    # Payments
    "PendingPaymentMarker",
    "PaymentRecord",
]
