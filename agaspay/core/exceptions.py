"""Billing Engine Exceptions

Every error carries a machine-readable ``code`` (used in the API error
envelope) and the HTTP status the API layer answers with.
"""

from typing import Any, Dict, Optional


class BillingEngineError(Exception):
    """Base class for all billing and payment errors"""

    code: str = "BILLING_ERROR"
    status_code: int = 400

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def details(self) -> Optional[Dict[str, Any]]:
        """Extra fields for the API error envelope"""
        return None


class MalformedBillError(BillingEngineError):
    """Upstream bill record cannot be turned into a Bill"""

    code = "MALFORMED_BILL"
    status_code = 502

    def __init__(self, message: str, bill_id: Optional[str] = None, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.bill_id = bill_id
        self.field = field

    def details(self) -> Optional[Dict[str, Any]]:
        return {"bill_id": self.bill_id, "field": self.field}


class PaymentValidationError(BillingEngineError):
    """User-supplied payment input is invalid (amount, type, method)"""

    code = "PAYMENT_VALIDATION_ERROR"
    status_code = 422


class NoBillFoundError(BillingEngineError):
    """No payable bill exists for the connection"""

    code = "NO_BILL_FOUND"
    status_code = 404


class PaymentNotAllowedError(BillingEngineError):
    """Connection lifecycle state does not allow online payment"""

    code = "PAYMENT_NOT_ALLOWED"
    status_code = 409


class PaymentAlreadyPendingError(BillingEngineError):
    """A checkout is still pending for the connection"""

    code = "PAYMENT_ALREADY_PENDING"
    status_code = 409

    def __init__(self, message: str, connection_id: str, external_reference: str) -> None:
        super().__init__(message)
        self.connection_id = connection_id
        self.external_reference = external_reference

    def details(self) -> Optional[Dict[str, Any]]:
        return {"connection_id": self.connection_id, "external_reference": self.external_reference}


class GatewayError(BillingEngineError):
    """Payment initiation or status lookup failed at the payment provider"""

    code = "GATEWAY_ERROR"
    status_code = 502


class UpstreamError(BillingEngineError):
    """Billing backend could not be reached or answered with garbage"""

    code = "UPSTREAM_ERROR"
    status_code = 502


class PaymentDeclinedError(BillingEngineError):
    """Payment provider reported the checkout as failed; user may retry"""

    code = "PAYMENT_FAILED"
    status_code = 402


class ReconciliationTimeoutError(BillingEngineError):
    """Pending checkout outlived the retention window without resolution"""

    code = "RECONCILIATION_TIMEOUT"
    status_code = 408


class WorkflowStateError(BillingEngineError):
    """Operation not permitted in the workflow's current step"""

    code = "INVALID_WORKFLOW_STEP"
    status_code = 409


class WorkflowCancelledError(WorkflowStateError):
    """Workflow was torn down; late results are discarded"""

    code = "WORKFLOW_CANCELLED"
    status_code = 410
