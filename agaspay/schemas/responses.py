"""Response envelopes shared by every endpoint"""

from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """
    Example:
        {"success": true, "data": {"outcome": "resolved_success", ...}, "message": "resolved_success"}
    """
    success: bool = True
    data: Optional[T] = None
    message: str = "Operation successful"


class ErrorDetail(BaseModel):
    """Machine-readable code plus a message the portal can show as-is"""
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """
    Example:
        {
            "success": false,
            "error": {
                "code": "PAYMENT_ALREADY_PENDING",
                "message": "A payment for this connection is still being processed",
                "details": {"connection_id": "conn-1", "external_reference": "cs_live_..."}
            }
        }
    """
    success: bool = False
    error: ErrorDetail
