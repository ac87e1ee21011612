"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    """Request schema for starting an enrolment purchase."""

    user_id: int = Field(..., gt=0, description="Purchasing user id")

    model_config = {"json_schema_extra": {"examples": [{"user_id": 42}]}}


class CheckoutResponse(BaseModel):
    """Response schema for a started purchase."""

    transaction_id: int = Field(..., description="Pending transaction id (PxPay TxnId)")
    redirect_url: str = Field(..., description="PxPay hosted payment page")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "transaction_id": 1017,
                    "redirect_url": "https://sec.paymentexpress.com/pxpay/pxpay.aspx?userid=Acme&request=v5abc",
                }
            ]
        }
    }


class ConfirmationResponse(BaseModel):
    """Response schema for an approved payment."""

    status: str = Field(default="enrolled")
    transaction_id: int
    user_id: int
    instance_id: int
    course_id: int
    time_start: Optional[datetime] = Field(default=None, description="Enrolment start (None = unlimited)")
    time_end: Optional[datetime] = Field(default=None, description="Enrolment end (None = unlimited)")


class ErrorResponse(BaseModel):
    """Error body returned for every failed enrolment operation."""

    error: str = Field(..., description="Error class name")
    message: str
    transaction_id: Optional[int] = None
    response_text: Optional[str] = Field(default=None, description="PxPay ResponseText")


class HealthCheckResponse(BaseModel):
    status: str
    checks: Dict[str, Any] = Field(default_factory=dict)
