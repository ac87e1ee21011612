"""FastAPI application and routes."""
from .main import create_app
from .schemas import CheckoutRequest, CheckoutResponse, ConfirmationResponse, ErrorResponse

__all__ = [
    "create_app",
    "CheckoutRequest",
    "CheckoutResponse",
    "ConfirmationResponse",
    "ErrorResponse",
]
