"""PxPay gateway integration."""
from .messages import GenerateRequest, ProcessResponseResult
from .pxpay_client import PxPayClient

__all__ = ["GenerateRequest", "ProcessResponseResult", "PxPayClient"]
