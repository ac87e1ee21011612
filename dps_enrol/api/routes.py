"""
API routes for PxPay enrolment purchases.

Three entry points drive the transaction lifecycle:

- POST /enrolments/{instance_id}/checkout   start a purchase
- GET  /enrol/dps/confirm?result=...        PxPay success redirect
- GET  /enrol/dps/fail?result=...           PxPay failure redirect
"""
import time
from typing import Any, Dict, List, Optional, Tuple, Type

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from dps_enrol.core import EnrolmentEngine
from dps_enrol.exceptions import (
    AlreadyProcessed,
    EnrolmentError,
    EnrolmentUnavailable,
    GatewayError,
    InitiationFailed,
    InvalidTransaction,
    MissingContext,
    PaymentFailure,
    PaymentUnsuccessful,
    StoreWriteFailed,
    TransactionNotFound,
    TransactionOwnerMismatch,
    ValidationError,
)

from .schemas import (
    CheckoutRequest,
    CheckoutResponse,
    ConfirmationResponse,
    ErrorResponse,
    HealthCheckResponse,
)

logger = structlog.get_logger(__name__)

enrolment_router = APIRouter(prefix="/enrolments", tags=["enrolments"])
callback_router = APIRouter(prefix="/enrol/dps", tags=["callbacks"])
monitoring_router = APIRouter(tags=["monitoring"])

# Most specific first
_STATUS_CODES: List[Tuple[Type[EnrolmentError], int]] = [
    (MissingContext, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InitiationFailed, status.HTTP_502_BAD_GATEWAY),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
    (StoreWriteFailed, status.HTTP_503_SERVICE_UNAVAILABLE),
    (InvalidTransaction, status.HTTP_400_BAD_REQUEST),
    (TransactionNotFound, status.HTTP_404_NOT_FOUND),
    (AlreadyProcessed, status.HTTP_409_CONFLICT),
    (TransactionOwnerMismatch, status.HTTP_403_FORBIDDEN),
    (EnrolmentUnavailable, status.HTTP_409_CONFLICT),
    (PaymentUnsuccessful, status.HTTP_402_PAYMENT_REQUIRED),
    (PaymentFailure, status.HTTP_402_PAYMENT_REQUIRED),
]


def _http_error(exc: EnrolmentError) -> HTTPException:
    """Translate an enrolment error into an HTTP error carrying its context."""
    status_code = next(
        (code for error_class, code in _STATUS_CODES if isinstance(exc, error_class)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    detail = ErrorResponse(
        error=type(exc).__name__,
        message=exc.message,
        transaction_id=exc.transaction_id,
        response_text=getattr(exc, "response_text", None),
    )
    return HTTPException(status_code=status_code, detail=detail.model_dump())


def get_enrolment_engine(request: Request) -> EnrolmentEngine:
    """Dependency returning the engine configured on the application."""
    engine: Optional[EnrolmentEngine] = getattr(request.app.state, "enrolment_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Enrolment engine is not configured",
        )
    return engine


@enrolment_router.post(
    "/{instance_id}/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start an enrolment purchase",
    description="Record a pending transaction and return the PxPay payment page URL",
)
async def checkout(
    instance_id: int,
    request: CheckoutRequest,
    engine: EnrolmentEngine = Depends(get_enrolment_engine),
) -> Dict[str, Any]:
    """Start a PxPay purchase of an enrolment instance."""
    try:
        result = await engine.begin(instance_id, request.user_id)
    except EnrolmentError as e:
        logger.warning(
            "api_checkout_error",
            instance_id=instance_id,
            user_id=request.user_id,
            error_type=type(e).__name__,
            error=e.message,
        )
        raise _http_error(e)

    return {"transaction_id": result.transaction_id, "redirect_url": result.redirect_url}


@callback_router.get(
    "/confirm",
    response_model=ConfirmationResponse,
    summary="PxPay success callback",
    description="Reconcile an approved PxPay result and enrol the user",
)
async def confirm_callback(
    result: str = Query(..., min_length=1, description="Encrypted PxPay result token"),
    session_user_id: Optional[int] = Header(default=None, alias="X-User-Id"),
    engine: EnrolmentEngine = Depends(get_enrolment_engine),
) -> Dict[str, Any]:
    """Handle the redirect PxPay sends after a successful payment."""
    try:
        confirmation = await engine.confirm(result, session_user_id=session_user_id)
    except EnrolmentError as e:
        logger.warning(
            "api_confirm_error",
            transaction_id=e.transaction_id,
            error_type=type(e).__name__,
            error=e.message,
        )
        raise _http_error(e)

    return {
        "status": "enrolled",
        "transaction_id": confirmation.transaction_id,
        "user_id": confirmation.user_id,
        "instance_id": confirmation.instance_id,
        "course_id": confirmation.course_id,
        "time_start": confirmation.time_start,
        "time_end": confirmation.time_end,
    }


@callback_router.get(
    "/fail",
    status_code=status.HTTP_402_PAYMENT_REQUIRED,
    response_model=ErrorResponse,
    summary="PxPay failure callback",
    description="Record a failed PxPay result; always reports the payment as failed",
)
async def fail_callback(
    result: str = Query(..., min_length=1, description="Encrypted PxPay result token"),
    session_user_id: Optional[int] = Header(default=None, alias="X-User-Id"),
    engine: EnrolmentEngine = Depends(get_enrolment_engine),
) -> Dict[str, Any]:
    """Handle the redirect PxPay sends after a failed or cancelled payment."""
    try:
        await engine.abort(result, session_user_id=session_user_id)
    except PaymentFailure as e:
        logger.info("api_payment_failure", transaction_id=e.transaction_id)
        return _http_error(e).detail
    except EnrolmentError as e:
        logger.warning(
            "api_fail_callback_error",
            transaction_id=e.transaction_id,
            error_type=type(e).__name__,
            error=e.message,
        )
        raise _http_error(e)

    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failure callback completed without a payment outcome",
    )


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check database connectivity",
)
async def health(request: Request) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is None:
        return {"status": "unhealthy", "checks": {"database": "not configured"}}

    start_time = time.time()
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health_check_database_error", error=str(e))
        return {"status": "unhealthy", "checks": {"database": str(e)}}

    return {
        "status": "healthy",
        "checks": {"database": {"status": "healthy", "latency_seconds": time.time() - start_time}},
    }


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
