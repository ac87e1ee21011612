"""
PxPay API client.

Implements:
- GenerateRequest (start a hosted payment, obtain the redirect URI)
- ProcessResponse (decrypt the callback ``result`` token)
- Transport failure classification
- Request timeout

The client never retries; a failed call is reported to the caller as a
``GatewayError`` and the caller decides what to do.
"""
import time
from typing import Optional

import httpx
import structlog

from dps_enrol.config import Settings, get_settings
from dps_enrol.exceptions import GatewayError, GatewayErrorKind
from dps_enrol.monitoring.metrics import metrics

from .messages import (
    GenerateRequest,
    ProcessResponseResult,
    build_generate_request,
    build_process_response,
    parse_generate_reply,
    parse_process_reply,
)

logger = structlog.get_logger(__name__)


class PxPayClient:
    """
    Client for the DPS PxPay access endpoint.

    Holds no state between calls apart from configuration and an optional
    shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize PxPay client.

        Args:
            settings: Optional settings (cached settings are used if not provided)
            http_client: Optional shared HTTP client; a short-lived client is
                opened per request otherwise
        """
        self.settings = settings or get_settings()
        self.http_client = http_client

        logger.info("pxpay_client_initialized", pxpay_url=self.settings.pxpay_url)

    async def _post(self, operation: str, body: bytes) -> bytes:
        """
        POST an XML message to PxPay and return the raw reply body.

        Raises:
            GatewayError: UNREACHABLE on transport failure, timeout or HTTP error status
        """
        start_time = time.time()
        headers = {"Content-Type": "application/xml; charset=utf-8"}

        try:
            if self.http_client is not None:
                response = await self.http_client.post(
                    self.settings.pxpay_url,
                    content=body,
                    headers=headers,
                    timeout=self.settings.pxpay_timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self.settings.pxpay_timeout) as client:
                    response = await client.post(
                        self.settings.pxpay_url, content=body, headers=headers
                    )
            response.raise_for_status()

        except httpx.TimeoutException as e:
            self._record_failure(operation, start_time, GatewayErrorKind.UNREACHABLE)
            raise GatewayError(
                f"PxPay request timed out after {self.settings.pxpay_timeout}s",
                GatewayErrorKind.UNREACHABLE,
                original_error=e,
            ) from e

        except httpx.HTTPStatusError as e:
            self._record_failure(operation, start_time, GatewayErrorKind.UNREACHABLE)
            raise GatewayError(
                f"PxPay returned HTTP {e.response.status_code}",
                GatewayErrorKind.UNREACHABLE,
                original_error=e,
            ) from e

        except httpx.HTTPError as e:
            self._record_failure(operation, start_time, GatewayErrorKind.UNREACHABLE)
            raise GatewayError(
                f"Cannot reach PxPay at {self.settings.pxpay_url}: {e}",
                GatewayErrorKind.UNREACHABLE,
                original_error=e,
            ) from e

        return response.content

    @staticmethod
    def _record_failure(operation: str, start_time: float, kind: GatewayErrorKind) -> None:
        metrics.record_pxpay_call(operation, "error", time.time() - start_time)
        metrics.record_pxpay_error(kind.value)
        logger.error("pxpay_request_failed", operation=operation, kind=kind.value)

    async def initiate(self, request: GenerateRequest) -> str:
        """
        Start a hosted payment.

        Args:
            request: Request-time transaction fields

        Returns:
            str: URI of the PxPay payment page to redirect the user to

        Raises:
            GatewayError: If PxPay is unreachable, replies with a malformed
                document, or rejects the request
        """
        logger.info(
            "pxpay_generate_request",
            transaction_id=request.transaction_id,
            currency=request.currency,
        )
        start_time = time.time()
        body = build_generate_request(
            self.settings.pxpay_user_id, self.settings.pxpay_key, request
        )
        reply = await self._post("generate_request", body)

        try:
            uri = parse_generate_reply(reply)
        except GatewayError as e:
            self._record_failure("generate_request", start_time, e.kind)
            raise

        metrics.record_pxpay_call("generate_request", "success", time.time() - start_time)
        logger.info("pxpay_request_generated", transaction_id=request.transaction_id)
        return uri

    async def process_response(self, result_token: str) -> ProcessResponseResult:
        """
        Decrypt the ``result`` token PxPay appended to a callback URL.

        Args:
            result_token: Opaque token from the success or fail redirect

        Returns:
            ProcessResponseResult: Correlation id and response-time fields

        Raises:
            GatewayError: If PxPay is unreachable, replies with a malformed
                document, or reports the token as invalid
        """
        start_time = time.time()
        body = build_process_response(
            self.settings.pxpay_user_id, self.settings.pxpay_key, result_token
        )
        reply = await self._post("process_response", body)

        try:
            result = parse_process_reply(reply)
        except GatewayError as e:
            self._record_failure("process_response", start_time, e.kind)
            raise

        metrics.record_pxpay_call("process_response", "success", time.time() - start_time)
        logger.info(
            "pxpay_response_processed",
            transaction_id=result.transaction_id,
            success=result.success,
            response_text=result.response_text,
        )
        return result
