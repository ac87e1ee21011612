"""
Transaction lifecycle engine for paid enrolments.

Orchestrates the three entry points of a PxPay purchase:

1. begin    - validate, record a pending transaction, obtain the PxPay redirect URI
2. confirm  - success callback: reconcile the result token, enrol when approved
3. abort    - failure callback: reconcile the result token, never enrol

Per transaction:

    pending --confirm(approved)-------> settled (approved) --grant--> done
    pending --confirm(declined)|abort-> settled (declined)

Any callback for a transaction that is already settled is rejected, not
reapplied. The TxnId returned by PxPay is the only key used to find the
transaction a callback belongs to.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Tuple

import structlog

from dps_enrol.config import RECOGNISED_CURRENCIES, Settings, get_settings
from dps_enrol.database.models import DpsTransaction
from dps_enrol.exceptions import (
    AlreadyEnrolled,
    AlreadyProcessed,
    AlreadySettled,
    EnrolmentClosed,
    EnrolmentUnavailable,
    GatewayError,
    GatewayErrorKind,
    InitiationFailed,
    InvalidAmount,
    InvalidCurrency,
    InvalidTransaction,
    MissingContext,
    PaymentFailure,
    PaymentUnsuccessful,
    TransactionNotFound,
    TransactionOwnerMismatch,
)
from dps_enrol.gateway import GenerateRequest, PxPayClient
from dps_enrol.monitoring.metrics import metrics
from dps_enrol.utils import (
    TXN_DATA_MAX_LENGTH,
    build_merchant_reference,
    clean_text,
    quantize_amount,
)
from dps_enrol.utils.sanitize import EMAIL_MAX_LENGTH

from .enrolment import (
    Course,
    EnrolmentDirectory,
    EnrolmentInstance,
    EnrolmentSink,
    Learner,
    enrolment_window,
    is_open,
)
from .store import NewTransaction, TransactionStore

logger = structlog.get_logger(__name__)

MINIMUM_COST = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Checkout:
    """A started payment: the pending transaction and where to send the user."""

    transaction_id: int
    redirect_url: str


@dataclass(frozen=True)
class Confirmation:
    """An approved payment and the enrolment it produced."""

    transaction_id: int
    user_id: int
    instance_id: int
    course_id: int
    time_start: Optional[datetime]
    time_end: Optional[datetime]


class EnrolmentEngine:
    """
    Paid enrolment through PxPay.

    All collaborators are injected; the engine keeps no per-user or
    per-transaction state between calls.
    """

    def __init__(
        self,
        store: TransactionStore,
        directory: EnrolmentDirectory,
        sink: EnrolmentSink,
        gateway: Optional[PxPayClient] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialize the engine.

        Args:
            store: Transaction store
            directory: Lookup of enrolment instances, courses and users
            sink: Grants course access after an approved payment
            gateway: Optional PxPay client (built from settings if not provided)
            settings: Optional settings (cached settings are used if not provided)
            clock: Source of the current time
        """
        self.settings = settings or get_settings()
        self.store = store
        self.directory = directory
        self.sink = sink
        self.gateway = gateway or PxPayClient(self.settings)
        self.clock = clock

    async def _resolve_context(
        self, instance_id: int, user_id: int
    ) -> Tuple[EnrolmentInstance, Course, Learner]:
        instance = await self.directory.get_instance(instance_id)
        if instance is None:
            raise MissingContext(f"Enrolment instance {instance_id} not found")
        course = await self.directory.get_course(instance.course_id)
        if course is None:
            raise MissingContext(f"Course {instance.course_id} not found")
        user = await self.directory.get_user(user_id)
        if user is None:
            raise MissingContext(f"User {user_id} not found")
        return instance, course, user

    def _resolve_cost(self, instance: EnrolmentInstance) -> Decimal:
        """Instance cost, or the site default when the instance has none."""
        try:
            cost = quantize_amount(instance.cost)
            if cost <= 0:
                cost = quantize_amount(self.settings.default_cost)
        except ValueError as e:
            raise InvalidAmount(str(e)) from e
        if cost < MINIMUM_COST:
            raise InvalidAmount(
                f"Enrolment instance {instance.id} has no cost; use another enrolment method"
            )
        return cost

    async def begin(self, instance_id: int, user_id: int) -> Checkout:
        """
        Start a PxPay purchase of an enrolment.

        Args:
            instance_id: Enrolment instance being purchased
            user_id: Purchasing user

        Returns:
            Checkout: New transaction id and the PxPay payment page URI

        Raises:
            ValidationError: If the purchase is not possible; nothing is recorded
            StoreWriteFailed: If the transaction could not be recorded
            InitiationFailed: If PxPay did not issue a payment page; the
                pending transaction is left in place
        """
        log = logger.bind(instance_id=instance_id, user_id=user_id)
        log.info("enrolment_purchase_started")

        instance, course, user = await self._resolve_context(instance_id, user_id)

        currency = (instance.currency or self.settings.default_currency).upper()
        if currency not in RECOGNISED_CURRENCIES:
            log.warning("enrolment_purchase_invalid_currency", currency=currency)
            raise InvalidCurrency(currency)

        now = self.clock()
        if not is_open(instance, now):
            raise EnrolmentClosed(f"Enrolment instance {instance.id} is not open for enrolment")
        if await self.directory.is_enrolled(user.id, instance.id):
            raise AlreadyEnrolled(f"User {user.id} is already enrolled in instance {instance.id}")

        cost = self._resolve_cost(instance)

        new = NewTransaction(
            instance_id=instance.id,
            user_id=user.id,
            course_id=course.id,
            cost=cost,
            currency=currency,
            merchant_reference=build_merchant_reference(
                self.settings.site_shortname,
                f"{course.id}:{course.shortname}",
                f"{user.id}:{user.lastname} {user.firstname}",
            ),
            email=clean_text(user.email, max_length=EMAIL_MAX_LENGTH),
            txn_data1=clean_text(f"{course.id}: {course.fullname}", max_length=TXN_DATA_MAX_LENGTH),
            txn_data2=clean_text(f"{user.id}: {user.fullname}", max_length=TXN_DATA_MAX_LENGTH),
            txn_data3="",
        )
        transaction_id = await self.store.create(new)
        log = log.bind(transaction_id=transaction_id)

        request = GenerateRequest(
            transaction_id=transaction_id,
            amount=new.cost,
            currency=new.currency,
            merchant_reference=new.merchant_reference,
            email=new.email,
            txn_data1=new.txn_data1,
            txn_data2=new.txn_data2,
            txn_data3=new.txn_data3,
            url_success=self.settings.success_url,
            url_fail=self.settings.fail_url,
        )
        try:
            redirect_url = await self.gateway.initiate(request)
        except GatewayError as e:
            log.error("enrolment_purchase_initiation_failed", kind=e.kind.value, error=e.message)
            raise InitiationFailed(transaction_id, e) from e

        metrics.record_transaction_started(currency, float(cost))
        log.info("enrolment_purchase_redirect_issued", cost=str(cost), currency=currency)
        return Checkout(transaction_id=transaction_id, redirect_url=redirect_url)

    async def _reconcile(
        self,
        operation: str,
        result_token: str,
        session_user_id: Optional[int],
    ) -> DpsTransaction:
        """
        Decrypt a callback token and settle the transaction it belongs to.

        Shared by confirm and abort. Nothing is written unless every check
        passes.
        """
        try:
            response = await self.gateway.process_response(result_token)
        except GatewayError as e:
            if e.kind is GatewayErrorKind.INVALID_RESPONSE:
                metrics.record_callback_rejected(operation, "invalid")
                logger.warning("callback_invalid", operation=operation)
                raise InvalidTransaction(
                    "PxPay did not recognise the payment response"
                ) from e
            raise

        transaction_id = response.transaction_id
        log = logger.bind(operation=operation, transaction_id=transaction_id)

        transaction = await self.store.get(transaction_id)
        if transaction is None:
            metrics.record_callback_rejected(operation, "not_found")
            log.warning("callback_transaction_not_found")
            raise TransactionNotFound(transaction_id)

        if transaction.is_settled:
            metrics.record_callback_rejected(operation, "already_processed")
            log.warning("callback_already_processed")
            raise AlreadyProcessed(transaction_id)

        if session_user_id is not None and session_user_id != transaction.user_id:
            metrics.record_callback_rejected(operation, "owner_mismatch")
            log.warning(
                "callback_owner_mismatch",
                session_user_id=session_user_id,
                user_id=transaction.user_id,
            )
            raise TransactionOwnerMismatch(
                f"Transaction {transaction_id} does not belong to the current user",
                transaction_id=transaction_id,
            )

        try:
            settled = await self.store.settle(transaction_id, response)
        except AlreadySettled as e:
            metrics.record_callback_rejected(operation, "already_processed")
            raise AlreadyProcessed(transaction_id) from e

        metrics.record_settlement(operation, settled.is_approved)
        return settled

    async def confirm(
        self, result_token: str, session_user_id: Optional[int] = None
    ) -> Confirmation:
        """
        Handle the PxPay success callback.

        Args:
            result_token: ``result`` query parameter of the callback
            session_user_id: Optional id of the user whose browser made the
                callback; when given it must own the transaction

        Returns:
            Confirmation: The enrolment granted

        Raises:
            InvalidTransaction: PxPay rejected the token; nothing is recorded
            TransactionNotFound: The TxnId matches no transaction
            AlreadyProcessed: The transaction was settled before
            TransactionOwnerMismatch: The session user does not own the transaction
            PaymentUnsuccessful: The payment was settled but not approved
            EnrolmentUnavailable: Approved, but the enrolment instance is gone or disabled
            GatewayError: PxPay unreachable or replied with a malformed document
        """
        transaction = await self._reconcile("confirm", result_token, session_user_id)
        log = logger.bind(transaction_id=transaction.id)

        if not transaction.is_approved:
            log.info("payment_unsuccessful", response_text=transaction.response_text)
            raise PaymentUnsuccessful(
                f"Payment for transaction {transaction.id} was not approved: "
                f"{transaction.response_text}",
                transaction_id=transaction.id,
                response_text=transaction.response_text,
            )

        instance = await self.directory.get_instance(transaction.instance_id)
        if instance is None or not instance.enabled:
            log.error("approved_payment_instance_unavailable", instance_id=transaction.instance_id)
            raise EnrolmentUnavailable(
                f"Enrolment instance {transaction.instance_id} is not available; "
                f"payment for transaction {transaction.id} needs manual enrolment",
                transaction_id=transaction.id,
                response_text=transaction.response_text,
            )

        enrol_period = (
            instance.enrol_period
            if instance.enrol_period is not None
            else self.settings.default_enrol_period
        )
        time_start, time_end = enrolment_window(enrol_period, self.clock())

        await self.sink.grant(transaction.user_id, transaction.instance_id, time_start, time_end)
        metrics.record_enrolment_granted()
        log.info(
            "enrolment_granted",
            user_id=transaction.user_id,
            instance_id=transaction.instance_id,
            time_end=time_end.isoformat() if time_end else None,
        )

        return Confirmation(
            transaction_id=transaction.id,
            user_id=transaction.user_id,
            instance_id=transaction.instance_id,
            course_id=transaction.course_id,
            time_start=time_start,
            time_end=time_end,
        )

    async def abort(self, result_token: str, session_user_id: Optional[int] = None) -> None:
        """
        Handle the PxPay failure callback.

        The response is reconciled and recorded like a success callback, but
        no enrolment is granted whatever PxPay reports.

        Raises:
            PaymentFailure: Always, once the transaction is settled; carries
                PxPay's response text
            InvalidTransaction, TransactionNotFound, AlreadyProcessed,
            TransactionOwnerMismatch, GatewayError: as for ``confirm``
        """
        transaction = await self._reconcile("abort", result_token, session_user_id)
        logger.info(
            "payment_aborted",
            transaction_id=transaction.id,
            response_text=transaction.response_text,
        )
        raise PaymentFailure(
            f"Payment failed: {transaction.response_text}",
            transaction_id=transaction.id,
            response_text=transaction.response_text,
        )
