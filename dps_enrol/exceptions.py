"""
Exception hierarchy for the enrolment transaction lifecycle.

EnrolmentError
├── ValidationError            local checks; the gateway is never contacted
│   ├── MissingContext
│   ├── InvalidCurrency
│   ├── InvalidAmount
│   ├── EnrolmentClosed
│   └── AlreadyEnrolled
├── GatewayError               PxPay transport / protocol failures
├── InitiationFailed           begin() could not obtain a redirect URI
├── StoreError                 transaction persistence
│   ├── StoreWriteFailed
│   └── AlreadySettled
└── ReconciliationError        callback reconciliation outcomes
    ├── InvalidTransaction
    ├── TransactionNotFound
    ├── AlreadyProcessed
    ├── TransactionOwnerMismatch
    ├── EnrolmentUnavailable
    ├── PaymentUnsuccessful
    └── PaymentFailure
"""
from enum import Enum
from typing import Optional


class EnrolmentError(Exception):
    """Base exception for DPS enrolment errors."""

    def __init__(self, message: str, transaction_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.transaction_id = transaction_id


class ValidationError(EnrolmentError):
    """Raised when a purchase request fails local validation."""

    pass


class MissingContext(ValidationError):
    """Raised when the enrolment instance, course or user cannot be resolved."""

    pass


class InvalidCurrency(ValidationError):
    """Raised when the instance currency is not one PxPay recognises."""

    def __init__(self, currency: str):
        super().__init__(f"Currency {currency!r} is not supported by PxPay")
        self.currency = currency


class InvalidAmount(ValidationError):
    """Raised when the resolved cost cannot be charged."""

    pass


class EnrolmentClosed(ValidationError):
    """Raised when the enrolment instance is disabled or outside its enrolment dates."""

    pass


class AlreadyEnrolled(ValidationError):
    """Raised when the user is already enrolled through the instance."""

    pass


class GatewayErrorKind(Enum):
    """Classification of PxPay gateway failures."""

    UNREACHABLE = "unreachable"  # transport, TLS, timeout, HTTP status
    MALFORMED_REPLY = "malformed_reply"  # unparsable or incomplete XML
    INVALID_INITIATION = "invalid_initiation"  # GenerateRequest reply valid != 1
    INVALID_RESPONSE = "invalid_response"  # ProcessResponse reply valid != 1


class GatewayError(EnrolmentError):
    """Raised when a PxPay request fails."""

    def __init__(
        self,
        message: str,
        kind: GatewayErrorKind,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize gateway error.

        Args:
            message: Error message
            kind: Classification of the failure
            original_error: Underlying transport or parser exception
        """
        super().__init__(message)
        self.kind = kind
        self.original_error = original_error


class InitiationFailed(EnrolmentError):
    """
    Raised when PxPay does not accept a GenerateRequest.

    The pending transaction row created before the request is left in place;
    it never settles.
    """

    def __init__(self, transaction_id: int, cause: GatewayError):
        super().__init__(
            f"Could not start payment for transaction {transaction_id}: {cause.message}",
            transaction_id=transaction_id,
        )
        self.kind = cause.kind


class StoreError(EnrolmentError):
    """Base exception for transaction persistence errors."""

    pass


class StoreWriteFailed(StoreError):
    """Raised when a transaction row cannot be written."""

    pass


class AlreadySettled(StoreError):
    """Raised when settling a transaction that has already been settled."""

    def __init__(self, transaction_id: int):
        super().__init__(
            f"Transaction {transaction_id} has already been settled",
            transaction_id=transaction_id,
        )


class ReconciliationError(EnrolmentError):
    """Base exception for gateway callback reconciliation failures."""

    def __init__(
        self,
        message: str,
        transaction_id: Optional[int] = None,
        response_text: Optional[str] = None,
    ):
        super().__init__(message, transaction_id=transaction_id)
        self.response_text = response_text


class InvalidTransaction(ReconciliationError):
    """Raised when PxPay reports the result token as invalid."""

    pass


class TransactionNotFound(ReconciliationError):
    """Raised when the TxnId returned by PxPay matches no local transaction."""

    def __init__(self, transaction_id: int):
        super().__init__(f"Transaction {transaction_id} not found", transaction_id=transaction_id)


class AlreadyProcessed(ReconciliationError):
    """Raised when a callback arrives for a transaction that was already reconciled."""

    def __init__(self, transaction_id: int):
        super().__init__(
            f"Transaction {transaction_id} has already been processed",
            transaction_id=transaction_id,
        )


class TransactionOwnerMismatch(ReconciliationError):
    """Raised when the callback session user does not own the transaction."""

    pass


class EnrolmentUnavailable(ReconciliationError):
    """Raised when an approved payment's enrolment instance is missing or disabled."""

    pass


class PaymentUnsuccessful(ReconciliationError):
    """Raised by confirm when PxPay did not approve the payment."""

    pass


class PaymentFailure(ReconciliationError):
    """Raised by abort for every reconciled failure callback."""

    pass
