"""
PxPay XML messages.

Two request shapes are sent to the PxPay access endpoint:

    <GenerateRequest>   starts a hosted payment, reply carries the redirect URI
    <ProcessResponse>   decrypts the ``result`` token PxPay appends to the
                        success/fail callback URL, reply carries the outcome

Replies are parsed strictly: a missing ``valid`` attribute or a missing
expected element is a malformed reply, never a default value.
"""
import xml.etree.ElementTree as ET
from decimal import Decimal
from typing import Dict, List

from pydantic import BaseModel, Field

from dps_enrol.exceptions import GatewayError, GatewayErrorKind
from dps_enrol.utils import clean_text, format_amount

TXN_TYPE_PURCHASE = "Purchase"

# Range of the integer primary key sent as TxnId
TXN_ID_MIN = 1
TXN_ID_MAX = 2**31 - 1


class GenerateRequest(BaseModel):
    """Request-time fields for a PxPay GenerateRequest message."""

    transaction_id: int = Field(..., description="Local transaction id sent as TxnId")
    amount: Decimal = Field(..., ge=0, description="Amount, sent with two fraction digits")
    currency: str = Field(..., min_length=3, max_length=3)
    merchant_reference: str = Field(..., max_length=64)
    email: str = ""
    txn_data1: str = ""
    txn_data2: str = ""
    txn_data3: str = ""
    url_success: str
    url_fail: str


class ProcessResponseResult(BaseModel):
    """Outcome of a hosted payment, as decrypted by PxPay."""

    transaction_id: int = Field(..., description="TxnId echoed back by PxPay")
    success: bool
    response_text: str
    auth_code: str = ""
    card_type: str = ""
    card_holder: str = ""
    card_number: str = ""
    card_expiry: str = ""
    client_info: str = ""
    dps_txn_ref: str = ""
    txn_mac: str = ""

    def settlement_values(self) -> Dict[str, object]:
        """Response columns to write onto the transaction row."""
        return self.model_dump(exclude={"transaction_id"})


# Reply element -> ProcessResponseResult field
_RESPONSE_FIELDS = {
    "AuthCode": "auth_code",
    "CardName": "card_type",
    "CardHolderName": "card_holder",
    "CardNumber": "card_number",
    "DateExpiry": "card_expiry",
    "ClientInfo": "client_info",
    "DpsTxnRef": "dps_txn_ref",
    "TxnMac": "txn_mac",
    "ResponseText": "response_text",
}


def _to_xml(root_tag: str, fields: List[tuple]) -> bytes:
    root = ET.Element(root_tag)
    for tag, value in fields:
        ET.SubElement(root, tag).text = "" if value is None else str(value)
    return ET.tostring(root, encoding="utf-8")


def build_generate_request(user_id: str, key: str, request: GenerateRequest) -> bytes:
    """
    Serialise a GenerateRequest message.

    Args:
        user_id: PxPayUserId
        key: PxPayKey
        request: Request-time fields

    Returns:
        bytes: UTF-8 encoded XML document
    """
    return _to_xml(
        "GenerateRequest",
        [
            ("PxPayUserId", user_id),
            ("PxPayKey", key),
            ("AmountInput", format_amount(request.amount)),
            ("CurrencyInput", request.currency),
            ("MerchantReference", request.merchant_reference),
            ("EmailAddress", request.email),
            ("TxnData1", request.txn_data1),
            ("TxnData2", request.txn_data2),
            ("TxnData3", request.txn_data3),
            ("TxnType", TXN_TYPE_PURCHASE),
            ("TxnId", request.transaction_id),
            ("BillingId", ""),
            ("EnableAddBillCard", "0"),
            ("UrlSuccess", request.url_success),
            ("UrlFail", request.url_fail),
            ("Opt", ""),
        ],
    )


def build_process_response(user_id: str, key: str, result_token: str) -> bytes:
    """Serialise a ProcessResponse message for a callback ``result`` token."""
    return _to_xml(
        "ProcessResponse",
        [
            ("PxPayUserId", user_id),
            ("PxPayKey", key),
            ("Response", result_token),
        ],
    )


def _malformed(message: str, error: Exception | None = None) -> GatewayError:
    return GatewayError(message, GatewayErrorKind.MALFORMED_REPLY, original_error=error)


def _parse_root(body: bytes | str) -> ET.Element:
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise _malformed(f"Unparsable PxPay reply: {e}", e) from e
    if root.get("valid") is None:
        raise _malformed(f"PxPay reply <{root.tag}> has no valid attribute")
    return root


def _required_text(root: ET.Element, tag: str) -> str:
    element = root.find(tag)
    if element is None:
        raise _malformed(f"PxPay reply <{root.tag}> is missing <{tag}>")
    return element.text or ""


def parse_generate_reply(body: bytes | str) -> str:
    """
    Parse the reply to a GenerateRequest.

    Returns:
        str: Hosted payment page URI to redirect the user to

    Raises:
        GatewayError: INVALID_INITIATION if PxPay rejected the request,
            MALFORMED_REPLY if the reply is not the expected document
    """
    root = _parse_root(body)
    if root.get("valid") != "1":
        reason = clean_text(root.findtext("ResponseText"))
        raise GatewayError(
            f"PxPay rejected the payment request {reason}".rstrip(),
            GatewayErrorKind.INVALID_INITIATION,
        )

    uri = _required_text(root, "URI").strip()
    if not uri:
        raise _malformed("PxPay reply carries an empty <URI>")
    return uri


def parse_process_reply(body: bytes | str) -> ProcessResponseResult:
    """
    Parse the reply to a ProcessResponse.

    Every text value is cleaned before it is returned.

    Raises:
        GatewayError: INVALID_RESPONSE if PxPay could not decrypt the token,
            MALFORMED_REPLY if the reply is incomplete or mistyped
    """
    root = _parse_root(body)
    if root.get("valid") != "1":
        raise GatewayError(
            "PxPay reported the payment response as invalid",
            GatewayErrorKind.INVALID_RESPONSE,
        )

    raw_txn_id = _required_text(root, "TxnId").strip()
    try:
        transaction_id = int(raw_txn_id)
    except ValueError as e:
        raise _malformed(f"PxPay reply has a non-numeric TxnId {raw_txn_id!r}", e) from e
    if not TXN_ID_MIN <= transaction_id <= TXN_ID_MAX:
        raise _malformed(f"PxPay reply has an out-of-range TxnId {transaction_id}")

    raw_success = _required_text(root, "Success").strip()
    if raw_success not in ("0", "1"):
        raise _malformed(f"PxPay reply has an unexpected Success value {raw_success!r}")

    values = {
        field: clean_text(_required_text(root, tag), max_length=255)
        for tag, field in _RESPONSE_FIELDS.items()
    }
    return ProcessResponseResult(
        transaction_id=transaction_id,
        success=raw_success == "1",
        **values,
    )
