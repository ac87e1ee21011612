"""
Tests for the PxPay client and its XML messages.
"""
import xml.etree.ElementTree as ET
from decimal import Decimal

import httpx
import pytest

from dps_enrol.exceptions import GatewayError, GatewayErrorKind
from dps_enrol.gateway import GenerateRequest, PxPayClient
from dps_enrol.gateway.messages import (
    build_generate_request,
    build_process_response,
    parse_generate_reply,
    parse_process_reply,
)

from conftest import FakePxPay, generate_reply, process_reply


def _request(**overrides: object) -> GenerateRequest:
    fields = {
        "transaction_id": 1017,
        "amount": Decimal("49.999"),
        "currency": "NZD",
        "merchant_reference": "LMS:101:INTRO101:42:DOE JANE",
        "email": "jane@example.com",
        "txn_data1": "101: Intro to Systems",
        "txn_data2": "42: Jane Doe",
        "url_success": "https://lms.example.com/enrol/dps/confirm",
        "url_fail": "https://lms.example.com/enrol/dps/fail",
    }
    fields.update(overrides)
    return GenerateRequest(**fields)


class TestMessages:
    """Test suite for PxPay XML serialisation and parsing."""

    @pytest.mark.unit
    def test_generate_request_fields_in_order(self) -> None:
        root = ET.fromstring(build_generate_request("TestAccount", "secret", _request()))

        assert root.tag == "GenerateRequest"
        assert [child.tag for child in root] == [
            "PxPayUserId",
            "PxPayKey",
            "AmountInput",
            "CurrencyInput",
            "MerchantReference",
            "EmailAddress",
            "TxnData1",
            "TxnData2",
            "TxnData3",
            "TxnType",
            "TxnId",
            "BillingId",
            "EnableAddBillCard",
            "UrlSuccess",
            "UrlFail",
            "Opt",
        ]
        assert root.findtext("AmountInput") == "50.00"
        assert root.findtext("TxnType") == "Purchase"
        assert root.findtext("TxnId") == "1017"
        assert root.findtext("EnableAddBillCard") == "0"

    @pytest.mark.unit
    def test_generate_request_escapes_urls(self) -> None:
        body = build_generate_request(
            "TestAccount", "secret", _request(url_success="https://lms.example.com/c?a=1&b=2")
        )
        assert b"a=1&amp;b=2" in body
        assert ET.fromstring(body).findtext("UrlSuccess") == "https://lms.example.com/c?a=1&b=2"

    @pytest.mark.unit
    def test_process_response_message(self) -> None:
        root = ET.fromstring(build_process_response("TestAccount", "secret", "v5token"))
        assert [(child.tag, child.text) for child in root] == [
            ("PxPayUserId", "TestAccount"),
            ("PxPayKey", "secret"),
            ("Response", "v5token"),
        ]

    @pytest.mark.unit
    def test_parse_generate_reply_returns_uri(self) -> None:
        uri = parse_generate_reply(generate_reply(uri=" https://pxpay.test/pay?request=abc "))
        assert uri == "https://pxpay.test/pay?request=abc"

    @pytest.mark.unit
    def test_parse_generate_reply_rejected(self) -> None:
        with pytest.raises(GatewayError) as exc_info:
            parse_generate_reply(generate_reply(valid="0", response_text="Invalid Key"))

        assert exc_info.value.kind is GatewayErrorKind.INVALID_INITIATION
        assert "Invalid Key" in exc_info.value.message

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "body",
        [
            b"not xml at all",
            b"<Request><URI>https://pxpay.test/</URI></Request>",
            b'<Request valid="1"></Request>',
            b'<Request valid="1"><URI>  </URI></Request>',
        ],
    )
    def test_parse_generate_reply_malformed(self, body: bytes) -> None:
        with pytest.raises(GatewayError) as exc_info:
            parse_generate_reply(body)
        assert exc_info.value.kind is GatewayErrorKind.MALFORMED_REPLY

    @pytest.mark.unit
    def test_parse_process_reply(self) -> None:
        result = parse_process_reply(process_reply(1017))

        assert result.transaction_id == 1017
        assert result.success is True
        assert result.response_text == "APPROVED"
        assert result.auth_code == "053201"
        assert result.card_type == "Visa"
        assert result.card_holder == "JANE DOE"
        assert result.dps_txn_ref == "0000000a0b1c2d3e"
        assert "transaction_id" not in result.settlement_values()

    @pytest.mark.unit
    def test_parse_process_reply_declined(self) -> None:
        result = parse_process_reply(process_reply(1017, success=False, response_text="DECLINED"))
        assert result.success is False
        assert result.response_text == "DECLINED"

    @pytest.mark.unit
    def test_parse_process_reply_keeps_response_text_verbatim(self) -> None:
        result = parse_process_reply(process_reply(1017, success=True, response_text="APPROVED*"))
        assert result.success is True
        assert result.response_text == "APPROVED*"

    @pytest.mark.unit
    def test_parse_process_reply_cleans_values(self) -> None:
        result = parse_process_reply(process_reply(1017, CardHolderName="<script>J'D</script>"))
        assert result.card_holder == "scriptJD/script"

    @pytest.mark.unit
    def test_parse_process_reply_invalid(self) -> None:
        with pytest.raises(GatewayError) as exc_info:
            parse_process_reply(b'<Response valid="0"><ResponseText>Invalid Response</ResponseText></Response>')
        assert exc_info.value.kind is GatewayErrorKind.INVALID_RESPONSE

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "body",
        [
            process_reply(1017, TxnId="abc"),
            process_reply(1017, TxnId="0"),
            process_reply(1017, TxnId="-5"),
            process_reply(1017, TxnId=str(2**31)),
            process_reply(1017, TxnId=str(10**20)),
            process_reply(1017, Success="yes"),
            b'<Response valid="1"><Success>1</Success><TxnId>1017</TxnId></Response>',
        ],
    )
    def test_parse_process_reply_malformed(self, body: bytes) -> None:
        with pytest.raises(GatewayError) as exc_info:
            parse_process_reply(body)
        assert exc_info.value.kind is GatewayErrorKind.MALFORMED_REPLY


class TestPxPayClient:
    """Test suite for PxPayClient over a mocked transport."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_initiate_returns_redirect_uri(
        self, pxpay_client: PxPayClient, fake_pxpay: FakePxPay
    ) -> None:
        uri = await pxpay_client.initiate(_request())

        assert uri == "https://pxpay.test/pxpay.aspx?userid=TestAccount&request=txn1017"
        sent = fake_pxpay.generate_requests[0]
        assert sent["PxPayUserId"] == "TestAccount"
        assert sent["PxPayKey"] == "0123456789abcdef"
        assert sent["AmountInput"] == "50.00"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_initiate_rejected(
        self, pxpay_client: PxPayClient, fake_pxpay: FakePxPay
    ) -> None:
        fake_pxpay.generate_override = generate_reply(valid="0", response_text="Invalid Key")

        with pytest.raises(GatewayError) as exc_info:
            await pxpay_client.initiate(_request())
        assert exc_info.value.kind is GatewayErrorKind.INVALID_INITIATION

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unreachable(self, pxpay_client: PxPayClient, fake_pxpay: FakePxPay) -> None:
        fake_pxpay.unreachable = True

        with pytest.raises(GatewayError) as exc_info:
            await pxpay_client.initiate(_request())

        assert exc_info.value.kind is GatewayErrorKind.UNREACHABLE
        assert isinstance(exc_info.value.original_error, httpx.ConnectError)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_http_error_status_is_unreachable(
        self, pxpay_client: PxPayClient, fake_pxpay: FakePxPay
    ) -> None:
        fake_pxpay.status_code = 503

        with pytest.raises(GatewayError) as exc_info:
            await pxpay_client.process_response("v5token")
        assert exc_info.value.kind is GatewayErrorKind.UNREACHABLE
        assert "503" in exc_info.value.message

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_process_response(
        self, pxpay_client: PxPayClient, fake_pxpay: FakePxPay
    ) -> None:
        fake_pxpay.register("v5token", process_reply(1017))

        result = await pxpay_client.process_response("v5token")

        assert result.transaction_id == 1017
        assert result.success is True
        assert fake_pxpay.process_tokens == ["v5token"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_process_response_unknown_token(self, pxpay_client: PxPayClient) -> None:
        with pytest.raises(GatewayError) as exc_info:
            await pxpay_client.process_response("forged")
        assert exc_info.value.kind is GatewayErrorKind.INVALID_RESPONSE

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_process_response_malformed(
        self, pxpay_client: PxPayClient, fake_pxpay: FakePxPay
    ) -> None:
        fake_pxpay.register("v5token", b"<html>Service Unavailable</html>")

        with pytest.raises(GatewayError) as exc_info:
            await pxpay_client.process_response("v5token")
        assert exc_info.value.kind is GatewayErrorKind.MALFORMED_REPLY
