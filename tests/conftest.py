"""
Pytest configuration and fixtures.

The database is a file-backed SQLite per test (so concurrent sessions really
are separate connections) and PxPay is replaced by ``FakePxPay`` behind an
``httpx.MockTransport``.
"""
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, List, Optional, Set, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from dps_enrol.config import Settings
from dps_enrol.core import (
    Course,
    EnrolmentEngine,
    EnrolmentInstance,
    Learner,
    TransactionStore,
)
from dps_enrol.database.connection import create_session_factory
from dps_enrol.database.models import Base
from dps_enrol.gateway import PxPayClient

FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

COURSE_ID = 101
USER_ID = 42
OTHER_USER_ID = 43
INSTANCE_ID = 7


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast tests without a database")
    config.addinivalue_line("markers", "integration: tests against SQLite and the fake gateway")
    config.addinivalue_line("markers", "race: concurrent callback tests")


def generate_reply(uri: str = "", valid: str = "1", response_text: str = "") -> bytes:
    """XML reply to a GenerateRequest."""
    root = ET.Element("Request", valid=valid)
    ET.SubElement(root, "URI").text = uri
    ET.SubElement(root, "ResponseText").text = response_text
    return ET.tostring(root, encoding="utf-8")


def process_reply(
    transaction_id: int,
    success: bool = True,
    response_text: str = "APPROVED",
    valid: str = "1",
    **overrides: str,
) -> bytes:
    """XML reply to a ProcessResponse, with plausible card details."""
    fields = {
        "Success": "1" if success else "0",
        "TxnType": "Purchase",
        "CurrencyInput": "NZD",
        "MerchantReference": "LMS:101:INTRO101:42:DOE JANE",
        "TxnData1": "",
        "TxnData2": "",
        "TxnData3": "",
        "AuthCode": "053201" if success else "",
        "CardName": "Visa",
        "CardHolderName": "JANE DOE",
        "CardNumber": "411111........11",
        "DateExpiry": "1128",
        "ClientInfo": "203.0.113.9",
        "TxnId": str(transaction_id),
        "EmailAddress": "jane@example.com",
        "DpsTxnRef": "0000000a0b1c2d3e",
        "BillingId": "",
        "DpsBillingId": "",
        "AmountSettlement": "50.00",
        "CurrencySettlement": "NZD",
        "TxnMac": "2BC20210",
        "ResponseText": response_text,
    }
    fields.update(overrides)
    root = ET.Element("Response", valid=valid)
    for tag, value in fields.items():
        ET.SubElement(root, tag).text = value
    return ET.tostring(root, encoding="utf-8")


class FakePxPay:
    """
    In-process stand-in for the PxPay access endpoint.

    Records every GenerateRequest and ProcessResponse it receives. Result
    tokens are registered with ``register``; unknown tokens get a
    ``valid="0"`` reply, as PxPay does for tokens it cannot decrypt.
    """

    def __init__(self) -> None:
        self.generate_requests: List[Dict[str, str]] = []
        self.process_tokens: List[str] = []
        self.results: Dict[str, bytes] = {}
        self.generate_override: Optional[bytes] = None
        self.status_code = 200
        self.unreachable = False

    def register(self, token: str, reply: bytes) -> None:
        self.results[token] = reply

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)

        root = ET.fromstring(request.content)
        if root.tag == "GenerateRequest":
            fields = {child.tag: child.text or "" for child in root}
            self.generate_requests.append(fields)
            body = self.generate_override or generate_reply(
                uri=f"https://pxpay.test/pxpay.aspx?userid=TestAccount&request=txn{fields['TxnId']}"
            )
            return httpx.Response(self.status_code, content=body)

        token = root.findtext("Response") or ""
        self.process_tokens.append(token)
        body = self.results.get(
            token,
            b'<Response valid="0"><ResponseText>Invalid Response</ResponseText></Response>',
        )
        return httpx.Response(self.status_code, content=body)


class InMemoryDirectory:
    """Enrolment records held in dictionaries."""

    def __init__(self) -> None:
        self.instances: Dict[int, EnrolmentInstance] = {}
        self.courses: Dict[int, Course] = {}
        self.users: Dict[int, Learner] = {}
        self.enrolled: Set[Tuple[int, int]] = set()

    async def get_instance(self, instance_id: int) -> Optional[EnrolmentInstance]:
        return self.instances.get(instance_id)

    async def get_course(self, course_id: int) -> Optional[Course]:
        return self.courses.get(course_id)

    async def get_user(self, user_id: int) -> Optional[Learner]:
        return self.users.get(user_id)

    async def is_enrolled(self, user_id: int, instance_id: int) -> bool:
        return (user_id, instance_id) in self.enrolled


class RecordingSink:
    """Enrolment sink that records grants."""

    def __init__(self) -> None:
        self.grants: List[Tuple[int, int, Optional[datetime], Optional[datetime]]] = []

    async def grant(
        self,
        user_id: int,
        instance_id: int,
        time_start: Optional[datetime],
        time_end: Optional[datetime],
    ) -> None:
        self.grants.append((user_id, instance_id, time_start, time_end))


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        pxpay_user_id="TestAccount",
        pxpay_key="0123456789abcdef",
        pxpay_url="https://pxpay.test/pxaccess.aspx",
        pxpay_timeout=5.0,
        site_url="https://lms.example.com",
        site_shortname="LMS",
        default_cost=Decimal("25.00"),
        default_currency="NZD",
        default_enrol_period=0,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'enrol_dps.db'}",
        app_name="dps-enrol-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest_asyncio.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create test database engine with fresh tables."""
    engine = create_async_engine(test_settings.database_url, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> TransactionStore:
    return TransactionStore(session_factory)


@pytest.fixture
def fake_pxpay() -> FakePxPay:
    return FakePxPay()


@pytest_asyncio.fixture
async def pxpay_client(
    test_settings: Settings, fake_pxpay: FakePxPay
) -> AsyncGenerator[PxPayClient, Any]:
    """PxPay client wired to the fake gateway."""
    transport = httpx.MockTransport(fake_pxpay.handler)
    async with httpx.AsyncClient(transport=transport) as http_client:
        yield PxPayClient(test_settings, http_client=http_client)


@pytest.fixture
def directory() -> InMemoryDirectory:
    """Directory with one course, two users and one paid enrolment instance."""
    directory = InMemoryDirectory()
    directory.courses[COURSE_ID] = Course(
        id=COURSE_ID, shortname="INTRO101", fullname="Intro to Systems"
    )
    directory.users[USER_ID] = Learner(
        id=USER_ID, firstname="Jane", lastname="Doe", email="jane@example.com"
    )
    directory.users[OTHER_USER_ID] = Learner(
        id=OTHER_USER_ID, firstname="Sam", lastname="Lee", email="sam@example.com"
    )
    directory.instances[INSTANCE_ID] = EnrolmentInstance(
        id=INSTANCE_ID,
        course_id=COURSE_ID,
        cost=Decimal("50.00"),
        currency="NZD",
    )
    return directory


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def enrolment_engine(
    store: TransactionStore,
    directory: InMemoryDirectory,
    sink: RecordingSink,
    pxpay_client: PxPayClient,
    test_settings: Settings,
) -> EnrolmentEngine:
    """Engine with a fixed clock."""
    return EnrolmentEngine(
        store=store,
        directory=directory,
        sink=sink,
        gateway=pxpay_client,
        settings=test_settings,
        clock=lambda: FIXED_NOW,
    )
