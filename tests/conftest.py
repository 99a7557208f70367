"""
Pytest configuration and fixtures.
Provides an in-memory database, a pinned clock, recording fakes for the
renderer and notifier, seeded users, and an HTTP client wired to all of them.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["OTP_BCRYPT_ROUNDS"] = "4"
os.environ["COMPANY_JURISDICTION_CODE"] = "KA"

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

import pytest
from dependency_injector import providers
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from quotedesk.main import app
from quotedesk.core.clock import SystemClock
from quotedesk.core.integrations.contracts import EmailMessage
from quotedesk.core.security import create_access_token
from quotedesk.db.base import Base
from quotedesk.db.session import get_db
from quotedesk.deps.di_container import get_container
from quotedesk.models.client import Client
from quotedesk.models.user import User, UserRole
from quotedesk.schemas.quotation import LineItemCreate, QuotationCreate, SendQuotationRequest
from quotedesk.services.quotation_lifecycle_service import QuotationLifecycleService
from quotedesk.services.quotation_service import QuotationService


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

START = datetime(2025, 3, 10, 9, 0, 0)
OTP_PATTERN = re.compile(r"<strong>(\d{6})</strong>")


class FixedClock:
    """Clock pinned to a start time that only moves when a test advances it."""

    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def today(self) -> date:
        return self.current.date()

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class RecordingNotifier:
    """Notifier fake that records messages; set `fail` to make every send raise."""

    def __init__(self):
        self.sent: List[EmailMessage] = []
        self.fail = False
        self.calls = 0

    async def send_email(self, message: EmailMessage) -> Optional[str]:
        self.calls += 1
        if self.fail:
            raise ConnectionError("email provider unreachable")
        self.sent.append(message)
        return f"msg-{len(self.sent)}"

    def to(self, recipient: str) -> List[EmailMessage]:
        return [m for m in self.sent if m.to == recipient]

    def last_otp(self) -> str:
        for message in reversed(self.sent):
            match = OTP_PATTERN.search(message.html_body)
            if match:
                return match.group(1)
        raise AssertionError("no passcode email was sent")


class FakeRenderer:
    """Renderer fake returning a small PDF-looking payload."""

    def __init__(self):
        self.fail = False
        self.rendered: List[str] = []

    async def render(self, quotation) -> bytes:
        if self.fail:
            raise RuntimeError("renderer crashed")
        self.rendered.append(quotation.quotation_number)
        return b"%PDF-1.4 test document"


@dataclass
class Seed:
    admin: User
    manager: User
    sales_rep: User
    client: Client
    other_client: Client


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture(scope="function")
async def test_db_session():
    """
    Create a test database session.
    Uses in-memory SQLite for fast tests.
    """
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    test_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with test_session_maker() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
async def seed(test_db_session: AsyncSession, clock: FixedClock) -> Seed:
    admin = User(email="admin@quotedesk.test", full_name="Asha Admin", role=UserRole.ADMIN, created_at=clock.now())
    manager = User(email="manager@quotedesk.test", full_name="Manoj Manager", role=UserRole.MANAGER, created_at=clock.now())
    sales_rep = User(email="rep@quotedesk.test", full_name="Ravi Rep", role=UserRole.SALES_REP, created_at=clock.now())
    client = Client(name="Acme Traders", email="buyer@acme.test", jurisdiction_code="KA", created_at=clock.now())
    other_client = Client(name="Globex Exports", email="ops@globex.test", jurisdiction_code="MH", created_at=clock.now())
    test_db_session.add_all([admin, manager, sales_rep, client, other_client])
    await test_db_session.commit()
    return Seed(admin=admin, manager=manager, sales_rep=sales_rep, client=client, other_client=other_client)


def quotation_payload(client_id, discount: str = "0", approval_reason: Optional[str] = None, **overrides) -> QuotationCreate:
    data = dict(
        client_id=client_id,
        title="Warehouse racking",
        discount_percentage=Decimal(discount),
        approval_reason=approval_reason,
        line_items=[
            LineItemCreate(item_name="Racking bay", quantity=Decimal("10"), unit_rate=Decimal("4500")),
            LineItemCreate(item_name="Installation", quantity=Decimal("1"), unit_rate=Decimal("8100")),
        ],
    )
    data.update(overrides)
    return QuotationCreate(**data)


@pytest.fixture
def quotation_service(test_db_session, clock, notifier, renderer) -> QuotationService:
    lifecycle = QuotationLifecycleService(test_db_session, renderer, notifier, clock)
    return QuotationService(test_db_session, clock=clock, dispatcher=lifecycle.dispatcher)


@pytest.fixture
def lifecycle(test_db_session, clock, notifier, renderer) -> QuotationLifecycleService:
    return QuotationLifecycleService(test_db_session, renderer, notifier, clock)


@pytest.fixture
async def draft(quotation_service, seed):
    return await quotation_service.create_quotation(quotation_payload(seed.client.id), seed.sales_rep)


@pytest.fixture
async def sent(lifecycle, draft, seed, clock):
    """A quotation sent once; returns the SendOutcome."""
    clock.advance(minutes=5)
    return await lifecycle.send(draft.id, seed.sales_rep, SendQuotationRequest())


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id)}, SystemClock().now())
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
async def test_client(test_db_session, clock, notifier, renderer):
    """
    Create a test HTTP client bound to the test session and fakes.
    """
    container = get_container()
    container.clock.override(providers.Object(clock))
    container.notifier.override(providers.Object(notifier))
    container.renderer.override(providers.Object(renderer))

    async def override_get_db():
        yield test_db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    container.clock.reset_override()
    container.notifier.reset_override()
    container.renderer.reset_override()
