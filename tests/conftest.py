from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from marketplace.core.security import issue_token
from marketplace.db import models  # noqa: F401
from marketplace.db.database import Base, get_session
from marketplace.db.models.agent import Agent, AgentStatus
from marketplace.db.models.booking import Booking, BookingStatus
from marketplace.db.models.partner import Partner, PartnerStatus, Property
from marketplace.db.models.referral import Referral, ReferralStatus
from marketplace.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(test_session) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_session():
        yield test_session

    app.dependency_overrides[get_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


class Factory:
    """Inserts the rows the referral engine reads."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def agent(
        self,
        code: str = "REF123ABC",
        status: AgentStatus = AgentStatus.ACTIVE,
        commission_rate: str = "10.00",
        user_id=None,
    ) -> Agent:
        return await self._save(Agent(
            user_id=user_id or uuid4(),
            referral_code=code,
            display_name=f"Agent {code}",
            status=status,
            commission_rate=Decimal(commission_rate),
        ))

    async def partner(self, status: PartnerStatus = PartnerStatus.ACTIVE, user_id=None) -> Partner:
        return await self._save(Partner(user_id=user_id or uuid4(), status=status))

    async def property(self, partner: Partner, title: str = "Beach house") -> Property:
        return await self._save(Property(partner_id=partner.id, title=title))

    async def booking(
        self,
        prop: Property,
        total_price: str,
        status: BookingStatus = BookingStatus.CONFIRMED,
    ) -> Booking:
        return await self._save(
            Booking(property_id=prop.id, total_price=Decimal(total_price), status=status)
        )

    async def attach(
        self,
        agent: Agent,
        partner: Partner,
        status: ReferralStatus = ReferralStatus.ACTIVE,
    ) -> Referral:
        return await self._save(Referral(
            agent_id=agent.id,
            partner_id=partner.id,
            code_used=agent.referral_code,
            status=status,
        ))


@pytest.fixture
def factory(test_session) -> Factory:
    return Factory(test_session)


@pytest_asyncio.fixture
async def active_agent(factory) -> Agent:
    """Active agent with code REF123ABC and the default 10% rate."""
    return await factory.agent()


@pytest_asyncio.fixture
async def earning_agent(factory, test_session, active_agent) -> Agent:
    """Active agent with one attached partner and a confirmed 10,000 booking."""
    partner = await factory.partner()
    await factory.attach(active_agent, partner)
    prop = await factory.property(partner)
    await factory.booking(prop, "10000.00")
    await test_session.commit()
    return active_agent


def auth_headers(user_id, role: str = "authenticated") -> dict[str, str]:
    """Bearer header as the hosted auth service would issue it."""
    token = issue_token(user_id, role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    """Build headers for a given user id."""
    return auth_headers


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth_headers(uuid4(), role="admin")
