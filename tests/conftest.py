# tests/conftest.py
"""
Pytest configuration and shared fixtures for phase engine tests.

Every test gets a fresh in-memory SQLite database and a frozen clock
(2025-03-15 12:00 UTC, reward period "2025-03").

Run:
    pytest tests -v
"""
import asyncio
from datetime import datetime
from typing import List, Optional

import pytest
from sqlalchemy import create_engine, select, func
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import Config
from models import Base, NetworkMember, Subscription, PhaseRecord, EarningsEntry, PayoutAccount
from models.payout import PAYOUT_ACCOUNT_ACTIVE
from models.subscription import SUBSCRIPTION_ACTIVE, SUBSCRIPTION_INACTIVE
from phase_engine.config.phases import PhaseConfigProvider
from phase_engine.events.event_bus import eventBus
from phase_engine.events.handlers import handlerContext
from phase_engine.gateway.persistence import PersistenceGateway
from phase_engine.gateway.payment_rail import PaymentRail, PaymentRailError, RailResult
from phase_engine.utils.time_machine import timeMachine

# =============================================================================
# INITIALIZE CONFIG
# =============================================================================

Config.initialize_from_env()

# =============================================================================
# CONSTANTS
# =============================================================================

FROZEN_NOW = datetime(2025, 3, 15, 12, 0, 0)
PERIOD_KEY = "2025-03"

FREE_PRODUCT_VALUE = {1: 6500}
CREDIT_CENTS = {2: 2000, 3: 5000}

TEST_CONFIG = {
    Config.PHASE_FREE_PRODUCT_VALUE_CENTS: FREE_PRODUCT_VALUE,
    Config.PHASE_CREDIT_CENTS: CREDIT_CENTS,
    Config.PAYOUT_MIN_CENTS: 900,
    Config.MAX_AUTO_PAYOUT_CENTS: 100_000_000,
    Config.PAYMENT_MODE: "automatic",
    Config.PAYMENT_RAIL_TIMEOUT: 5,
    Config.SECURE_EMAIL_DOMAINS: "",
}


# =============================================================================
# FAKES
# =============================================================================

class FakePaymentRail(PaymentRail):
    """
    Recording payment rail.

    mode: "success", "reject", "error" (PaymentRailError) or "broken"
    (ValueError, like an unparseable provider answer); delay: seconds to
    sleep before answering; brokenMembers: member ids that always get
    the "broken" behaviour.

    disbursements holds (memberId, amountCents, idempotencyKey, externalAccountId).
    """

    def __init__(self, mode: str = "success", delay: float = 0, brokenMembers=()):
        self.mode = mode
        self.delay = delay
        self.brokenMembers = set(brokenMembers)
        self.disbursements = []
        self.disconnected = []

    async def disburse(
            self,
            memberId: int,
            externalAccountId: str,
            amountCents: int,
            idempotencyKey: Optional[str] = None
    ) -> RailResult:
        self.disbursements.append((memberId, amountCents, idempotencyKey, externalAccountId))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.mode == "broken" or memberId in self.brokenMembers:
            raise ValueError("malformed provider response")
        if self.mode == "error":
            raise PaymentRailError("rail unavailable")
        if self.mode == "reject":
            return RailResult(success=False, error="account closed")
        return RailResult(success=True, externalReference=f"po_{len(self.disbursements)}")

    async def disconnect(self, memberId: int, externalAccountId: str) -> bool:
        if self.mode == "error":
            raise PaymentRailError("rail unavailable")
        self.disconnected.append((memberId, externalAccountId))
        return True


class FakeEmailService:
    """Records notifications instead of sending them."""

    def __init__(self):
        self.payouts = []
        self.rewards = []

    async def send_payout_notification(self, to, amountCents, externalReference):
        self.payouts.append((to, amountCents, externalReference))
        return True

    async def send_reward_notification(self, to, tier, periodKey, creditCents=0, freeProduct=False):
        self.rewards.append((to, tier, periodKey, creditCents, freeProduct))
        return True


# =============================================================================
# ENVIRONMENT FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def test_config():
    """Deterministic Config values, restored after each test."""
    saved = Config.get_all()
    for key, value in TEST_CONFIG.items():
        Config.set(key, value, source="tests")
    yield Config
    Config._config.clear()
    Config._config.update(saved)


@pytest.fixture(autouse=True)
def frozen_time():
    """Freeze the clock in the middle of March 2025."""
    timeMachine.setTime(FROZEN_NOW)
    yield timeMachine
    timeMachine.resetToRealTime()


@pytest.fixture(autouse=True)
def clean_event_bus():
    """No handler leaks between tests."""
    eventBus.clear()
    yield eventBus
    eventBus.clear()
    handlerContext.reset()


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory database; StaticPool shares it across sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway(session):
    return PersistenceGateway(session)


@pytest.fixture
def phase_config():
    return PhaseConfigProvider(FREE_PRODUCT_VALUE, CREDIT_CENTS)


@pytest.fixture
def payment_rail():
    return FakePaymentRail()


@pytest.fixture
def make_rail():
    """FakePaymentRail factory: make_rail(mode="error", delay=0.5)."""
    return FakePaymentRail


@pytest.fixture
def email_service():
    return FakeEmailService()


# =============================================================================
# DATA BUILDERS
# =============================================================================

@pytest.fixture
def make_member(session):
    """
    Create a member with a subscription.

    Usage:
        root = make_member()
        child = make_member(parent=root, active=False)
    """

    def _make(parent: Optional[int] = None, active: bool = True, email: Optional[str] = None) -> int:
        member = NetworkMember(referredByMemberID=parent, email=email)
        session.add(member)
        session.flush()
        session.add(Subscription(
            memberID=member.memberID,
            status=SUBSCRIPTION_ACTIVE if active else SUBSCRIPTION_INACTIVE
        ))
        session.commit()
        return member.memberID

    return _make


@pytest.fixture
def make_tree(make_member):
    """
    Build root -> directs -> second level.

    Args:
        branches: One entry per direct referral: number of active children
        directActive: Subscription state of the directs
        rootActive: Subscription state of the root

    Returns:
        (rootId, [directIds])
    """

    def _make(branches: List[int], directActive: bool = True, rootActive: bool = True, email: Optional[str] = None):
        rootId = make_member(active=rootActive, email=email)
        directIds = []
        for activeChildren in branches:
            directId = make_member(parent=rootId, active=directActive)
            directIds.append(directId)
            for _ in range(activeChildren):
                make_member(parent=directId)
        return rootId, directIds

    return _make


@pytest.fixture
def set_tier(session):
    """Store a calculated tier (and optional override) without running the calculator."""

    def _set(memberId: int, calculated: int, override: Optional[int] = None):
        record = session.get(PhaseRecord, memberId)
        if record is None:
            record = PhaseRecord(memberID=memberId)
            session.add(record)
        record.calculatedTier = calculated
        record.manualOverrideTier = override
        session.commit()
        return record

    return _set


@pytest.fixture
def link_payout_account(session):
    """Store an active payout account for a member."""

    def _link(memberId: int, externalAccountId: str = "acct_1", provider: str = "stripe") -> None:
        session.add(PayoutAccount(
            memberID=memberId,
            provider=provider,
            externalAccountID=externalAccountId,
            status=PAYOUT_ACCOUNT_ACTIVE
        ))
        session.commit()

    return _link


@pytest.fixture
def add_earnings(session):
    """Insert an available earnings entry."""

    def _add(memberId: int, amountCents: int, source: str = "commission") -> int:
        entry = EarningsEntry(
            memberID=memberId,
            amountCents=amountCents,
            availableCents=amountCents,
            source=source
        )
        session.add(entry)
        session.commit()
        return entry.entryID

    return _add


@pytest.fixture
def count_rows(session):
    """Row count of a model, optionally for one member."""

    def _count(model, memberId: Optional[int] = None) -> int:
        query = select(func.count()).select_from(model)
        if memberId is not None:
            query = query.where(model.memberID == memberId)
        return session.execute(query).scalar()

    return _count
