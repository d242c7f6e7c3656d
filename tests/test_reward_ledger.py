# tests/test_reward_ledger.py
"""
Tests for RewardLedger: creation, expiry, discounts, value conservation.

Run:
    pytest tests/test_reward_ledger.py -v
"""
import asyncio
from datetime import datetime

import pytest
from sqlalchemy import update

from models import PhaseReward, RewardMovement
from models.reward_movement import MOVEMENT_FREE_PRODUCT, MOVEMENT_STORE_CREDIT
from phase_engine.events.event_bus import PhaseEvents
from phase_engine.results import ResultCode, DiscountKind, ValidationError
from phase_engine.services.reward_ledger import RewardLedger, RewardPeriod

PERIOD_KEY = "2025-03"


@pytest.fixture
def ledger(gateway, phase_config):
    return RewardLedger(gateway, phase_config)


@pytest.fixture
def member(make_member):
    return make_member()


# =============================================================================
# TEST CLASS: ensureExists
# =============================================================================

class TestEnsureExists:

    def test_tier_one_gets_free_product(self, ledger, member):
        reward = asyncio.run(ledger.ensureExists(member, 1))

        assert reward.hasFreeProduct is True
        assert reward.freeProductUsed is False
        assert reward.creditTotalCents == 0
        assert reward.periodKey == PERIOD_KEY
        assert reward.expiresAt == datetime(2025, 4, 1)

    @pytest.mark.parametrize("tier, credit", [(2, 2000), (3, 5000)])
    def test_credit_tiers_get_store_credit(self, ledger, member, tier, credit):
        reward = asyncio.run(ledger.ensureExists(member, tier))

        assert reward.hasFreeProduct is False
        assert reward.creditTotalCents == credit
        assert reward.creditRemainingCents == credit

    def test_tier_zero_has_no_entitlement(self, ledger, member, count_rows):
        assert asyncio.run(ledger.ensureExists(member, 0)) is None
        assert count_rows(PhaseReward) == 0

    def test_idempotent_per_period(self, ledger, member, count_rows):
        """
        TEST: Second call for the same period returns the first record,
        even with a different tier.
        """
        first = asyncio.run(ledger.ensureExists(member, 3))
        second = asyncio.run(ledger.ensureExists(member, 1))

        assert second.rewardID == first.rewardID
        assert second.tier == 3
        assert count_rows(PhaseReward, member) == 1

    def test_new_period_creates_new_record(self, ledger, member, frozen_time, count_rows):
        asyncio.run(ledger.ensureExists(member, 3))
        frozen_time.setTime(datetime(2025, 4, 2))

        reward = asyncio.run(ledger.ensureExists(member, 3))

        assert reward.periodKey == "2025-04"
        assert count_rows(PhaseReward, member) == 2

    def test_explicit_period(self, ledger, member):
        period = RewardPeriod("2025-Q2", datetime(2025, 4, 1), datetime(2025, 7, 1))

        reward = asyncio.run(ledger.ensureExists(member, 2, period))

        assert reward.periodKey == "2025-Q2"
        assert reward.expiresAt == datetime(2025, 7, 1)

    def test_lost_insert_race_returns_winner(self, ledger, gateway, member, session, monkeypatch, count_rows):
        """
        TEST: Another writer inserts between our read and our insert;
        the unique constraint rejects ours and the winner's row comes back.
        """
        winner = PhaseReward(
            memberID=member, tier=2, periodKey=PERIOD_KEY,
            creditTotalCents=2000, creditRemainingCents=2000,
            expiresAt=datetime(2025, 4, 1)
        )
        session.add(winner)
        session.commit()
        winnerId = winner.rewardID

        original = gateway.getRewardForPeriod
        calls = []

        def stale_first_read(memberId, periodKey):
            calls.append(periodKey)
            if len(calls) == 1:
                return None
            return original(memberId, periodKey)

        monkeypatch.setattr(gateway, "getRewardForPeriod", stale_first_read)

        reward = asyncio.run(ledger.ensureExists(member, 3))

        assert reward.rewardID == winnerId
        assert reward.tier == 2
        assert count_rows(PhaseReward, member) == 1

    def test_emits_reward_granted_once(self, ledger, member, clean_event_bus):
        received = []

        async def recorder(data):
            received.append(data)

        clean_event_bus.subscribe(PhaseEvents.REWARD_GRANTED, recorder)

        asyncio.run(ledger.ensureExists(member, 3))
        asyncio.run(ledger.ensureExists(member, 3))

        assert len(received) == 1
        assert received[0]["creditCents"] == 5000
        assert received[0]["periodKey"] == PERIOD_KEY

    def test_invalid_tier(self, ledger, member):
        with pytest.raises(ValueError):
            asyncio.run(ledger.ensureExists(member, 4))

    def test_invalid_member(self, ledger):
        with pytest.raises(ValidationError):
            asyncio.run(ledger.ensureExists(-1, 1))


# =============================================================================
# TEST CLASS: getActive
# =============================================================================

class TestGetActive:

    def test_returns_current_reward(self, ledger, member):
        created = asyncio.run(ledger.ensureExists(member, 1))

        assert asyncio.run(ledger.getActive(member)).rewardID == created.rewardID

    def test_expired_reward_not_active(self, ledger, member, frozen_time):
        asyncio.run(ledger.ensureExists(member, 3))
        frozen_time.setTime(datetime(2025, 4, 1))

        assert asyncio.run(ledger.getActive(member)) is None

    def test_no_reward(self, ledger, member):
        assert asyncio.run(ledger.getActive(member)) is None


# =============================================================================
# TEST CLASS: quoteDiscount
# =============================================================================

class TestQuoteDiscount:

    def test_free_product_capped_by_subtotal(self, ledger, member):
        asyncio.run(ledger.ensureExists(member, 1))

        big = asyncio.run(ledger.quoteDiscount(member, 10000))
        small = asyncio.run(ledger.quoteDiscount(member, 3000))

        assert (big.amountCents, big.kind) == (6500, DiscountKind.FREE_PRODUCT)
        assert (small.amountCents, small.kind) == (3000, DiscountKind.FREE_PRODUCT)

    def test_store_credit_capped_by_subtotal(self, ledger, member):
        asyncio.run(ledger.ensureExists(member, 3))

        quote = asyncio.run(ledger.quoteDiscount(member, 1000))

        assert quote.amountCents == 1000
        assert quote.kind is DiscountKind.STORE_CREDIT
        assert quote.hasDiscount

    def test_store_credit_capped_by_balance(self, ledger, member):
        asyncio.run(ledger.ensureExists(member, 2))

        assert asyncio.run(ledger.quoteDiscount(member, 9999)).amountCents == 2000

    def test_used_free_product_quotes_nothing(self, ledger, member):
        asyncio.run(ledger.ensureExists(member, 1))
        asyncio.run(ledger.commitDiscount(member, 6500, DiscountKind.FREE_PRODUCT))

        quote = asyncio.run(ledger.quoteDiscount(member, 10000))

        assert quote.amountCents == 0
        assert quote.kind is DiscountKind.NONE

    def test_no_reward_quotes_nothing(self, ledger, member):
        quote = asyncio.run(ledger.quoteDiscount(member, 10000))

        assert quote.kind is DiscountKind.NONE
        assert not quote.hasDiscount

    def test_quote_never_writes(self, ledger, member, count_rows, session):
        reward = asyncio.run(ledger.ensureExists(member, 3))

        for _ in range(3):
            asyncio.run(ledger.quoteDiscount(member, 1000))

        session.refresh(reward)
        assert reward.creditRemainingCents == 5000
        assert count_rows(RewardMovement) == 0


# =============================================================================
# TEST CLASS: commitDiscount
# =============================================================================

class TestCommitDiscount:

    def test_free_product_consumed_once(self, ledger, member, session, count_rows):
        reward = asyncio.run(ledger.ensureExists(member, 1))

        first = asyncio.run(ledger.commitDiscount(member, 6500, DiscountKind.FREE_PRODUCT, "order-1"))
        second = asyncio.run(ledger.commitDiscount(member, 6500, DiscountKind.FREE_PRODUCT, "order-2"))

        assert first.success
        assert first.appliedCents == 6500
        assert second.code is ResultCode.ALREADY_CONSUMED

        session.refresh(reward)
        assert reward.freeProductUsed is True
        assert count_rows(RewardMovement, member) == 1

    def test_free_product_lost_race(self, ledger, gateway, member, monkeypatch, count_rows):
        asyncio.run(ledger.ensureExists(member, 1))
        monkeypatch.setattr(gateway, "markFreeProductUsed", lambda rewardId: False)

        result = asyncio.run(ledger.commitDiscount(member, 6500, DiscountKind.FREE_PRODUCT))

        assert result.code is ResultCode.ALREADY_CONSUMED
        assert count_rows(RewardMovement) == 0

    def test_store_credit_decrements(self, ledger, member, session):
        reward = asyncio.run(ledger.ensureExists(member, 3))

        result = asyncio.run(ledger.commitDiscount(member, 1500, DiscountKind.STORE_CREDIT, "order-7"))

        assert result.success
        assert result.remainingCreditCents == 3500
        session.refresh(reward)
        assert reward.creditRemainingCents == 3500
        assert reward.movements[0].kind == MOVEMENT_STORE_CREDIT
        assert reward.movements[0].reference == "order-7"

    def test_store_credit_insufficient_balance_changes_nothing(self, ledger, member, session, count_rows):
        """
        Scenario: 5000 credit, spend 1500 then try 4000.
        """
        reward = asyncio.run(ledger.ensureExists(member, 3))
        asyncio.run(ledger.commitDiscount(member, 1500, DiscountKind.STORE_CREDIT))

        result = asyncio.run(ledger.commitDiscount(member, 4000, DiscountKind.STORE_CREDIT))

        assert result.code is ResultCode.INSUFFICIENT_BALANCE
        assert result.remainingCreditCents == 3500
        session.refresh(reward)
        assert reward.creditRemainingCents == 3500
        assert count_rows(RewardMovement) == 1

    def test_store_credit_exact_balance(self, ledger, member):
        asyncio.run(ledger.ensureExists(member, 2))

        result = asyncio.run(ledger.commitDiscount(member, 2000, DiscountKind.STORE_CREDIT))

        assert result.success
        assert result.remainingCreditCents == 0

    def test_store_credit_lost_race_rolls_back(self, ledger, gateway, member, session, monkeypatch, count_rows):
        """
        TEST: The balance moves between read and compare-and-swap; the
        swap misses and nothing from this attempt is kept.
        """
        reward = asyncio.run(ledger.ensureExists(member, 3))
        original = gateway.casRewardCredit

        def concurrent_spend(rewardId, expected, new):
            session.execute(
                update(PhaseReward)
                .where(PhaseReward.rewardID == rewardId)
                .values(creditRemainingCents=expected - 100)
            )
            return original(rewardId, expected, new)

        monkeypatch.setattr(gateway, "casRewardCredit", concurrent_spend)

        result = asyncio.run(ledger.commitDiscount(member, 1000, DiscountKind.STORE_CREDIT))

        assert result.code is ResultCode.CONCURRENCY_CONFLICT
        assert result.retryable
        assert count_rows(RewardMovement) == 0
        session.refresh(reward)
        assert reward.creditRemainingCents == 5000

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount(self, ledger, member, amount):
        asyncio.run(ledger.ensureExists(member, 3))

        result = asyncio.run(ledger.commitDiscount(member, amount, DiscountKind.STORE_CREDIT))

        assert result.code is ResultCode.VALIDATION_ERROR

    def test_wrong_reward_type(self, ledger, member):
        asyncio.run(ledger.ensureExists(member, 3))

        result = asyncio.run(ledger.commitDiscount(member, 100, DiscountKind.FREE_PRODUCT))

        assert result.code is ResultCode.NOT_FOUND

    def test_store_credit_on_free_product_reward(self, ledger, member):
        asyncio.run(ledger.ensureExists(member, 1))

        result = asyncio.run(ledger.commitDiscount(member, 100, DiscountKind.STORE_CREDIT))

        assert result.code is ResultCode.NOT_FOUND

    def test_no_active_reward(self, ledger, member):
        result = asyncio.run(ledger.commitDiscount(member, 100, DiscountKind.STORE_CREDIT))

        assert result.code is ResultCode.NOT_FOUND

    def test_kind_none_rejected(self, ledger, member):
        asyncio.run(ledger.ensureExists(member, 3))

        result = asyncio.run(ledger.commitDiscount(member, 100, DiscountKind.NONE))

        assert result.code is ResultCode.VALIDATION_ERROR


# =============================================================================
# TEST CLASS: reconcile
# =============================================================================

class TestReconcile:

    def test_balanced_after_spending(self, ledger, member):
        reward = asyncio.run(ledger.ensureExists(member, 3))
        asyncio.run(ledger.commitDiscount(member, 1200, DiscountKind.STORE_CREDIT))
        asyncio.run(ledger.commitDiscount(member, 800, DiscountKind.STORE_CREDIT))

        assert asyncio.run(ledger.reconcile(reward.rewardID)) is True

    def test_free_product_movement_does_not_affect_credit(self, ledger, member):
        reward = asyncio.run(ledger.ensureExists(member, 1))
        asyncio.run(ledger.commitDiscount(member, 6500, DiscountKind.FREE_PRODUCT))

        movement_kinds = [m.kind for m in reward.movements]
        assert movement_kinds == [MOVEMENT_FREE_PRODUCT]
        assert asyncio.run(ledger.reconcile(reward.rewardID)) is True

    def test_detects_tampering(self, ledger, member, session):
        reward = asyncio.run(ledger.ensureExists(member, 3))
        session.execute(
            update(PhaseReward)
            .where(PhaseReward.rewardID == reward.rewardID)
            .values(creditRemainingCents=4000)
        )
        session.commit()

        assert asyncio.run(ledger.reconcile(reward.rewardID)) is False

    def test_unknown_reward(self, ledger):
        assert asyncio.run(ledger.reconcile(424242)) is False
