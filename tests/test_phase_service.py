# tests/test_phase_service.py
"""
Tests for PhaseService: recalculation, overrides and effective tier.

Run:
    pytest tests/test_phase_service.py -v
"""
import asyncio

import pytest

from models import PhaseRecord, PhaseReward, Subscription
from models.subscription import SUBSCRIPTION_INACTIVE
from phase_engine.config.phases import TierSource, TierValue
from phase_engine.services.phase_service import PhaseService


@pytest.fixture
def service(gateway, phase_config):
    return PhaseService(gateway, phase_config)


# =============================================================================
# TEST CLASS: Recalculation
# =============================================================================

class TestRecalculatePhase:

    def test_persists_tier_and_grants_reward(self, service, make_tree, session, frozen_time):
        rootId, _ = make_tree([2, 2])

        result = asyncio.run(service.recalculatePhase(rootId))

        assert result["effectiveTier"] == 3
        assert result["tierSource"] == "calculated"
        assert result["calculation"]["secondLevelTotal"] == 4

        record = session.get(PhaseRecord, rootId)
        assert record.calculatedTier == 3
        assert record.calculatedAt == frozen_time.now

        reward = session.get(PhaseReward, result["rewardId"])
        assert reward.tier == 3
        assert reward.creditRemainingCents == 5000

    def test_tier_zero_has_no_reward(self, service, make_member, count_rows):
        memberId = make_member()

        result = asyncio.run(service.recalculatePhase(memberId))

        assert result["effectiveTier"] == 0
        assert result["rewardId"] is None
        assert count_rows(PhaseReward) == 0
        assert count_rows(PhaseRecord) == 1

    def test_recalculation_is_idempotent_within_period(self, service, make_tree, count_rows):
        rootId, _ = make_tree([0, 0])

        first = asyncio.run(service.recalculatePhase(rootId))
        second = asyncio.run(service.recalculatePhase(rootId))

        assert first["rewardId"] == second["rewardId"]
        assert count_rows(PhaseReward) == 1

    def test_tier_drop_does_not_touch_existing_reward(self, service, make_tree, session):
        """
        TEST: Member loses qualification mid-period → reward of the
        period stays as granted.
        """
        rootId, directIds = make_tree([0, 0])
        asyncio.run(service.recalculatePhase(rootId))

        for directId in directIds:
            session.query(Subscription).filter_by(memberID=directId).one().status = SUBSCRIPTION_INACTIVE
        session.commit()

        result = asyncio.run(service.recalculatePhase(rootId))

        assert result["calculation"]["tier"] == 0
        assert session.get(PhaseReward, result["rewardId"]).hasFreeProduct is True

    def test_override_survives_recalculation(self, service, make_member, session):
        memberId = make_member()
        asyncio.run(service.setManualOverride(memberId, 2, adminId=1))

        result = asyncio.run(service.recalculatePhase(memberId))

        assert result["calculation"]["tier"] == 0
        assert result["effectiveTier"] == 2
        assert result["tierSource"] == "overridden"
        assert session.get(PhaseRecord, memberId).manualOverrideTier == 2

    def test_preview_writes_nothing(self, service, make_tree, count_rows):
        rootId, _ = make_tree([2, 2])

        calculation = asyncio.run(service.previewPhase(rootId))

        assert calculation.tier == 3
        assert count_rows(PhaseRecord) == 0
        assert count_rows(PhaseReward) == 0


# =============================================================================
# TEST CLASS: Overrides
# =============================================================================

class TestManualOverride:

    def test_never_recalculated_is_calculated_zero(self, service, make_member):
        tier = asyncio.run(service.getEffectiveTier(make_member()))

        assert tier == TierValue.calculated(0)

    def test_override_wins_over_calculated(self, service, make_tree, session, frozen_time):
        rootId, _ = make_tree([2, 2])
        asyncio.run(service.recalculatePhase(rootId))

        record = asyncio.run(service.setManualOverride(rootId, 1, adminId=42))

        assert record.calculatedTier == 3
        assert (record.overrideSetBy, record.overrideSetAt) == (42, frozen_time.now)
        tier = asyncio.run(service.getEffectiveTier(rootId))
        assert tier.level == 1
        assert tier.source is TierSource.OVERRIDDEN
        assert tier.isOverride

    def test_override_to_zero_is_kept(self, service, make_tree):
        """
        TEST: Override 0 is a real override, not "no override".
        """
        rootId, _ = make_tree([2, 2])
        asyncio.run(service.recalculatePhase(rootId))

        asyncio.run(service.setManualOverride(rootId, 0, adminId=1))

        assert asyncio.run(service.getEffectiveTier(rootId)) == TierValue.overridden(0)

    def test_override_grants_reward_for_overridden_tier(self, service, make_member, session):
        memberId = make_member()

        asyncio.run(service.setManualOverride(memberId, 2, adminId=1))

        reward = session.query(PhaseReward).filter_by(memberID=memberId).one()
        assert reward.tier == 2
        assert reward.creditRemainingCents == 2000

    def test_second_override_in_period_keeps_first_reward(self, service, make_member, count_rows, session):
        memberId = make_member()
        asyncio.run(service.setManualOverride(memberId, 2, adminId=1))

        asyncio.run(service.setManualOverride(memberId, 3, adminId=1))

        assert count_rows(PhaseReward) == 1
        assert session.query(PhaseReward).one().tier == 2

    def test_clear_restores_calculated(self, service, make_tree, session):
        rootId, _ = make_tree([0, 0])
        asyncio.run(service.recalculatePhase(rootId))
        asyncio.run(service.setManualOverride(rootId, 3, adminId=1))

        asyncio.run(service.clearManualOverride(rootId))

        assert asyncio.run(service.getEffectiveTier(rootId)) == TierValue.calculated(1)
        record = session.get(PhaseRecord, rootId)
        assert record.overrideSetBy is None
        assert record.overrideSetAt is None

    def test_clear_without_record(self, service, make_member):
        assert asyncio.run(service.clearManualOverride(make_member())) is None

    @pytest.mark.parametrize("tier", [-1, 4, "2", None, 2.0])
    def test_invalid_tier_rejected(self, service, make_member, count_rows, tier):
        with pytest.raises(ValueError):
            asyncio.run(service.setManualOverride(make_member(), tier, adminId=1))
        assert count_rows(PhaseRecord) == 0
