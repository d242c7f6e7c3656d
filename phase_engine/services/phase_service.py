"""
Phase management service.

Persists calculated tiers, handles administrator overrides and keeps the
member's reward for the current period in line with the effective tier.
"""
from typing import Optional, Dict
import logging

from models.phase_record import PhaseRecord
from phase_engine.gateway.persistence import PersistenceGateway
from phase_engine.config.phases import (
    TierValue,
    PhaseConfigProvider,
    resolve_effective_tier,
    validate_tier,
)
from phase_engine.results import validate_member_id
from phase_engine.services.phase_calculator import PhaseQualificationCalculator, PhaseCalculation
from phase_engine.services.reward_ledger import RewardLedger
from phase_engine.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class PhaseService:
    """Service for recomputing and overriding member phases."""

    def __init__(
            self,
            gateway: PersistenceGateway,
            phaseConfig: Optional[PhaseConfigProvider] = None,
            calculator: Optional[PhaseQualificationCalculator] = None,
            ledger: Optional[RewardLedger] = None
    ):
        self.gateway = gateway
        self.calculator = calculator or PhaseQualificationCalculator(gateway)
        self.ledger = ledger or RewardLedger(gateway, phaseConfig)

    async def recalculatePhase(self, memberId: int) -> Dict:
        """
        Recompute a member's tier and grant the reward for the current period.

        Returns:
            Dict with calculation counters, effective tier and reward id
        """
        calculation = self.calculator.calculate(memberId)

        with self.gateway.atomic():
            record = self.gateway.getOrCreatePhaseRecord(memberId)
            previousTier = record.calculatedTier
            record.calculatedTier = calculation.tier
            record.calculatedAt = timeMachine.now
            effective = resolve_effective_tier(record.calculatedTier, record.manualOverrideTier)

        if previousTier != calculation.tier:
            logger.info(
                f"Member {memberId} calculated tier changed: {previousTier} → {calculation.tier}"
            )

        reward = await self.ledger.ensureExists(memberId, effective.level)

        return {
            "memberId": memberId,
            "calculation": calculation.toDict(),
            "effectiveTier": effective.level,
            "tierSource": effective.source.value,
            "rewardId": reward.rewardID if reward else None,
        }

    async def previewPhase(self, memberId: int) -> PhaseCalculation:
        """What the system would calculate, ignoring any override. No writes."""
        return self.calculator.calculate(memberId)

    async def getEffectiveTier(self, memberId: int) -> TierValue:
        """
        Effective tier of a member: override if set, else last calculated.
        A member never recalculated is Calculated(0).
        """
        validate_member_id(memberId)
        record = self.gateway.getPhaseRecord(memberId)
        if record is None:
            return TierValue.calculated(0)
        return resolve_effective_tier(record.calculatedTier, record.manualOverrideTier)

    async def setManualOverride(self, memberId: int, tier: int, adminId: int) -> PhaseRecord:
        """
        Pin a member's tier. Permission checks belong to the caller.

        Args:
            memberId: Member to override
            tier: Tier 0-3
            adminId: Administrator member ID, stored for audit

        Returns:
            Updated PhaseRecord
        """
        validate_member_id(memberId)
        validate_tier(tier)

        with self.gateway.atomic():
            record = self.gateway.getOrCreatePhaseRecord(memberId)
            record.manualOverrideTier = tier
            record.overrideSetBy = adminId
            record.overrideSetAt = timeMachine.now

        logger.info(f"Phase override set: member={memberId}, tier={tier}, by admin {adminId}")

        await self.ledger.ensureExists(memberId, tier)
        return record

    async def clearManualOverride(self, memberId: int) -> Optional[PhaseRecord]:
        """Remove an override; the calculated tier becomes effective again."""
        validate_member_id(memberId)

        with self.gateway.atomic():
            record = self.gateway.getPhaseRecord(memberId)
            if record is None or record.manualOverrideTier is None:
                return record
            record.manualOverrideTier = None
            record.overrideSetBy = None
            record.overrideSetAt = None

        logger.info(f"Phase override cleared for member {memberId}")
        return record
