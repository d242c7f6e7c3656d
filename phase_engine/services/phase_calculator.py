"""
Phase qualification calculator.

Computes a member's tier from the shape of the referral tree two levels
down (direct referrals and their referrals) and the subscription state of
everyone involved. Read-only: safe to call repeatedly and concurrently.
"""
from dataclasses import dataclass, asdict
from collections import Counter
from typing import Dict
import logging

from phase_engine.gateway.persistence import PersistenceGateway
from phase_engine.results import validate_member_id
from phase_engine.config.phases import (
    TIER1_MIN_DIRECT_ACTIVE,
    TIER2_MIN_SECOND_LEVEL_TOTAL,
    TIER2_MIN_PER_BRANCH,
    TIER3_MIN_DIRECT_ACTIVE,
    TIER3_MIN_PER_BRANCH,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhaseCalculation:
    """Calculated tier plus the counters it was derived from."""
    tier: int
    directActiveCount: int
    totalDirectReferrals: int
    secondLevelTotal: int
    minSecondLevelPerBranch: int
    subscriptionActive: bool

    def toDict(self) -> Dict:
        return asdict(self)


INACTIVE_CALCULATION = PhaseCalculation(
    tier=0,
    directActiveCount=0,
    totalDirectReferrals=0,
    secondLevelTotal=0,
    minSecondLevelPerBranch=0,
    subscriptionActive=False,
)


def tier_from_counters(
        subscriptionActive: bool,
        directActiveCount: int,
        secondLevelTotal: int,
        minSecondLevelPerBranch: int
) -> int:
    """
    Apply tier thresholds; each tier gates the next.

    Tier 3 repeats the tier 2 per-branch condition on purpose, matching
    the production thresholds.

    Returns:
        Highest tier satisfied (0-3)
    """
    tier1 = subscriptionActive and directActiveCount >= TIER1_MIN_DIRECT_ACTIVE
    tier2 = (
        tier1
        and secondLevelTotal >= TIER2_MIN_SECOND_LEVEL_TOTAL
        and minSecondLevelPerBranch >= TIER2_MIN_PER_BRANCH
    )
    tier3 = (
        tier2
        and directActiveCount >= TIER3_MIN_DIRECT_ACTIVE
        and minSecondLevelPerBranch >= TIER3_MIN_PER_BRANCH
    )

    if tier3:
        return 3
    if tier2:
        return 2
    if tier1:
        return 1
    return 0


class PhaseQualificationCalculator:
    """Pure tier calculation over the referral tree."""

    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    def calculate(self, memberId: int) -> PhaseCalculation:
        """
        Calculate a member's tier.

        Steps:
        1. Inactive subscription -> tier 0, all counters zero
        2. Direct referrals: total and active
        3. Second level: active members overall and per direct branch
        4. Thresholds

        Args:
            memberId: Member to calculate

        Returns:
            PhaseCalculation

        Raises:
            ValidationError: If memberId is malformed
        """
        validate_member_id(memberId)

        if not self.gateway.isSubscriptionActive(memberId):
            logger.debug(f"Member {memberId} has no active subscription, tier 0")
            return INACTIVE_CALCULATION

        # Level 1
        directIds = self.gateway.getDirectReferralIds(memberId)
        activeDirectIds = self.gateway.getActiveMemberIds(directIds)

        # Level 2
        edges = self.gateway.getReferralEdges(directIds)
        activeSecondLevelIds = self.gateway.getActiveMemberIds(child for child, _ in edges)

        # Only branches that contribute at least one active member count
        # toward the weakest-leg minimum
        perBranch = Counter(
            parent for child, parent in edges if child in activeSecondLevelIds
        )
        minPerBranch = min(perBranch.values()) if perBranch else 0

        calculation = PhaseCalculation(
            tier=tier_from_counters(
                subscriptionActive=True,
                directActiveCount=len(activeDirectIds),
                secondLevelTotal=len(activeSecondLevelIds),
                minSecondLevelPerBranch=minPerBranch
            ),
            directActiveCount=len(activeDirectIds),
            totalDirectReferrals=len(directIds),
            secondLevelTotal=len(activeSecondLevelIds),
            minSecondLevelPerBranch=minPerBranch,
            subscriptionActive=True,
        )

        logger.debug(
            f"Member {memberId} calculated tier {calculation.tier}: "
            f"direct={calculation.directActiveCount}/{calculation.totalDirectReferrals}, "
            f"L2={calculation.secondLevelTotal}, minBranch={calculation.minSecondLevelPerBranch}"
        )

        return calculation
