"""
Phase (tier) configuration and constants.
Reward amounts load from Config; qualification thresholds are fixed.
"""
from enum import Enum
from dataclasses import dataclass
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)


MIN_TIER = 0
MAX_TIER = 3

# Qualification thresholds (two-level tree)
TIER1_MIN_DIRECT_ACTIVE = 2
TIER2_MIN_SECOND_LEVEL_TOTAL = 4
TIER2_MIN_PER_BRANCH = 2
TIER3_MIN_DIRECT_ACTIVE = 2
TIER3_MIN_PER_BRANCH = 2

# Tiers that hold a store-credit balance
CREDIT_TIERS = (2, 3)
FREE_PRODUCT_TIER = 1


class TierSource(Enum):
    """Where a tier value came from."""
    CALCULATED = "calculated"
    OVERRIDDEN = "overridden"


@dataclass(frozen=True)
class TierValue:
    """Tier tagged with its source: Calculated(n) or Overridden(n)."""
    level: int
    source: TierSource

    @classmethod
    def calculated(cls, level: int) -> "TierValue":
        return cls(level, TierSource.CALCULATED)

    @classmethod
    def overridden(cls, level: int) -> "TierValue":
        return cls(level, TierSource.OVERRIDDEN)

    @property
    def isOverride(self) -> bool:
        return self.source is TierSource.OVERRIDDEN


def resolve_effective_tier(calculatedTier: int, manualOverrideTier: Optional[int]) -> TierValue:
    """
    Resolve the effective tier: the override wins when present.

    Args:
        calculatedTier: Tier produced by the calculator
        manualOverrideTier: Admin override or None

    Returns:
        TierValue tagged with its source
    """
    if manualOverrideTier is not None:
        return TierValue.overridden(manualOverrideTier)
    return TierValue.calculated(calculatedTier or 0)


def validate_tier(tier: int) -> int:
    """Raise ValueError unless tier is an int in 0..3."""
    if isinstance(tier, bool) or not isinstance(tier, int) or not MIN_TIER <= tier <= MAX_TIER:
        raise ValueError(f"Tier must be an integer between {MIN_TIER} and {MAX_TIER}, got {tier!r}")
    return tier


class PhaseConfigProvider:
    """
    Per-tier reward amounts.

    Default source is Config (PHASE_FREE_PRODUCT_VALUE_CENTS and
    PHASE_CREDIT_CENTS); explicit mappings can be passed for tests or
    for a host that loads them elsewhere.
    """

    def __init__(
            self,
            freeProductValueCents: Optional[Dict[int, int]] = None,
            creditCents: Optional[Dict[int, int]] = None
    ):
        self._freeProductValueCents = freeProductValueCents
        self._creditCents = creditCents

    def _freeProductMap(self) -> Dict[int, int]:
        if self._freeProductValueCents is not None:
            return self._freeProductValueCents
        from config import Config
        return Config.get(Config.PHASE_FREE_PRODUCT_VALUE_CENTS) or {}

    def _creditMap(self) -> Dict[int, int]:
        if self._creditCents is not None:
            return self._creditCents
        from config import Config
        return Config.get(Config.PHASE_CREDIT_CENTS) or {}

    def getFreeProductValueCents(self, tier: int) -> int:
        """Configured free-product value for tier, 0 if none."""
        value = int(self._freeProductMap().get(tier, 0))
        if value <= 0 and tier == FREE_PRODUCT_TIER:
            logger.warning(f"Free product value for tier {tier} is not configured")
        return max(value, 0)

    def getCreditCents(self, tier: int) -> int:
        """Configured store credit for tier, 0 if none."""
        value = int(self._creditMap().get(tier, 0))
        if value <= 0 and tier in CREDIT_TIERS:
            logger.warning(f"Store credit for tier {tier} is not configured")
        return max(value, 0)
