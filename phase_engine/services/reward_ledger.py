"""
Reward ledger - per-member phase rewards for a qualification period.

Tier 1 earns a one-time free product, tiers 2-3 a store-credit balance.
quoteDiscount() previews, commitDiscount() applies; only the latter writes.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from models.phase_reward import PhaseReward
from models.reward_movement import (
    RewardMovement,
    MOVEMENT_FREE_PRODUCT,
    MOVEMENT_STORE_CREDIT,
    MOVEMENT_EARNINGS_TRANSFER,
)
from phase_engine.gateway.persistence import PersistenceGateway, ConcurrencyConflict
from phase_engine.events.event_bus import eventBus, PhaseEvents
from phase_engine.config.phases import (
    PhaseConfigProvider,
    CREDIT_TIERS,
    FREE_PRODUCT_TIER,
    validate_tier,
)
from phase_engine.results import (
    ResultCode,
    DiscountKind,
    DiscountQuote,
    LedgerResult,
    validate_member_id,
)
from phase_engine.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewardPeriod:
    """Qualification period a reward belongs to."""
    periodKey: str
    startsAt: datetime
    expiresAt: datetime

    @classmethod
    def current(cls) -> "RewardPeriod":
        """Calendar month (UTC) containing now."""
        start, end = timeMachine.monthBounds()
        return cls(periodKey=start.strftime('%Y-%m'), startsAt=start, expiresAt=end)


class RewardLedger:
    """Creates, reads and consumes PhaseReward records."""

    def __init__(self, gateway: PersistenceGateway, phaseConfig: Optional[PhaseConfigProvider] = None):
        self.gateway = gateway
        self.phaseConfig = phaseConfig or PhaseConfigProvider()

    # ═══════════════════════════════════════════════════════════════════
    # CREATION & LOOKUP
    # ═══════════════════════════════════════════════════════════════════

    async def ensureExists(
            self,
            memberId: int,
            tier: int,
            periodConfig: Optional[RewardPeriod] = None
    ) -> Optional[PhaseReward]:
        """
        Make sure the member has a reward for the period.

        Idempotent: an existing record for (member, period) is returned
        unchanged, whatever tier it was created with. Tier 0 has no
        entitlement and returns None.

        Args:
            memberId: Member ID
            tier: Effective tier (0-3)
            periodConfig: Period, defaults to the current calendar month

        Returns:
            PhaseReward or None for tier 0
        """
        validate_member_id(memberId)
        validate_tier(tier)
        period = periodConfig or RewardPeriod.current()

        existing = self.gateway.getRewardForPeriod(memberId, period.periodKey)
        if existing is not None:
            return existing

        if tier == 0:
            return None

        creditCents = self.phaseConfig.getCreditCents(tier) if tier in CREDIT_TIERS else 0
        reward = PhaseReward(
            memberID=memberId,
            tier=tier,
            periodKey=period.periodKey,
            hasFreeProduct=(tier == FREE_PRODUCT_TIER),
            freeProductUsed=False,
            creditTotalCents=creditCents,
            creditRemainingCents=creditCents,
            expiresAt=period.expiresAt,
        )

        if self.gateway.insertReward(reward):
            logger.info(
                f"Phase reward created: member={memberId}, tier={tier}, "
                f"period={period.periodKey}, credit={creditCents}"
            )
            await eventBus.emit(PhaseEvents.REWARD_GRANTED, {
                "memberId": memberId,
                "rewardId": reward.rewardID,
                "tier": tier,
                "periodKey": period.periodKey,
                "creditCents": creditCents,
                "freeProduct": reward.hasFreeProduct,
            })
            return reward

        # Lost the insert race, return the winner's row
        return self.gateway.getRewardForPeriod(memberId, period.periodKey)

    async def getActive(self, memberId: int) -> Optional[PhaseReward]:
        """Newest unexpired reward, or None."""
        validate_member_id(memberId)
        return self.gateway.getActiveReward(memberId, timeMachine.now)

    # ═══════════════════════════════════════════════════════════════════
    # DISCOUNTS
    # ═══════════════════════════════════════════════════════════════════

    async def quoteDiscount(self, memberId: int, subtotalCents: int) -> DiscountQuote:
        """
        Preview the discount the member's active reward gives on subtotal.
        Never writes.
        """
        validate_member_id(memberId)
        if subtotalCents <= 0:
            return DiscountQuote(0, DiscountKind.NONE)

        reward = self.gateway.getActiveReward(memberId, timeMachine.now)
        if reward is None:
            return DiscountQuote(0, DiscountKind.NONE)

        if reward.tier == FREE_PRODUCT_TIER and reward.hasFreeProduct and not reward.freeProductUsed:
            productValue = self.phaseConfig.getFreeProductValueCents(reward.tier)
            return DiscountQuote(
                min(subtotalCents, productValue),
                DiscountKind.FREE_PRODUCT,
                reward.rewardID
            )

        if reward.tier in CREDIT_TIERS and reward.creditRemainingCents > 0:
            return DiscountQuote(
                min(subtotalCents, reward.creditRemainingCents),
                DiscountKind.STORE_CREDIT,
                reward.rewardID
            )

        return DiscountQuote(0, DiscountKind.NONE)

    async def commitDiscount(
            self,
            memberId: int,
            amountCents: int,
            kind: DiscountKind,
            reference: Optional[str] = None
    ) -> LedgerResult:
        """
        Apply a quoted discount atomically.

        FREE_PRODUCT: flips freeProductUsed once; a second call returns
        ALREADY_CONSUMED. STORE_CREDIT: decrements creditRemainingCents by
        amountCents with a compare-and-swap on the read balance; more than
        the balance returns INSUFFICIENT_BALANCE and nothing changes.

        Args:
            memberId: Member ID
            amountCents: Discount to apply
            kind: DiscountKind.FREE_PRODUCT or DiscountKind.STORE_CREDIT
            reference: Order reference for the movement journal

        Returns:
            LedgerResult
        """
        validate_member_id(memberId)

        if amountCents <= 0:
            return LedgerResult(ResultCode.VALIDATION_ERROR, details="Amount must be positive")

        if kind is DiscountKind.FREE_PRODUCT:
            return await self._commitFreeProduct(memberId, amountCents, reference)
        if kind is DiscountKind.STORE_CREDIT:
            return await self._commitStoreCredit(memberId, amountCents, reference)

        return LedgerResult(ResultCode.VALIDATION_ERROR, details=f"Invalid reward kind: {kind}")

    async def _commitFreeProduct(self, memberId: int, amountCents: int, reference: Optional[str]) -> LedgerResult:
        try:
            with self.gateway.atomic():
                reward = self.gateway.getActiveReward(memberId, timeMachine.now)
                if reward is None or reward.tier != FREE_PRODUCT_TIER or not reward.hasFreeProduct:
                    return LedgerResult(ResultCode.NOT_FOUND, details="Free product reward not available")

                if reward.freeProductUsed:
                    return LedgerResult(
                        ResultCode.ALREADY_CONSUMED,
                        kind=DiscountKind.FREE_PRODUCT,
                        details="Free product already used"
                    )

                rewardId = reward.rewardID
                applied = min(amountCents, self.phaseConfig.getFreeProductValueCents(reward.tier))

                if not self.gateway.markFreeProductUsed(rewardId):
                    raise ConcurrencyConflict(f"Free product of reward {rewardId} consumed concurrently")

                self.gateway.add(RewardMovement(
                    rewardID=rewardId,
                    memberID=memberId,
                    kind=MOVEMENT_FREE_PRODUCT,
                    amountCents=applied,
                    reference=reference
                ))

        except ConcurrencyConflict as e:
            logger.info(f"Free product commit lost race for member {memberId}: {e}")
            return LedgerResult(
                ResultCode.ALREADY_CONSUMED,
                kind=DiscountKind.FREE_PRODUCT,
                details="Free product already used"
            )

        logger.info(f"Free product applied: member={memberId}, amount={applied}")
        return LedgerResult(ResultCode.OK, appliedCents=applied, kind=DiscountKind.FREE_PRODUCT)

    async def _commitStoreCredit(self, memberId: int, amountCents: int, reference: Optional[str]) -> LedgerResult:
        try:
            with self.gateway.atomic():
                reward = self.gateway.getActiveReward(memberId, timeMachine.now)
                if reward is None or reward.tier not in CREDIT_TIERS:
                    return LedgerResult(ResultCode.NOT_FOUND, details="Store credit not available")

                rewardId = reward.rewardID
                before = reward.creditRemainingCents
                if amountCents > before:
                    return LedgerResult(
                        ResultCode.INSUFFICIENT_BALANCE,
                        kind=DiscountKind.STORE_CREDIT,
                        remainingCreditCents=before,
                        details=f"Requested {amountCents}, available {before}"
                    )

                after = before - amountCents
                if not self.gateway.casRewardCredit(rewardId, before, after):
                    raise ConcurrencyConflict(f"Credit of reward {rewardId} changed since read")

                self.gateway.add(RewardMovement(
                    rewardID=rewardId,
                    memberID=memberId,
                    kind=MOVEMENT_STORE_CREDIT,
                    amountCents=amountCents,
                    reference=reference
                ))

        except ConcurrencyConflict as e:
            logger.info(f"Store credit commit conflict for member {memberId}: {e}")
            return LedgerResult(
                ResultCode.CONCURRENCY_CONFLICT,
                kind=DiscountKind.STORE_CREDIT,
                details=str(e)
            )

        logger.info(f"Store credit applied: member={memberId}, amount={amountCents}, remaining={after}")
        return LedgerResult(
            ResultCode.OK,
            appliedCents=amountCents,
            kind=DiscountKind.STORE_CREDIT,
            remainingCreditCents=after
        )

    # ═══════════════════════════════════════════════════════════════════
    # AUDIT
    # ═══════════════════════════════════════════════════════════════════

    async def reconcile(self, rewardId: int) -> bool:
        """
        Check value conservation for a reward:
        creditRemaining + store credit spent + transferred out == creditTotal.
        """
        self.gateway.expireAll()
        reward = self.gateway.getReward(rewardId)
        if reward is None:
            return False

        totals = self.gateway.rewardMovementTotals(rewardId)
        movedOut = totals.get(MOVEMENT_STORE_CREDIT, 0) + totals.get(MOVEMENT_EARNINGS_TRANSFER, 0)
        balanced = reward.creditRemainingCents + movedOut == reward.creditTotalCents

        if not balanced:
            logger.error(
                f"Reward {rewardId} out of balance: remaining={reward.creditRemainingCents}, "
                f"movedOut={movedOut}, total={reward.creditTotalCents}"
            )
        return balanced
