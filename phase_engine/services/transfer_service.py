"""
Earnings and wallet transfers.

Moves value reward -> earnings -> wallet. Each transfer is one database
transaction built from conditional updates; if any of them loses its race
the whole transfer is rolled back and CONCURRENCY_CONFLICT is returned.
"""
from typing import Optional, Dict
import logging

from models.earnings_entry import EarningsEntry, EARNINGS_AVAILABLE
from models.reward_movement import RewardMovement, MOVEMENT_EARNINGS_TRANSFER
from models.wallet import WalletTransaction, WALLET_REASON_EARNINGS
from models.payout import PayoutAccount, PAYOUT_ACCOUNT_ACTIVE
from phase_engine.gateway.persistence import PersistenceGateway, ConcurrencyConflict
from phase_engine.gateway.payment_rail import PaymentRail
from phase_engine.config.phases import CREDIT_TIERS, resolve_effective_tier
from phase_engine.events.event_bus import eventBus, PhaseEvents
from phase_engine.results import (
    ResultCode,
    TransferResult,
    ValidationError,
    validate_member_id,
)
from phase_engine.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class EarningsWalletTransferService:
    """Service for moving value between reward, earnings and wallet."""

    def __init__(self, gateway: PersistenceGateway, paymentRail: Optional[PaymentRail] = None):
        self.gateway = gateway
        self.paymentRail = paymentRail

    def _effectiveTier(self, memberId: int) -> int:
        record = self.gateway.getPhaseRecord(memberId)
        if record is None:
            return 0
        return resolve_effective_tier(record.calculatedTier, record.manualOverrideTier).level

    # ═══════════════════════════════════════════════════════════════════
    # REWARD -> EARNINGS
    # ═══════════════════════════════════════════════════════════════════

    async def transferRewardToEarnings(self, memberId: int) -> TransferResult:
        """
        Move the whole remaining store credit of the active reward into
        a new available earnings entry.

        Only members whose effective tier holds store credit (2 or 3) may
        transfer.

        Args:
            memberId: Member ID

        Returns:
            TransferResult with transferredCents and earningsEntryID
        """
        validate_member_id(memberId)

        tier = self._effectiveTier(memberId)
        if tier not in CREDIT_TIERS:
            return TransferResult(
                ResultCode.WRONG_TIER,
                details=f"Tier {tier} cannot transfer rewards to earnings"
            )

        try:
            with self.gateway.atomic():
                reward = self.gateway.getActiveReward(memberId, timeMachine.now)
                if reward is None or reward.tier not in CREDIT_TIERS:
                    return TransferResult(ResultCode.NOT_FOUND, details="No active store credit reward")

                amount = reward.creditRemainingCents
                if amount <= 0:
                    return TransferResult(ResultCode.INSUFFICIENT_BALANCE, details="Store credit is empty")

                rewardId = reward.rewardID
                if not self.gateway.casRewardCredit(rewardId, amount, 0):
                    raise ConcurrencyConflict(f"Credit of reward {rewardId} changed since read")

                entry = self.gateway.add(EarningsEntry(
                    memberID=memberId,
                    amountCents=amount,
                    availableCents=amount,
                    status=EARNINGS_AVAILABLE,
                    source="phase_reward",
                    rewardID=rewardId
                ))
                self.gateway.add(RewardMovement(
                    rewardID=rewardId,
                    memberID=memberId,
                    kind=MOVEMENT_EARNINGS_TRANSFER,
                    amountCents=amount,
                    reference=f"earnings:{entry.entryID}"
                ))
                entryId = entry.entryID

        except ConcurrencyConflict as e:
            logger.info(f"Reward transfer conflict for member {memberId}: {e}")
            return TransferResult(ResultCode.CONCURRENCY_CONFLICT, details=str(e))

        logger.info(f"Reward transferred to earnings: member={memberId}, amount={amount}")
        return TransferResult(ResultCode.OK, transferredCents=amount, earningsEntryID=entryId)

    # ═══════════════════════════════════════════════════════════════════
    # EARNINGS -> WALLET
    # ═══════════════════════════════════════════════════════════════════

    async def getAvailableEarnings(self, memberId: int) -> int:
        """Sum of availableCents over the member's earnings."""
        validate_member_id(memberId)
        return self.gateway.sumAvailableEarnings(memberId)

    async def transferEarningsToWallet(self, memberId: int, amountCents: int) -> TransferResult:
        """
        Move amountCents of available earnings into the wallet.

        Entries are consumed oldest first; the last one may be consumed
        partially. The wallet is created on first use.

        Args:
            memberId: Member ID
            amountCents: Amount to move

        Returns:
            TransferResult with newWalletBalanceCents
        """
        validate_member_id(memberId)

        if isinstance(amountCents, bool) or not isinstance(amountCents, int) or amountCents <= 0:
            return TransferResult(ResultCode.VALIDATION_ERROR, details="Amount must be a positive integer")

        # Wallet row is committed on its own so the transfer unit only updates
        self.gateway.ensureWallet(memberId)

        try:
            with self.gateway.atomic():
                entries = self.gateway.getAvailableEarnings(memberId)
                available = sum(entry.availableCents for entry in entries)
                if amountCents > available:
                    return TransferResult(
                        ResultCode.INSUFFICIENT_BALANCE,
                        details=f"Requested {amountCents}, available {available}"
                    )

                remaining = amountCents
                consumed = []
                for entry in entries:
                    if remaining == 0:
                        break
                    take = min(remaining, entry.availableCents)
                    if not self.gateway.casEarningsAvailable(
                            entry.entryID,
                            entry.availableCents,
                            entry.availableCents - take
                    ):
                        raise ConcurrencyConflict(f"Earnings entry {entry.entryID} changed since read")
                    consumed.append(str(entry.entryID))
                    remaining -= take

                now = timeMachine.now
                newBalance = self.gateway.creditWallet(memberId, amountCents, now)
                self.gateway.add(WalletTransaction(
                    memberID=memberId,
                    deltaCents=amountCents,
                    balanceAfterCents=newBalance,
                    reason=WALLET_REASON_EARNINGS,
                    reference="earnings:" + ",".join(consumed)
                ))

        except ConcurrencyConflict as e:
            logger.info(f"Earnings transfer conflict for member {memberId}: {e}")
            return TransferResult(ResultCode.CONCURRENCY_CONFLICT, details=str(e))

        # Cached entries were updated behind the identity map
        self.gateway.expireAll()

        logger.info(
            f"Earnings transferred to wallet: member={memberId}, amount={amountCents}, "
            f"balance={newBalance}"
        )

        await eventBus.emit(PhaseEvents.WALLET_CREDITED, {
            "memberId": memberId,
            "amountCents": amountCents,
            "balanceCents": newBalance,
        })

        return TransferResult(
            ResultCode.OK,
            transferredCents=amountCents,
            newWalletBalanceCents=newBalance
        )

    # ═══════════════════════════════════════════════════════════════════
    # PAYOUT ACCOUNTS
    # ═══════════════════════════════════════════════════════════════════

    async def connectPayoutAccount(self, memberId: int, provider: str, externalAccountId: str) -> PayoutAccount:
        """
        Link (or relink) the member's payout account.

        Raises:
            ValidationError: Empty ids, or a different provider already linked
        """
        validate_member_id(memberId)
        if not provider or not externalAccountId:
            raise ValidationError("Provider and external account id are required")

        with self.gateway.atomic():
            account = self.gateway.getPayoutAccount(memberId)
            if account is not None and account.provider != provider:
                raise ValidationError(
                    f"Member {memberId} already has a {account.provider} payout account"
                )
            if account is None:
                account = self.gateway.add(PayoutAccount(
                    memberID=memberId,
                    provider=provider,
                    externalAccountID=externalAccountId,
                    status=PAYOUT_ACCOUNT_ACTIVE
                ))
            else:
                account.externalAccountID = externalAccountId
                account.status = PAYOUT_ACCOUNT_ACTIVE

        logger.info(f"Payout account connected: member={memberId}, provider={provider}")
        return account

    async def disconnectPayoutAccount(self, memberId: int) -> Dict:
        """
        Unlink the payout account at the provider, then delete the local row.

        Provider errors propagate and leave the local row in place.

        Returns:
            {"removed": bool}
        """
        validate_member_id(memberId)

        account = self.gateway.getPayoutAccount(memberId)
        if account is None:
            return {"removed": False}

        if self.paymentRail is not None:
            await self.paymentRail.disconnect(memberId, account.externalAccountID)

        with self.gateway.atomic():
            removed = self.gateway.deletePayoutAccount(memberId)

        logger.info(f"Payout account disconnected for member {memberId}")
        return {"removed": removed}
