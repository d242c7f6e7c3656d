"""
Automatic payout.

evaluate() decides whether a member's wallet should be paid out, claims
the run by moving AutoPayoutConfig.lastTriggeredAt with a compare-and-swap,
calls the payment rail and only then debits the wallet. A failed,
rejected, timed out or cancelled disbursement releases the claim and
leaves the wallet as it was; unexpected rail errors release it too and
propagate.

A single payout never exceeds MAX_AUTO_PAYOUT_CENTS. A capped payout
counts as unfinished, so the next run pays the remainder without
waiting for a new credit.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import logging

from sqlalchemy.exc import IntegrityError

from config import Config
from models.payout import (
    AutoPayoutConfig,
    Payout,
    PayoutAccount,
    PAYOUT_MODES,
    PAYOUT_MODE_AUTOMATIC,
    PAYOUT_MODE_MANUAL,
    PAYOUT_ACCOUNT_ACTIVE,
)
from models.wallet import WalletTransaction, WALLET_REASON_PAYOUT
from phase_engine.gateway.persistence import PersistenceGateway
from phase_engine.gateway.payment_rail import PaymentRail, PaymentRailError
from phase_engine.events.event_bus import eventBus, PhaseEvents
from phase_engine.results import (
    ResultCode,
    PayoutEvaluation,
    ValidationError,
    validate_member_id,
)
from phase_engine.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)

DEFAULT_PAYOUT_MIN_CENTS = 900
DEFAULT_MAX_AUTO_PAYOUT_CENTS = 100_000_000


class AutoPayoutScheduler:
    """Threshold-triggered payouts for members in automatic mode."""

    def __init__(
            self,
            gateway: PersistenceGateway,
            paymentRail: PaymentRail,
            defaultTimeout: Optional[float] = None
    ):
        self.gateway = gateway
        self.paymentRail = paymentRail
        self.defaultTimeout = defaultTimeout

    # ═══════════════════════════════════════════════════════════════════
    # SETTINGS
    # ═══════════════════════════════════════════════════════════════════

    @staticmethod
    def payoutMinimumCents() -> int:
        return int(Config.get(Config.PAYOUT_MIN_CENTS, DEFAULT_PAYOUT_MIN_CENTS))

    @staticmethod
    def maxAutoPayoutCents() -> int:
        return int(Config.get(Config.MAX_AUTO_PAYOUT_CENTS, DEFAULT_MAX_AUTO_PAYOUT_CENTS))

    @staticmethod
    def paymentsEnabled() -> bool:
        """Global PAYMENT_MODE switch; manual disables every automatic payout."""
        return Config.get(Config.PAYMENT_MODE, PAYOUT_MODE_AUTOMATIC) != PAYOUT_MODE_MANUAL

    def effectiveThreshold(self, config: AutoPayoutConfig) -> int:
        return max(config.thresholdCents, self.payoutMinimumCents())

    async def getConfig(self, memberId: int) -> AutoPayoutConfig:
        """Payout config of the member, created with defaults on first access."""
        validate_member_id(memberId)

        config = self.gateway.getPayoutConfig(memberId)
        if config is not None:
            return config

        try:
            with self.gateway.atomic():
                config = self.gateway.add(AutoPayoutConfig(
                    memberID=memberId,
                    thresholdCents=self.payoutMinimumCents(),
                    mode=PAYOUT_MODE_MANUAL
                ))
        except IntegrityError:
            config = self.gateway.getPayoutConfig(memberId)
        return config

    async def updateThreshold(self, memberId: int, thresholdCents: int, mode: str) -> AutoPayoutConfig:
        """
        Update a member's payout policy.

        Raises:
            ValidationError: Threshold outside 0..MAX_AUTO_PAYOUT_CENTS or unknown mode
        """
        validate_member_id(memberId)

        if isinstance(thresholdCents, bool) or not isinstance(thresholdCents, int):
            raise ValidationError(f"Threshold must be an integer, got {thresholdCents!r}")
        if thresholdCents < 0:
            raise ValidationError("Threshold cannot be negative")
        if thresholdCents > self.maxAutoPayoutCents():
            raise ValidationError(f"Threshold cannot exceed {self.maxAutoPayoutCents()} cents")
        if mode not in PAYOUT_MODES:
            raise ValidationError(f"Mode must be one of {', '.join(PAYOUT_MODES)}, got {mode!r}")

        config = await self.getConfig(memberId)
        with self.gateway.atomic():
            config.thresholdCents = thresholdCents
            config.mode = mode

        logger.info(f"Payout config updated: member={memberId}, threshold={thresholdCents}, mode={mode}")
        return config

    def activePayoutAccount(self, memberId: int) -> Optional[PayoutAccount]:
        """Linked account money can be sent to, or None."""
        account = self.gateway.getPayoutAccount(memberId)
        if account is None or account.status != PAYOUT_ACCOUNT_ACTIVE or not account.externalAccountID:
            return None
        return account

    async def getStatus(self, memberId: int) -> Dict[str, Any]:
        """Snapshot of the member's auto-payout state for display."""
        config = await self.getConfig(memberId)
        balance = self.gateway.getWalletBalanceCents(memberId)
        threshold = self.effectiveThreshold(config)
        hasAccount = self.activePayoutAccount(memberId) is not None
        enabled = config.mode == PAYOUT_MODE_AUTOMATIC and self.paymentsEnabled() and hasAccount

        return {
            "memberId": memberId,
            "enabled": enabled,
            "eligible": enabled and balance > 0 and balance >= threshold,
            "balanceCents": balance,
            "thresholdCents": threshold,
            "mode": config.mode,
            "payoutAccountLinked": hasAccount,
            "lastTriggeredAt": config.lastTriggeredAt,
        }

    # ═══════════════════════════════════════════════════════════════════
    # EVALUATION
    # ═══════════════════════════════════════════════════════════════════

    def _hasNewCredit(self, memberId: int, lastTriggeredAt: Optional[datetime]) -> bool:
        if lastTriggeredAt is None:
            return True
        wallet = self.gateway.getWallet(memberId)
        if wallet and wallet.lastCreditedAt and wallet.lastCreditedAt > lastTriggeredAt:
            return True
        # Remainder of a capped payout is still owed
        latest = self.gateway.getLatestPayout(memberId)
        return bool(latest and latest.capped and latest.status == "confirmed")

    def _claim(self, memberId: int, previous: Optional[datetime]) -> Optional[datetime]:
        """Move lastTriggeredAt forward; None if someone else got there first."""
        claimAt = timeMachine.now
        if previous is not None and claimAt <= previous:
            claimAt = previous + timedelta(microseconds=1)

        with self.gateway.atomic():
            claimed = self.gateway.casPayoutClaim(memberId, previous, claimAt)
        return claimAt if claimed else None

    def _release(self, memberId: int, claimAt: datetime, previous: Optional[datetime]) -> None:
        with self.gateway.atomic():
            if not self.gateway.casPayoutClaim(memberId, claimAt, previous):
                logger.warning(f"Payout claim of member {memberId} moved before release")

    async def evaluate(self, memberId: int, timeout: Optional[float] = None) -> PayoutEvaluation:
        """
        Pay out the wallet if the member qualifies.

        Conditions: automatic mode (member and global), an active payout
        account, balance > 0, balance >= effective threshold, wallet
        credited since the last run (or the last payout was capped).

        Args:
            memberId: Member ID
            timeout: Seconds to wait for the payment rail

        Returns:
            PayoutEvaluation; triggered=False with a reason when nothing was sent

        Raises:
            asyncio.CancelledError: Propagated after the claim is released
            Exception: Any unexpected rail error, after the claim is released
        """
        validate_member_id(memberId)

        if not self.paymentsEnabled():
            return PayoutEvaluation(triggered=False, reason="payments_disabled")

        config = await self.getConfig(memberId)
        if config.mode != PAYOUT_MODE_AUTOMATIC:
            return PayoutEvaluation(triggered=False, reason="manual_mode")

        account = self.activePayoutAccount(memberId)
        if account is None:
            return PayoutEvaluation(triggered=False, reason="no_payout_account")

        balance = self.gateway.getWalletBalanceCents(memberId)
        threshold = self.effectiveThreshold(config)
        if balance <= 0 or balance < threshold:
            return PayoutEvaluation(triggered=False, reason="below_threshold")

        previous = config.lastTriggeredAt
        if not self._hasNewCredit(memberId, previous):
            return PayoutEvaluation(triggered=False, reason="no_new_credit")

        claimAt = self._claim(memberId, previous)
        if claimAt is None:
            logger.info(f"Payout for member {memberId} already claimed by another run")
            return PayoutEvaluation(
                triggered=False,
                code=ResultCode.CONCURRENCY_CONFLICT,
                reason="already_claimed"
            )

        amount = min(balance, self.maxAutoPayoutCents())
        capped = amount < balance
        idempotencyKey = f"auto-payout-{memberId}-{claimAt.isoformat()}"
        timeout = timeout if timeout is not None else self.defaultTimeout

        logger.info(f"Auto payout triggered: member={memberId}, amount={amount}")

        try:
            railResult = await asyncio.wait_for(
                self.paymentRail.disburse(memberId, account.externalAccountID, amount, idempotencyKey),
                timeout
            )
        except asyncio.CancelledError:
            self._release(memberId, claimAt, previous)
            logger.warning(f"Auto payout for member {memberId} cancelled, claim released")
            raise
        except asyncio.TimeoutError:
            self._release(memberId, claimAt, previous)
            logger.error(f"Auto payout for member {memberId} timed out after {timeout}s")
            return PayoutEvaluation(
                triggered=False,
                code=ResultCode.EXTERNAL_SERVICE_ERROR,
                reason="timeout"
            )
        except PaymentRailError as e:
            self._release(memberId, claimAt, previous)
            logger.error(f"Auto payout for member {memberId} failed: {e}")
            return PayoutEvaluation(
                triggered=False,
                code=ResultCode.EXTERNAL_SERVICE_ERROR,
                reason=str(e)
            )
        except BaseException:
            self._release(memberId, claimAt, previous)
            logger.error(f"Auto payout for member {memberId} failed unexpectedly, claim released", exc_info=True)
            raise

        if not railResult.success:
            self._release(memberId, claimAt, previous)
            logger.warning(f"Auto payout for member {memberId} rejected: {railResult.error}")
            return PayoutEvaluation(
                triggered=False,
                code=ResultCode.EXTERNAL_SERVICE_ERROR,
                reason=railResult.error or "rejected"
            )

        return await self._recordDisbursement(memberId, amount, railResult.externalReference, capped)

    async def _recordDisbursement(
            self,
            memberId: int,
            amount: int,
            reference: Optional[str],
            capped: bool = False
    ) -> PayoutEvaluation:
        """Debit the wallet for a confirmed payout and journal it."""
        with self.gateway.atomic():
            debited = self.gateway.debitWallet(memberId, amount)
            if debited:
                self.gateway.add(WalletTransaction(
                    memberID=memberId,
                    deltaCents=-amount,
                    balanceAfterCents=self.gateway.getWalletBalanceCents(memberId),
                    reason=WALLET_REASON_PAYOUT,
                    reference=reference
                ))
            self.gateway.add(Payout(
                memberID=memberId,
                amountCents=amount,
                externalReference=reference,
                status="confirmed" if debited else "debit_failed",
                capped=capped
            ))

        if not debited:
            # Money left through the rail but the balance dropped meanwhile
            logger.error(
                f"Payout {reference} of {amount} for member {memberId} confirmed "
                f"but wallet could not be debited"
            )
            return PayoutEvaluation(
                triggered=True,
                amountCents=amount,
                code=ResultCode.CONCURRENCY_CONFLICT,
                externalReference=reference,
                reason="debit_failed"
            )

        logger.info(f"✅ Auto payout completed: member={memberId}, amount={amount}, ref={reference}")

        await eventBus.emit(PhaseEvents.PAYOUT_COMPLETED, {
            "memberId": memberId,
            "amountCents": amount,
            "externalReference": reference,
        })

        return PayoutEvaluation(triggered=True, amountCents=amount, externalReference=reference)
