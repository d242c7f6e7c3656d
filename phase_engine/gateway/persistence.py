# phase_engine/gateway/persistence.py
"""
Persistence gateway for the phase engine.

Wraps one SQLAlchemy session. Exposes the tree/subscription reads used by
the calculator and the atomic primitives used by the ledger services.
Every mutation primitive is a single conditional UPDATE whose rowcount
tells the caller whether it won; callers run them inside atomic() so a
lost race rolls back everything written in the same unit.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.member import NetworkMember
from models.subscription import Subscription, SUBSCRIPTION_ACTIVE
from models.phase_record import PhaseRecord
from models.phase_reward import PhaseReward
from models.earnings_entry import EarningsEntry, EARNINGS_AVAILABLE, EARNINGS_TRANSFERRED
from models.wallet import WalletBalance
from models.payout import AutoPayoutConfig, PayoutAccount, Payout, PAYOUT_MODE_AUTOMATIC

logger = logging.getLogger(__name__)


class ConcurrencyConflict(Exception):
    """A conditional update lost its race; the unit of work was rolled back."""
    pass


class PersistenceGateway:
    """Explicit database handle passed to every engine component."""

    def __init__(self, session: Session):
        self.session = session

    # ═══════════════════════════════════════════════════════════════════
    # TRANSACTIONS
    # ═══════════════════════════════════════════════════════════════════

    @contextmanager
    def atomic(self):
        """
        Run a block as one unit: commit on success, rollback on any error.

        Usage:
            with gateway.atomic():
                if not gateway.casRewardCredit(...):
                    raise ConcurrencyConflict(...)
        """
        try:
            yield self.session
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def add(self, obj):
        """Add an object to the current unit and flush it to get its id."""
        self.session.add(obj)
        self.session.flush()
        return obj

    # ═══════════════════════════════════════════════════════════════════
    # MEMBERS & SUBSCRIPTIONS
    # ═══════════════════════════════════════════════════════════════════

    def getMember(self, memberId: int) -> Optional[NetworkMember]:
        return self.session.get(NetworkMember, memberId)

    def getParentId(self, memberId: int) -> Optional[int]:
        return self.session.execute(
            select(NetworkMember.referredByMemberID).where(NetworkMember.memberID == memberId)
        ).scalar_one_or_none()

    def isSubscriptionActive(self, memberId: int) -> bool:
        status = self.session.execute(
            select(Subscription.status).where(Subscription.memberID == memberId)
        ).scalar_one_or_none()
        return status == SUBSCRIPTION_ACTIVE

    def getDirectReferralIds(self, memberId: int) -> List[int]:
        """Members whose parent link is memberId."""
        return list(self.session.execute(
            select(NetworkMember.memberID)
            .where(NetworkMember.referredByMemberID == memberId)
            .order_by(NetworkMember.memberID)
        ).scalars())

    def getReferralEdges(self, parentIds: Iterable[int]) -> List[Tuple[int, int]]:
        """
        Children of several parents in one query.

        Returns:
            List of (childId, parentId)
        """
        parentIds = list(parentIds)
        if not parentIds:
            return []
        rows = self.session.execute(
            select(NetworkMember.memberID, NetworkMember.referredByMemberID)
            .where(NetworkMember.referredByMemberID.in_(parentIds))
        ).all()
        return [(row[0], row[1]) for row in rows]

    def getActiveMemberIds(self, memberIds: Iterable[int]) -> Set[int]:
        """Subset of memberIds that have an active subscription."""
        memberIds = list(memberIds)
        if not memberIds:
            return set()
        return set(self.session.execute(
            select(Subscription.memberID)
            .where(Subscription.memberID.in_(memberIds))
            .where(Subscription.status == SUBSCRIPTION_ACTIVE)
        ).scalars())

    def getSubscribedMemberIds(self) -> List[int]:
        """All members with an active subscription."""
        return list(self.session.execute(
            select(Subscription.memberID)
            .where(Subscription.status == SUBSCRIPTION_ACTIVE)
            .order_by(Subscription.memberID)
        ).scalars())

    # ═══════════════════════════════════════════════════════════════════
    # PHASE RECORDS
    # ═══════════════════════════════════════════════════════════════════

    def getPhaseRecord(self, memberId: int) -> Optional[PhaseRecord]:
        return self.session.get(PhaseRecord, memberId)

    def getOrCreatePhaseRecord(self, memberId: int) -> PhaseRecord:
        record = self.getPhaseRecord(memberId)
        if record is None:
            record = self.add(PhaseRecord(memberID=memberId, calculatedTier=0))
        return record

    # ═══════════════════════════════════════════════════════════════════
    # PHASE REWARDS
    # ═══════════════════════════════════════════════════════════════════

    def getReward(self, rewardId: int) -> Optional[PhaseReward]:
        return self.session.get(PhaseReward, rewardId)

    def getRewardForPeriod(self, memberId: int, periodKey: str) -> Optional[PhaseReward]:
        return self.session.execute(
            select(PhaseReward)
            .where(PhaseReward.memberID == memberId)
            .where(PhaseReward.periodKey == periodKey)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def getActiveReward(self, memberId: int, now: datetime) -> Optional[PhaseReward]:
        """Newest reward of the member that has not expired at now."""
        return self.session.execute(
            select(PhaseReward)
            .where(PhaseReward.memberID == memberId)
            .where(PhaseReward.expiresAt > now)
            .order_by(PhaseReward.expiresAt.desc(), PhaseReward.rewardID.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def insertReward(self, reward: PhaseReward) -> bool:
        """
        Insert and commit a reward as its own unit.

        Returns:
            True if inserted, False if (member, period) already existed
        """
        try:
            with self.atomic():
                self.session.add(reward)
            return True
        except IntegrityError:
            logger.info(
                f"Reward for member {reward.memberID} period {reward.periodKey} "
                f"already exists (concurrent insert)"
            )
            return False

    def casRewardCredit(self, rewardId: int, expectedCents: int, newCents: int) -> bool:
        """Set creditRemainingCents to newCents only if it still equals expectedCents."""
        result = self.session.execute(
            update(PhaseReward)
            .where(PhaseReward.rewardID == rewardId)
            .where(PhaseReward.creditRemainingCents == expectedCents)
            .values(creditRemainingCents=newCents)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def markFreeProductUsed(self, rewardId: int) -> bool:
        """Flip freeProductUsed false -> true; False if it was already used."""
        result = self.session.execute(
            update(PhaseReward)
            .where(PhaseReward.rewardID == rewardId)
            .where(PhaseReward.hasFreeProduct.is_(True))
            .where(PhaseReward.freeProductUsed.is_(False))
            .values(freeProductUsed=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ═══════════════════════════════════════════════════════════════════
    # EARNINGS
    # ═══════════════════════════════════════════════════════════════════

    def getAvailableEarnings(self, memberId: int) -> List[EarningsEntry]:
        """Available entries, oldest first."""
        return list(self.session.execute(
            select(EarningsEntry)
            .where(EarningsEntry.memberID == memberId)
            .where(EarningsEntry.status == EARNINGS_AVAILABLE)
            .where(EarningsEntry.availableCents > 0)
            .order_by(EarningsEntry.createdAt.asc(), EarningsEntry.entryID.asc())
            .execution_options(populate_existing=True)
        ).scalars())

    def sumAvailableEarnings(self, memberId: int) -> int:
        return int(self.session.execute(
            select(func.coalesce(func.sum(EarningsEntry.availableCents), 0))
            .where(EarningsEntry.memberID == memberId)
            .where(EarningsEntry.status == EARNINGS_AVAILABLE)
        ).scalar())

    def casEarningsAvailable(self, entryId: int, expectedCents: int, newCents: int) -> bool:
        """Consume part or all of an entry if its availableCents is unchanged."""
        result = self.session.execute(
            update(EarningsEntry)
            .where(EarningsEntry.entryID == entryId)
            .where(EarningsEntry.status == EARNINGS_AVAILABLE)
            .where(EarningsEntry.availableCents == expectedCents)
            .values(
                availableCents=newCents,
                status=EARNINGS_TRANSFERRED if newCents == 0 else EARNINGS_AVAILABLE
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ═══════════════════════════════════════════════════════════════════
    # WALLET
    # ═══════════════════════════════════════════════════════════════════

    def getWallet(self, memberId: int) -> Optional[WalletBalance]:
        return self.session.get(WalletBalance, memberId, populate_existing=True)

    def getWalletBalanceCents(self, memberId: int) -> int:
        """Balance read straight from the database, bypassing the identity map."""
        value = self.session.execute(
            select(WalletBalance.balanceCents).where(WalletBalance.memberID == memberId)
        ).scalar_one_or_none()
        return int(value or 0)

    def ensureWallet(self, memberId: int) -> None:
        """Create and commit an empty wallet row if missing."""
        if self.getWallet(memberId) is not None:
            return
        try:
            with self.atomic():
                self.session.add(WalletBalance(memberID=memberId, balanceCents=0))
        except IntegrityError:
            logger.debug(f"Wallet for member {memberId} created concurrently")

    def creditWallet(self, memberId: int, amountCents: int, now: datetime) -> int:
        """
        Atomically add amountCents to the wallet.

        Returns:
            New balance
        """
        result = self.session.execute(
            update(WalletBalance)
            .where(WalletBalance.memberID == memberId)
            .values(
                balanceCents=WalletBalance.balanceCents + amountCents,
                lastCreditedAt=now
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflict(f"Wallet of member {memberId} not found for credit")
        return self.getWalletBalanceCents(memberId)

    def debitWallet(self, memberId: int, amountCents: int) -> bool:
        """Subtract amountCents unless that would take the balance below zero."""
        result = self.session.execute(
            update(WalletBalance)
            .where(WalletBalance.memberID == memberId)
            .where(WalletBalance.balanceCents >= amountCents)
            .values(balanceCents=WalletBalance.balanceCents - amountCents)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ═══════════════════════════════════════════════════════════════════
    # PAYOUTS
    # ═══════════════════════════════════════════════════════════════════

    def getPayoutConfig(self, memberId: int) -> Optional[AutoPayoutConfig]:
        return self.session.get(AutoPayoutConfig, memberId, populate_existing=True)

    def getPayoutAccount(self, memberId: int) -> Optional[PayoutAccount]:
        return self.session.get(PayoutAccount, memberId, populate_existing=True)

    def getLatestPayout(self, memberId: int) -> Optional[Payout]:
        return self.session.execute(
            select(Payout)
            .where(Payout.memberID == memberId)
            .order_by(Payout.payoutID.desc())
            .limit(1)
        ).scalars().first()

    def deletePayoutAccount(self, memberId: int) -> bool:
        account = self.getPayoutAccount(memberId)
        if account is None:
            return False
        self.session.delete(account)
        self.session.flush()
        return True

    def casPayoutClaim(
            self,
            memberId: int,
            expectedLastTriggeredAt: Optional[datetime],
            newLastTriggeredAt: Optional[datetime]
    ) -> bool:
        """Move lastTriggeredAt only if nobody else moved it since it was read."""
        if expectedLastTriggeredAt is None:
            condition = AutoPayoutConfig.lastTriggeredAt.is_(None)
        else:
            condition = AutoPayoutConfig.lastTriggeredAt == expectedLastTriggeredAt
        result = self.session.execute(
            update(AutoPayoutConfig)
            .where(AutoPayoutConfig.memberID == memberId)
            .where(condition)
            .values(lastTriggeredAt=newLastTriggeredAt)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def getAutomaticPayoutMemberIds(self) -> List[int]:
        return list(self.session.execute(
            select(AutoPayoutConfig.memberID)
            .where(AutoPayoutConfig.mode == PAYOUT_MODE_AUTOMATIC)
            .order_by(AutoPayoutConfig.memberID)
        ).scalars())

    def expireAll(self) -> None:
        """Drop cached attribute values so the next read hits the database."""
        self.session.expire_all()

    def rewardMovementTotals(self, rewardId: int) -> Dict[str, int]:
        """Sum of RewardMovement amounts by kind."""
        from models.reward_movement import RewardMovement
        rows = self.session.execute(
            select(RewardMovement.kind, func.coalesce(func.sum(RewardMovement.amountCents), 0))
            .where(RewardMovement.rewardID == rewardId)
            .group_by(RewardMovement.kind)
        ).all()
        return {kind: int(total) for kind, total in rows}
