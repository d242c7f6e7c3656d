"""
EarningsEntry model - commission/reward amount available for payout.

availableCents shrinks as the entry is moved into the wallet; the entry
becomes 'transferred' once nothing is left.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint
from models.base import Base, AuditMixin

EARNINGS_AVAILABLE = "available"
EARNINGS_TRANSFERRED = "transferred"


class EarningsEntry(Base, AuditMixin):
    __tablename__ = 'earnings_entries'
    __table_args__ = (
        CheckConstraint(
            '"availableCents" >= 0 AND "availableCents" <= "amountCents"',
            name='ck_earnings_available_bounds'
        ),
    )

    entryID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('network_members.memberID'), nullable=False, index=True)

    amountCents = Column(Integer, nullable=False)
    availableCents = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=EARNINGS_AVAILABLE, index=True)

    source = Column(String(32), nullable=False, default="phase_reward")  # phase_reward, commission
    rewardID = Column(Integer, ForeignKey('phase_rewards.rewardID'), nullable=True)

    def __repr__(self):
        return (
            f"<EarningsEntry(entryID={self.entryID}, memberID={self.memberID}, "
            f"available={self.availableCents}/{self.amountCents}, status={self.status})>"
        )
