"""
PhaseReward model - tier-based entitlement for one qualification period.

Amounts are integer cents. One row per (member, period).
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey,
    UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class PhaseReward(Base, AuditMixin):
    __tablename__ = 'phase_rewards'
    __table_args__ = (
        UniqueConstraint('memberID', 'periodKey', name='uq_phase_reward_member_period'),
        CheckConstraint(
            '"creditRemainingCents" >= 0 AND "creditRemainingCents" <= "creditTotalCents"',
            name='ck_phase_reward_credit_bounds'
        ),
    )

    rewardID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('network_members.memberID'), nullable=False, index=True)

    tier = Column(Integer, nullable=False)
    periodKey = Column(String(16), nullable=False)  # "2025-03"

    # Tier 1
    hasFreeProduct = Column(Boolean, nullable=False, default=False)
    freeProductUsed = Column(Boolean, nullable=False, default=False)

    # Tier 2-3
    creditTotalCents = Column(Integer, nullable=False, default=0)
    creditRemainingCents = Column(Integer, nullable=False, default=0)

    expiresAt = Column(DateTime, nullable=False, index=True)

    movements = relationship('RewardMovement', back_populates='reward', order_by='RewardMovement.movementID')

    def __repr__(self):
        return (
            f"<PhaseReward(rewardID={self.rewardID}, memberID={self.memberID}, tier={self.tier}, "
            f"period={self.periodKey}, credit={self.creditRemainingCents}/{self.creditTotalCents})>"
        )
