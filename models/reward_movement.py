"""
RewardMovement model - append-only journal of value leaving a PhaseReward.
"""
from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin

MOVEMENT_FREE_PRODUCT = "free_product"
MOVEMENT_STORE_CREDIT = "store_credit"
MOVEMENT_EARNINGS_TRANSFER = "earnings_transfer"


class RewardMovement(Base, AuditMixin):
    __tablename__ = 'reward_movements'

    movementID = Column(Integer, primary_key=True, autoincrement=True)
    rewardID = Column(Integer, ForeignKey('phase_rewards.rewardID'), nullable=False, index=True)
    memberID = Column(Integer, nullable=False, index=True)

    kind = Column(String(32), nullable=False)
    amountCents = Column(Integer, nullable=False)
    reference = Column(String, nullable=True)  # order id, earnings entry id, ...

    reward = relationship('PhaseReward', back_populates='movements')

    def __repr__(self):
        return f"<RewardMovement(rewardID={self.rewardID}, kind={self.kind}, amount={self.amountCents})>"
