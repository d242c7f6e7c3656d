"""
PhaseRecord model - a member's qualification tier.

calculatedTier is written by recomputation only; manualOverrideTier is
written by an administrator only. Neither replaces the other.
"""
from sqlalchemy import Column, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class PhaseRecord(Base, AuditMixin):
    __tablename__ = 'phase_records'
    __table_args__ = (
        CheckConstraint('"calculatedTier" BETWEEN 0 AND 3', name='ck_phase_calculated_range'),
        CheckConstraint(
            '"manualOverrideTier" IS NULL OR "manualOverrideTier" BETWEEN 0 AND 3',
            name='ck_phase_override_range'
        ),
    )

    memberID = Column(Integer, ForeignKey('network_members.memberID'), primary_key=True)

    calculatedTier = Column(Integer, nullable=False, default=0)
    calculatedAt = Column(DateTime, nullable=True)

    # Admin override
    manualOverrideTier = Column(Integer, nullable=True)
    overrideSetBy = Column(Integer, nullable=True)  # Admin memberID
    overrideSetAt = Column(DateTime, nullable=True)

    member = relationship('NetworkMember', back_populates='phaseRecord')

    def __repr__(self):
        return (
            f"<PhaseRecord(memberID={self.memberID}, calculated={self.calculatedTier}, "
            f"override={self.manualOverrideTier})>"
        )
