"""
Payout models - auto-payout policy, payout account linkage, confirmed payouts.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, CheckConstraint
from models.base import Base, AuditMixin

PAYOUT_MODE_MANUAL = "manual"
PAYOUT_MODE_AUTOMATIC = "automatic"
PAYOUT_MODES = (PAYOUT_MODE_MANUAL, PAYOUT_MODE_AUTOMATIC)

PAYOUT_ACCOUNT_ACTIVE = "active"


class AutoPayoutConfig(Base, AuditMixin):
    __tablename__ = 'auto_payout_configs'
    __table_args__ = (
        CheckConstraint('"thresholdCents" >= 0', name='ck_payout_threshold_non_negative'),
    )

    memberID = Column(Integer, ForeignKey('network_members.memberID'), primary_key=True)
    thresholdCents = Column(Integer, nullable=False)
    mode = Column(String(20), nullable=False, default=PAYOUT_MODE_MANUAL)
    lastTriggeredAt = Column(DateTime, nullable=True)

    def __repr__(self):
        return (
            f"<AutoPayoutConfig(memberID={self.memberID}, threshold={self.thresholdCents}, "
            f"mode={self.mode})>"
        )


class PayoutAccount(Base, AuditMixin):
    __tablename__ = 'payout_accounts'

    memberID = Column(Integer, ForeignKey('network_members.memberID'), primary_key=True)
    provider = Column(String(32), nullable=False)  # stripe, paypal, ...
    externalAccountID = Column(String, nullable=False)
    status = Column(String(20), nullable=False, default=PAYOUT_ACCOUNT_ACTIVE)

    def __repr__(self):
        return f"<PayoutAccount(memberID={self.memberID}, provider={self.provider}, status={self.status})>"


class Payout(Base, AuditMixin):
    __tablename__ = 'payouts'

    payoutID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('network_members.memberID'), nullable=False, index=True)
    amountCents = Column(Integer, nullable=False)
    externalReference = Column(String, nullable=True)
    status = Column(String(20), nullable=False, default="confirmed")
    capped = Column(Boolean, nullable=False, default=False)  # amount limited by MAX_AUTO_PAYOUT_CENTS

    def __repr__(self):
        return f"<Payout(payoutID={self.payoutID}, memberID={self.memberID}, amount={self.amountCents})>"
