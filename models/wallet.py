"""
Wallet models - spendable balance and its journal.

WalletBalance.balanceCents is only changed by conditional UPDATE statements
issued from the ledger services; every change writes a WalletTransaction.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint
from models.base import Base, AuditMixin

WALLET_REASON_EARNINGS = "earnings_transfer"
WALLET_REASON_PAYOUT = "auto_payout"


class WalletBalance(Base, AuditMixin):
    __tablename__ = 'wallet_balances'
    __table_args__ = (
        CheckConstraint('"balanceCents" >= 0', name='ck_wallet_non_negative'),
    )

    memberID = Column(Integer, ForeignKey('network_members.memberID'), primary_key=True)
    balanceCents = Column(Integer, nullable=False, default=0)
    lastCreditedAt = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<WalletBalance(memberID={self.memberID}, balance={self.balanceCents})>"


class WalletTransaction(Base, AuditMixin):
    __tablename__ = 'wallet_transactions'

    txnID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('network_members.memberID'), nullable=False, index=True)

    deltaCents = Column(Integer, nullable=False)  # + credit, - debit
    balanceAfterCents = Column(Integer, nullable=False)
    reason = Column(String(32), nullable=False)
    reference = Column(String, nullable=True)

    def __repr__(self):
        return f"<WalletTransaction(memberID={self.memberID}, delta={self.deltaCents}, reason={self.reason})>"
