"""
Subscription model - recurring paid plan state.
Status transitions come from external payment events.
"""
from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin

SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_INACTIVE = "inactive"


class Subscription(Base, AuditMixin):
    __tablename__ = 'subscriptions'

    subscriptionID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(
        Integer,
        ForeignKey('network_members.memberID'),
        nullable=False,
        unique=True,
        index=True
    )
    status = Column(String(20), nullable=False, default=SUBSCRIPTION_INACTIVE, index=True)

    member = relationship('NetworkMember', back_populates='subscription')

    def __repr__(self):
        return f"<Subscription(memberID={self.memberID}, status={self.status})>"
