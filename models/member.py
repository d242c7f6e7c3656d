"""
NetworkMember model - registered participant with an immutable parent link.
"""
from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship, validates
from models.base import Base, AuditMixin


class NetworkMember(Base, AuditMixin):
    __tablename__ = 'network_members'

    # Primary key
    memberID = Column(Integer, primary_key=True, autoincrement=True)

    # Referral tree: parent link, set once at registration
    referredByMemberID = Column(
        Integer,
        ForeignKey('network_members.memberID'),
        nullable=True,
        index=True
    )

    # Contact info for notifications
    email = Column(String, nullable=True)
    firstname = Column(String, nullable=True)
    surname = Column(String, nullable=True)

    # Relationships
    subscription = relationship('Subscription', uselist=False, back_populates='member')
    phaseRecord = relationship('PhaseRecord', uselist=False, back_populates='member')

    @validates('referredByMemberID')
    def _validate_parent_link(self, key, value):
        current = self.referredByMemberID
        if current is not None and value != current:
            raise ValueError(
                f"Parent link of member {self.memberID} is immutable "
                f"({current} -> {value})"
            )
        return value

    def __repr__(self):
        return f"<NetworkMember(memberID={self.memberID}, referredBy={self.referredByMemberID})>"
