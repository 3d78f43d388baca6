# models/activation.py
"""
Activation model - one rank activation event and its distribution progress.
"""
from sqlalchemy import Column, String, DECIMAL, Boolean, ForeignKey
from models.base import Base, AuditMixin


class Activation(Base, AuditMixin):
    __tablename__ = 'activations'

    activationID = Column(String, primary_key=True)
    memberID = Column(String, ForeignKey('members.memberID'), nullable=False, index=True)

    rank = Column(String, nullable=False)
    amount = Column(DECIMAL(12, 2), nullable=False)
    paymentMethod = Column(String, default="wallet")  # wallet, signup, external
    isFirstActivation = Column(Boolean, default=False)

    # Distribution progress, one flag per stream
    referralDistributed = Column(Boolean, default=False, nullable=False)
    levelDistributed = Column(Boolean, default=False, nullable=False)
    poolDistributed = Column(Boolean, default=False, nullable=False)

    status = Column(String, default="pending")  # pending, partial, distributed

    @property
    def isDistributed(self) -> bool:
        return self.referralDistributed and self.levelDistributed and self.poolDistributed

    def __repr__(self):
        return f"<Activation(activationID={self.activationID}, member={self.memberID}, rank={self.rank}, status={self.status})>"
