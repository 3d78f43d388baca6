# models/member.py
"""
Member model - one row per participant, doubles as a node of the binary tree.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, ForeignKey
from models.base import Base, AuditMixin


class Member(Base, AuditMixin):
    __tablename__ = 'members'

    # Primary identification (account id issued by the identity provider)
    memberID = Column(String, primary_key=True)
    memberCode = Column(String, unique=True, nullable=False)  # WG123456

    # Personal information
    displayName = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    phone = Column(String, unique=True, nullable=False)
    walletAddress = Column(String, unique=True, nullable=False)

    # Tree links
    sponsorID = Column(String, ForeignKey('members.memberID'), nullable=True, index=True)
    uplineID = Column(String, ForeignKey('members.memberID'), nullable=True, index=True)
    leftChildID = Column(String, ForeignKey('members.memberID'), unique=True, nullable=True)
    rightChildID = Column(String, ForeignKey('members.memberID'), unique=True, nullable=True)
    placementSide = Column(String, nullable=True)  # left, right (null for root)
    treeLevel = Column(Integer, nullable=False, default=1)  # root = 1

    # Rank
    rank = Column(String, default="azurite", index=True)  # highest unlocked rank
    isActive = Column(Boolean, default=False, index=True)
    status = Column(String, default="active")  # active, inactive, suspended

    # Balances
    availableBalance = Column(DECIMAL(12, 2), default=0, nullable=False)
    lockedBalance = Column(DECIMAL(12, 2), default=0, nullable=False)
    totalEarnings = Column(DECIMAL(12, 2), default=0, nullable=False)
    totalWithdrawals = Column(DECIMAL(12, 2), default=0, nullable=False)

    # Referral bookkeeping
    directReferralsCount = Column(Integer, default=0, nullable=False)
    claimEligible = Column(Boolean, default=False, nullable=False)

    def childOn(self, side: str):
        return self.leftChildID if side == "left" else self.rightChildID

    def summary(self) -> dict:
        """Public view returned to clients after signup."""
        return {
            "memberId": self.memberID,
            "memberCode": self.memberCode,
            "displayName": self.displayName,
            "email": self.email,
            "sponsorId": self.sponsorID,
            "uplineId": self.uplineID,
            "placementSide": self.placementSide,
            "treeLevel": self.treeLevel,
            "rank": self.rank,
            "isActive": self.isActive,
            "status": self.status,
            "availableBalance": str(self.availableBalance),
            "lockedBalance": str(self.lockedBalance),
            "directReferralsCount": self.directReferralsCount,
            "claimEligible": self.claimEligible,
        }

    def __repr__(self):
        return f"<Member(memberID={self.memberID}, code={self.memberCode}, rank={self.rank})>"
