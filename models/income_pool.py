# models/income_pool.py
"""
IncomePool model - per-rank locked pool balance of a member.
A row exists only for ranks the member has unlocked.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey, UniqueConstraint, func
from models.base import Base


class IncomePool(Base):
    __tablename__ = 'income_pools'
    __table_args__ = (
        UniqueConstraint('memberID', 'rank', name='uq_income_pool_member_rank'),
    )

    poolID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(String, ForeignKey('members.memberID'), nullable=False, index=True)
    rank = Column(String, nullable=False)

    poolIncome = Column(DECIMAL(12, 2), default=0, nullable=False)
    maxPoolIncome = Column(DECIMAL(12, 2), nullable=False)  # 100x activation amount

    activatedAt = Column(DateTime, server_default=func.now())
    lastIncomeAt = Column(DateTime, nullable=True)
    claimedAt = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<IncomePool(member={self.memberID}, rank={self.rank}, income={self.poolIncome}/{self.maxPoolIncome})>"
