# models/ledger_entry.py
"""
LedgerEntry model - append-only record of every credit, debit and claim.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, Text, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class LedgerEntry(Base, AuditMixin):
    __tablename__ = 'ledger_entries'

    # Primary key
    entryID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    memberID = Column(String, ForeignKey('members.memberID'), nullable=False, index=True)  # Кто получает
    sourceMemberID = Column(String, ForeignKey('members.memberID'), nullable=True)  # От кого

    # Entry details
    entryType = Column(String, nullable=False)  # referral, level, pool, claim, withdrawal, activation
    amount = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String, default="USDT", nullable=False)
    level = Column(Integer, nullable=True)  # 1..6 for level income
    rank = Column(String, nullable=True)

    # Status
    status = Column(String, default="credited", nullable=False)  # pending, credited, reversed
    claimable = Column(Boolean, default=False, nullable=False)  # pool entries only

    # Idempotency
    eventID = Column(String, nullable=True, index=True)  # activation id or accrual cycle id
    idempotencyKey = Column(String, unique=True, nullable=True)

    reversesEntryID = Column(Integer, ForeignKey('ledger_entries.entryID'), unique=True, nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    member = relationship('Member', foreign_keys=[memberID], backref='ledgerEntries')

    def __repr__(self):
        return f"<LedgerEntry(entryID={self.entryID}, member={self.memberID}, type={self.entryType}, amount={self.amount})>"
