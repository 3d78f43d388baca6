# models/__init__.py
"""
Database models for the binary MLM engine.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.member import Member
from models.ledger_entry import LedgerEntry
from models.income_pool import IncomePool
from models.activation import Activation

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'Member',
    'LedgerEntry',
    'IncomePool',
    'Activation',
]
