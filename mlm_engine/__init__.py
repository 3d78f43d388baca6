# mlm_engine/__init__.py
"""
Binary-tree MLM engine: placement, ledger and income distribution.
"""

# Services
from mlm_engine.services.tree_locator import TreeLocator, Placement
from mlm_engine.services.ledger_service import LedgerWriter, EntryType
from mlm_engine.services.referral_service import ReferralDistributor
from mlm_engine.services.level_income_service import LevelIncomeDistributor
from mlm_engine.services.global_pool_service import PoolDistributor
from mlm_engine.services.activation_service import ActivationService
from mlm_engine.services.signup_service import SignupOrchestrator, SignupRequest, SignupResult, SignupState

# Configuration
from mlm_engine.config.ranks import Rank, RANK_CONFIG, RANK_ORDER

# Events
from mlm_engine.events.event_bus import eventBus, MLMEvents

__all__ = [
    # Services
    'TreeLocator',
    'Placement',
    'LedgerWriter',
    'EntryType',
    'ReferralDistributor',
    'LevelIncomeDistributor',
    'PoolDistributor',
    'ActivationService',
    'SignupOrchestrator',
    'SignupRequest',
    'SignupResult',
    'SignupState',

    # Config
    'Rank',
    'RANK_CONFIG',
    'RANK_ORDER',

    # Events
    'eventBus',
    'MLMEvents',
]
