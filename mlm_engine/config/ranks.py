# mlm_engine/config/ranks.py
"""
MLM ranks configuration and constants.
"""
from enum import Enum
from decimal import Decimal


class Rank(Enum):
    AZURITE = "azurite"
    PEARL = "pearl"
    RUBY = "ruby"
    EMERALD = "emerald"
    SAPPHIRE = "sapphire"
    DIAMOND = "diamond"
    DOUBLE_DIAMOND = "double_diamond"
    TRIPLE_DIAMOND = "triple_diamond"
    CROWN = "crown"
    ROYAL_CROWN = "royal_crown"


RANK_CONFIG = {
    Rank.AZURITE: {
        "activationAmount": Decimal("5"),
        "displayName": "Azurite"
    },
    Rank.PEARL: {
        "activationAmount": Decimal("10"),
        "displayName": "Pearl"
    },
    Rank.RUBY: {
        "activationAmount": Decimal("20"),
        "displayName": "Ruby"
    },
    Rank.EMERALD: {
        "activationAmount": Decimal("40"),
        "displayName": "Emerald"
    },
    Rank.SAPPHIRE: {
        "activationAmount": Decimal("80"),
        "displayName": "Sapphire"
    },
    Rank.DIAMOND: {
        "activationAmount": Decimal("160"),
        "displayName": "Diamond"
    },
    Rank.DOUBLE_DIAMOND: {
        "activationAmount": Decimal("320"),
        "displayName": "Double Diamond"
    },
    Rank.TRIPLE_DIAMOND: {
        "activationAmount": Decimal("640"),
        "displayName": "Triple Diamond"
    },
    Rank.CROWN: {
        "activationAmount": Decimal("1280"),
        "displayName": "Crown"
    },
    Rank.ROYAL_CROWN: {
        "activationAmount": Decimal("2560"),
        "displayName": "Royal Crown"
    }
}

# Lowest to highest, used for "upline rank >= activated rank" checks
RANK_ORDER = [rank.value for rank in Rank]

ENTRY_RANK = Rank.AZURITE

# Constants
REFERRAL_COMMISSION_PERCENTAGE = Decimal("0.50")  # 50% спонсору
LEVEL_INCOME_PERCENTAGES = [
    Decimal("0.05"),  # L1
    Decimal("0.04"),  # L2
    Decimal("0.03"),  # L3
    Decimal("0.01"),  # L4
    Decimal("0.01"),  # L5
    Decimal("0.01"),  # L6
]
MAX_LEVEL_DEPTH = len(LEVEL_INCOME_PERCENTAGES)
GLOBAL_INCOME_PERCENTAGE = Decimal("0.10")  # 10% of activation into the rank pool

# Thresholds
CLAIM_ELIGIBILITY_THRESHOLD = 2  # direct referrals needed to claim pool income
POOL_CAP_MULTIPLIER = 100  # maxPoolIncome = activationAmount * 100


def parseRank(value) -> Rank:
    """Accept a Rank, its value or its display name ("Double Diamond", "doubleDiamond")."""
    if isinstance(value, Rank):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Unknown rank: {value!r}")
    normalized = "".join(ch for ch in value.lower() if ch.isalnum())
    for rank in Rank:
        if rank.value.replace("_", "") == normalized:
            return rank
    raise ValueError(f"Unknown rank: {value!r}")


def activationAmountFor(rank) -> Decimal:
    return RANK_CONFIG[parseRank(rank)]["activationAmount"]
