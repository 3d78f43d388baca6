# mlm_engine/identity/base.py
"""
Identity provider contract used by the signup flow.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional


class IdentityProviderError(Exception):
    """Transport or provider-side failure"""
    pass


class IdentityProvider(ABC):

    @abstractmethod
    async def createAccount(self, email: str, password: str, displayName: str) -> str:
        """Create an account and return its opaque id."""

    @abstractmethod
    async def deleteAccount(self, accountId: str):
        """Delete an account. Used as compensation when signup fails."""

    @abstractmethod
    async def getAccountByEmail(self, email: str) -> Optional[str]:
        """Return the account id registered for email, or None."""

    @abstractmethod
    async def setCustomClaims(self, accountId: str, claims: Dict):
        """Attach role/status/rank claims to the account."""

    @abstractmethod
    async def issueSessionToken(self, accountId: str) -> str:
        """Issue a token the client presents on later requests."""
