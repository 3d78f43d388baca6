import itertools
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base, Member, IncomePool
from mlm_engine.config.ranks import activationAmountFor, POOL_CAP_MULTIPLIER
from mlm_engine.events.event_bus import eventBus
from mlm_engine.identity.base import IdentityProvider, IdentityProviderError
from mlm_engine.identity.session_tokens import SessionTokenSigner


class FakeIdentityProvider(IdentityProvider):
    """In-memory identity provider"""

    def __init__(self, signer=None):
        self.accounts = {}
        self.claims = {}
        self.deleted = []
        self.failOnCreate = False
        self.failOnDelete = False
        self.signer = signer or SessionTokenSigner("test-secret", 3600)
        self._ids = itertools.count(1)

    async def createAccount(self, email, password, displayName):
        if self.failOnCreate:
            raise IdentityProviderError("create failed")
        accountId = f"uid-{next(self._ids)}"
        self.accounts[accountId] = email
        return accountId

    async def deleteAccount(self, accountId):
        if self.failOnDelete:
            raise IdentityProviderError("delete failed")
        self.accounts.pop(accountId, None)
        self.deleted.append(accountId)

    async def getAccountByEmail(self, email):
        for accountId, registered in self.accounts.items():
            if registered == email:
                return accountId
        return None

    async def setCustomClaims(self, accountId, claims):
        self.claims[accountId] = claims

    async def issueSessionToken(self, accountId):
        return self.signer.issue(accountId)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clean_event_bus():
    eventBus.clear()
    yield
    eventBus.clear()


@pytest.fixture
def identity():
    return FakeIdentityProvider()


@pytest.fixture
def add_member(session):
    """
    Insert a member directly, attached under uplineId on side.
    Unlocks the member's rank pool like a real activation would.
    """
    counter = itertools.count(1)

    def _add(memberId, uplineId=None, side=None, sponsorId=None, rank="azurite",
             available=Decimal("0"), status="active", unlock=True):
        n = next(counter)
        level = 1
        if uplineId:
            upline = session.query(Member).filter_by(memberID=uplineId).one()
            level = upline.treeLevel + 1
            if side == "left":
                upline.leftChildID = memberId
            else:
                upline.rightChildID = memberId

        member = Member(
            memberID=memberId,
            memberCode=f"WG{n:06d}",
            displayName=memberId,
            email=f"{memberId}@gmail.com",
            phone=f"+1555000{n:04d}",
            walletAddress="0x" + f"{n:040x}",
            sponsorID=sponsorId if sponsorId is not None else uplineId,
            uplineID=uplineId,
            placementSide=side,
            treeLevel=level,
            rank=rank,
            isActive=True,
            status=status,
            availableBalance=available
        )
        session.add(member)
        if unlock:
            session.add(IncomePool(
                memberID=memberId,
                rank=rank,
                poolIncome=Decimal("0"),
                maxPoolIncome=activationAmountFor(rank) * POOL_CAP_MULTIPLIER
            ))
        session.commit()
        return member

    return _add


@pytest.fixture
def fetch(session):
    """Fresh read of a member, bypassing the identity map"""

    def _fetch(memberId):
        session.expire_all()
        return session.query(Member).filter_by(memberID=memberId).one()

    return _fetch
