# mlm_engine/services/signup_service.py
"""
Signup orchestration: validation, placement, account and member creation,
income distribution.

    VALIDATING -> PLACEMENT_PENDING -> MEMBER_CREATED -> DISTRIBUTING_INCOME -> COMPLETE
    any non-terminal state -> FAILED

Once the identity account exists, any failure before the member row is
committed deletes the account again before the error is re-raised.
Distribution failures after that point are logged and do not fail signup.
"""
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

import config
from models import Member
from mlm_engine.config.ranks import ENTRY_RANK, RANK_CONFIG
from mlm_engine.errors import (
    MLMError, InvalidArgument, AlreadyExists, ResourceExhausted, Internal, Aborted, SlotConflict
)
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.identity.base import IdentityProvider, IdentityProviderError
from mlm_engine.services.activation_service import ActivationService
from mlm_engine.services.tree_locator import TreeLocator, normalizeSide

logger = logging.getLogger(__name__)


class SignupState(Enum):
    VALIDATING = "validating"
    PLACEMENT_PENDING = "placement_pending"
    MEMBER_CREATED = "member_created"
    DISTRIBUTING_INCOME = "distributing_income"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATES = (SignupState.COMPLETE, SignupState.FAILED)


@dataclass
class SignupRequest:
    displayName: str
    email: str
    password: str
    phone: str
    walletAddress: str
    sponsorId: Optional[str] = None
    placementId: Optional[str] = None
    position: Optional[str] = "left"

    @classmethod
    def fromDict(cls, data: Dict) -> "SignupRequest":
        return cls(
            displayName=data.get("displayName"),
            email=data.get("email"),
            password=data.get("password"),
            phone=data.get("phone"),
            walletAddress=data.get("walletAddress"),
            sponsorId=data.get("sponsorId") or None,
            placementId=data.get("placementId") or None,
            position=data.get("position") or "left"
        )


@dataclass
class SignupFlow:
    state: SignupState = SignupState.VALIDATING
    history: List[SignupState] = field(default_factory=lambda: [SignupState.VALIDATING])

    def advance(self, state: SignupState):
        if self.state in TERMINAL_STATES:
            raise Internal(f"Signup already finished in state {self.state.value}")
        self.state = state
        self.history.append(state)


@dataclass
class SignupResult:
    memberId: str
    sessionToken: str
    memberSummary: Dict
    history: List[SignupState]

    def toDict(self) -> Dict:
        return {
            "success": True,
            "memberId": self.memberId,
            "sessionToken": self.sessionToken,
            "memberSummary": self.memberSummary
        }


class SignupOrchestrator:
    """Drives one signup request through its states."""

    REQUIRED_FIELDS = ("displayName", "email", "password", "phone", "walletAddress")

    def __init__(
            self,
            session: Session,
            identity: IdentityProvider,
            defaultSponsorId: Optional[str] = config.DEFAULT_SPONSOR_ID,
            maxAttempts: int = config.MAX_TRANSACTION_ATTEMPTS,
            activationAmount=config.SIGNUP_ACTIVATION_AMOUNT
    ):
        self.session = session
        self.identity = identity
        self.defaultSponsorId = defaultSponsorId
        self.maxAttempts = maxAttempts
        self.activationAmount = activationAmount
        self.locator = TreeLocator(session)
        self.activations = ActivationService(session)

    async def signup(self, request: SignupRequest, rateLimitAllowed: bool = True) -> SignupResult:
        flow = SignupFlow()
        accountId = None

        try:
            if not rateLimitAllowed:
                raise ResourceExhausted("Too many signup attempts. Please try again later.")
            self._checkRequired(request)
            request.email = request.email.strip().lower()
            sponsorId = request.sponsorId or self.defaultSponsorId
            side = normalizeSide(request.position)
            await self._checkUniqueness(request)

            flow.advance(SignupState.PLACEMENT_PENDING)
            # Fail on a bad sponsor before any account exists
            await self.locator.locate(sponsorId, side, request.placementId)

            flow.advance(SignupState.MEMBER_CREATED)
            accountId = await self.identity.createAccount(request.email, request.password, request.displayName)
            await self.identity.setCustomClaims(accountId, {
                "role": "user",
                "status": "active",
                "rank": RANK_CONFIG[ENTRY_RANK]["displayName"]
            })
            # Minted before the member row exists so a failure is still compensated
            sessionToken = await self.identity.issueSessionToken(accountId)
            member = await self._createMember(accountId, request, sponsorId, side)

        except Exception as e:
            flow.advance(SignupState.FAILED)
            self.session.rollback()
            if accountId:
                await self._compensate(accountId)
            if isinstance(e, MLMError):
                logger.warning(f"Signup for {request.email} failed ({e.code.value}): {e.message}")
                raise
            logger.error(f"Signup for {request.email} failed: {e}", exc_info=True)
            if isinstance(e, IdentityProviderError):
                raise Internal(f"Identity provider error: {e}") from e
            raise Internal("Signup failed") from e

        await eventBus.emit(MLMEvents.MEMBER_SIGNED_UP, {
            "memberId": member.memberID,
            "sponsorId": member.sponsorID,
            "uplineId": member.uplineID,
            "side": member.placementSide
        })

        flow.advance(SignupState.DISTRIBUTING_INCOME)
        try:
            distribution = await self.activations.distributeActivation(self.signupActivationId(accountId))
            if distribution["errors"]:
                logger.error(f"Signup of {accountId}: distribution incomplete {distribution['errors']}")
        except Exception as e:
            self.session.rollback()
            logger.error(f"Signup of {accountId}: income distribution failed: {e}", exc_info=True)

        flow.advance(SignupState.COMPLETE)
        member = self.session.query(Member).populate_existing().filter_by(memberID=accountId).first()
        logger.info(f"Signup complete for {accountId} ({member.memberCode}), path {[s.value for s in flow.history]}")

        return SignupResult(
            memberId=accountId,
            sessionToken=sessionToken,
            memberSummary=member.summary(),
            history=flow.history
        )

    @staticmethod
    def signupActivationId(memberId: str) -> str:
        return f"signup:{memberId}"

    def _checkRequired(self, request: SignupRequest):
        missing = [name for name in self.REQUIRED_FIELDS if not getattr(request, name)]
        if missing:
            raise InvalidArgument(f"Missing required fields: {', '.join(missing)}")

    async def _checkUniqueness(self, request: SignupRequest):
        if await self.identity.getAccountByEmail(request.email):
            raise AlreadyExists("Email is already registered")

        for column, value, label in (
                (Member.email, request.email, "Email"),
                (Member.phone, request.phone, "Phone number"),
                (Member.walletAddress, request.walletAddress, "Wallet address"),
        ):
            if self.session.query(Member.memberID).filter(column == value).first():
                raise AlreadyExists(f"{label} is already registered")

    def _generateMemberCode(self) -> str:
        for _ in range(config.MEMBER_CODE_ATTEMPTS):
            code = f"{config.MEMBER_CODE_PREFIX}{random.randint(0, 999999):06d}"
            if not self.session.query(Member.memberID).filter_by(memberCode=code).first():
                return code
        raise Internal("Could not generate a unique member code")

    async def _createMember(self, accountId: str, request: SignupRequest, sponsorId: Optional[str], side: str) -> Member:
        """
        Locate, insert and claim the slot in one transaction.
        A slot taken concurrently rolls back and starts over from locate.
        """
        for attempt in range(1, self.maxAttempts + 1):
            try:
                placement = await self.locator.locate(sponsorId, side, request.placementId)
                member = Member(
                    memberID=accountId,
                    memberCode=self._generateMemberCode(),
                    displayName=request.displayName,
                    email=request.email,
                    phone=request.phone,
                    walletAddress=request.walletAddress,
                    sponsorID=sponsorId,
                    uplineID=placement.uplineId,
                    placementSide=placement.side,
                    treeLevel=placement.level,
                    rank=ENTRY_RANK.value,
                    status="active"
                )
                self.session.add(member)
                self.session.flush()

                self.locator.claimSlot(placement, accountId)
                self.activations.recordActivation(
                    member,
                    ENTRY_RANK.value,
                    self.activationAmount,
                    self.signupActivationId(accountId),
                    paymentMethod="signup",
                    isFirstActivation=True
                )
                self.session.commit()

                logger.info(
                    f"Member {accountId} placed under {placement.uplineId or 'root'} "
                    f"({placement.side or '-'}, level {placement.level}) on attempt {attempt}"
                )
                return member

            except SlotConflict as e:
                self.session.rollback()
                logger.warning(f"Attempt {attempt}/{self.maxAttempts} for {accountId}: {e.message}")
            except IntegrityError as e:
                self.session.rollback()
                logger.warning(f"Integrity error creating member {accountId}: {e}")
                raise AlreadyExists("Email, phone number or wallet address is already registered")

        raise Aborted(f"Could not place member after {self.maxAttempts} attempts, please retry")

    async def _compensate(self, accountId: str):
        try:
            await self.identity.deleteAccount(accountId)
            logger.info(f"Compensation: identity account {accountId} deleted")
        except Exception as e:
            logger.error(f"Compensation failed, orphaned identity account {accountId}: {e}")
