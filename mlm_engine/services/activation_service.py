# mlm_engine/services/activation_service.py
"""
Rank activation: unlock a rank pool and fan the activation amount out to
the referral, level and pool income streams.

Each stream runs in its own transaction together with its progress flag on
the Activation row, so distributeActivation() can be replayed after a
partial failure without paying anything twice.
"""
import uuid
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

from models import Member, Activation
from mlm_engine.config.ranks import GLOBAL_INCOME_PERCENTAGE, activationAmountFor, parseRank, RANK_ORDER
from mlm_engine.services.ledger_service import LedgerWriter, EntryType
from mlm_engine.services.referral_service import ReferralDistributor
from mlm_engine.services.level_income_service import LevelIncomeDistributor
from mlm_engine.services.global_pool_service import PoolDistributor
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.errors import InvalidArgument, NotFound, FailedPrecondition
from mlm_engine.utils.money import toMoney

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("wallet", "external", "signup")


class ActivationService:
    """Service for rank activations and their income distribution."""

    def __init__(self, session: Session, rankOrder=RANK_ORDER):
        self.session = session
        self.rankOrder = list(rankOrder)
        self.ledger = LedgerWriter(session)
        self.referrals = ReferralDistributor(session)
        self.levels = LevelIncomeDistributor(session, rankOrder=self.rankOrder)
        self.pools = PoolDistributor(session)

    def recordActivation(
            self,
            member: Member,
            rank: str,
            amount,
            activationId: str,
            paymentMethod: str,
            isFirstActivation: bool = False
    ) -> Activation:
        """Unlock the rank and record the activation. Runs inside the caller's transaction."""
        self.pools.unlockRank(member.memberID, rank, amount)

        if self.rankOrder.index(rank) > self.rankOrder.index(member.rank or self.rankOrder[0]):
            member.rank = rank
        member.isActive = True

        activation = Activation(
            activationID=activationId,
            memberID=member.memberID,
            rank=rank,
            amount=toMoney(amount),
            paymentMethod=paymentMethod,
            isFirstActivation=isFirstActivation,
            status="pending"
        )
        self.session.add(activation)
        return activation

    async def activateRank(
            self,
            memberId: str,
            rank,
            paymentMethod: str = "wallet",
            activationId: Optional[str] = None
    ) -> Dict:
        """Pay for and unlock a rank, then distribute the activation amount."""
        try:
            rank = parseRank(rank).value
        except ValueError as e:
            raise InvalidArgument(str(e))
        if paymentMethod not in PAYMENT_METHODS:
            raise InvalidArgument(f"Unsupported payment method: {paymentMethod}")

        activationId = activationId or f"act-{uuid.uuid4().hex}"
        existing = self.session.query(Activation).filter_by(activationID=activationId).first()
        if existing:
            if existing.memberID != memberId:
                raise InvalidArgument(f"Activation {activationId} belongs to another member")
            logger.info(f"Activation {activationId} already recorded, resuming distribution")
            distribution = await self.distributeActivation(activationId)
            return {"success": True, "activationId": activationId, "distribution": distribution}

        member = self.session.query(Member).populate_existing().filter_by(memberID=memberId).first()
        if not member:
            raise NotFound(f"Member {memberId} not found")
        if member.status != "active":
            raise FailedPrecondition(f"Member {memberId} is not active")
        if self.pools.getPool(memberId, rank):
            raise FailedPrecondition(f"Rank {rank} is already activated")

        amount = activationAmountFor(rank)
        try:
            if paymentMethod == "wallet":
                await self.ledger.debit(
                    memberId,
                    amount,
                    entryType=EntryType.ACTIVATION,
                    eventId=activationId,
                    rank=rank,
                    notes=f"{rank} activation"
                )
            self.recordActivation(member, rank, amount, activationId, paymentMethod)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Member {memberId} activated {rank} for {amount} via {paymentMethod}")
        await eventBus.emit(MLMEvents.RANK_ACTIVATED, {
            "memberId": memberId,
            "rank": rank,
            "amount": amount,
            "activationId": activationId
        })

        distribution = await self.distributeActivation(activationId)
        return {"success": True, "activationId": activationId, "distribution": distribution}

    async def distributeActivation(self, activationId: str) -> Dict:
        """
        Run every stream not yet flagged on the activation.
        A failing stream is logged and left for the next replay.
        """
        activation = self.session.query(Activation).populate_existing().filter_by(
            activationID=activationId
        ).first()
        if not activation:
            raise NotFound(f"Activation {activationId} not found")

        member = self.session.query(Member).filter_by(memberID=activation.memberID).first()
        amount = Decimal(str(activation.amount))
        results = {"activationId": activationId, "streams": {}, "errors": []}

        streams = (
            ("referral", "referralDistributed", lambda: self.referrals.onActivation(
                member.memberID,
                member.sponsorID,
                amount,
                activationId=activationId,
                countReferral=activation.isFirstActivation,
                rank=activation.rank
            )),
            ("level", "levelDistributed", lambda: self.levels.onActivation(
                member.memberID,
                amount,
                activationId=activationId,
                rank=activation.rank
            )),
            ("pool", "poolDistributed", lambda: self.pools.accumulate(
                member.memberID,
                activation.rank,
                amount * GLOBAL_INCOME_PERCENTAGE,
                eventId=activationId,
                sourceMemberId=member.memberID
            )),
        )

        for name, flag, run in streams:
            if getattr(activation, flag):
                results["streams"][name] = "already distributed"
                continue
            try:
                # The flag rides in the same commit as the stream's ledger writes
                setattr(activation, flag, True)
                activation.status = "distributed" if activation.isDistributed else "partial"
                results["streams"][name] = await run()
                self.session.commit()
            except Exception as e:
                self.session.rollback()
                logger.error(f"Activation {activationId}: {name} distribution failed: {e}", exc_info=True)
                results["errors"].append({"stream": name, "error": str(e)})
                activation = self.session.query(Activation).filter_by(activationID=activationId).first()
                member = self.session.query(Member).filter_by(memberID=activation.memberID).first()

        results["status"] = activation.status
        return results

    async def reverseEntry(self, entryId: int, reason: str):
        """Correct an activation income entry with a compensating ledger entry."""
        try:
            reversal = await self.ledger.reverse(entryId, reason)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        await eventBus.emit(MLMEvents.LEDGER_ENTRY_REVERSED, {
            "entryId": entryId,
            "reversalId": reversal.entryID,
            "memberId": reversal.memberID,
            "entryType": reversal.entryType,
            "amount": reversal.amount,
            "reason": reason
        })
        return reversal
