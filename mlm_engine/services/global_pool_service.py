# mlm_engine/services/global_pool_service.py
"""
Global (pool) income: locked per-rank pools, capped, released by claim.
"""
from decimal import Decimal
from typing import Dict, Optional
from datetime import datetime, timezone
from sqlalchemy.orm import Session
import logging

from models import Member, IncomePool
from mlm_engine.config.ranks import POOL_CAP_MULTIPLIER, activationAmountFor, parseRank
from mlm_engine.services.ledger_service import LedgerWriter, EntryType, idempotencyKey
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.errors import Aborted
from mlm_engine.utils.money import toMoney, ZERO

logger = logging.getLogger(__name__)


class PoolDistributor:
    """Service for rank pool accumulation and claims."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerWriter(session)

    def getPool(self, memberId: str, rank: str) -> Optional[IncomePool]:
        return self.session.query(IncomePool).populate_existing().filter_by(
            memberID=memberId,
            rank=rank
        ).first()

    def unlockRank(self, memberId: str, rank: str, activationAmount=None) -> IncomePool:
        """Open the pool for a rank. Runs inside the caller's transaction."""
        existing = self.getPool(memberId, rank)
        if existing:
            return existing

        if activationAmount is None:
            activationAmount = activationAmountFor(rank)
        pool = IncomePool(
            memberID=memberId,
            rank=rank,
            poolIncome=ZERO,
            maxPoolIncome=toMoney(Decimal(str(activationAmount)) * POOL_CAP_MULTIPLIER)
        )
        self.session.add(pool)
        logger.info(f"Unlocked {rank} pool for {memberId}, cap {pool.maxPoolIncome}")
        return pool

    async def accumulate(
            self,
            memberId: str,
            rank: str,
            amount,
            eventId: Optional[str] = None,
            sourceMemberId: Optional[str] = None
    ) -> Decimal:
        """
        Add income to a member's rank pool, clamped to the pool cap.
        Overflow above the cap is dropped. Returns the amount actually credited.
        """
        pool = self.getPool(memberId, rank)
        if not pool:
            logger.warning(f"Pool accumulation refused: {memberId} has not unlocked {rank}")
            return ZERO

        if self.ledger.findByKey(idempotencyKey(eventId, EntryType.POOL, memberId, rank=rank)):
            logger.info(f"Duplicate pool accumulation {eventId} for {memberId} ignored")
            return ZERO

        current = toMoney(pool.poolIncome)
        cap = toMoney(pool.maxPoolIncome)
        credit = min(toMoney(amount), cap - current)
        if credit <= ZERO:
            logger.info(f"Pool {rank} of {memberId} is at its cap {cap}, {amount} dropped")
            return ZERO

        updated = self.session.query(IncomePool).filter(
            IncomePool.poolID == pool.poolID,
            IncomePool.poolIncome <= cap - credit
        ).update({
            IncomePool.poolIncome: IncomePool.poolIncome + credit,
            IncomePool.lastIncomeAt: datetime.now(timezone.utc)
        }, synchronize_session=False)
        if updated != 1:
            raise Aborted(f"Pool {rank} of {memberId} changed concurrently, retry")

        await self.ledger.credit(
            memberId,
            EntryType.POOL,
            credit,
            sourceMemberId=sourceMemberId,
            rank=rank,
            eventId=eventId,
            claimable=self._isClaimEligible(memberId)
        )

        self.session.commit()

        await eventBus.emit(MLMEvents.POOL_INCOME_ACCUMULATED, {
            "memberId": memberId,
            "rank": rank,
            "amount": credit,
            "eventId": eventId
        })
        return credit

    def _isClaimEligible(self, memberId: str) -> bool:
        return bool(self.session.query(Member.claimEligible).filter_by(memberID=memberId).scalar())

    async def getClaimable(self, memberId: str) -> Decimal:
        member = self.session.query(Member).populate_existing().filter_by(memberID=memberId).first()
        if not member or not member.claimEligible:
            return ZERO

        pools = self.session.query(IncomePool).populate_existing().filter_by(memberID=memberId).all()
        return sum((toMoney(pool.poolIncome) for pool in pools), ZERO)

    async def claim(self, memberId: str, rank: Optional[str] = None) -> Decimal:
        """Release pool income into the available balance."""
        if rank:
            rank = parseRank(rank).value
        try:
            amount = await self.ledger.claim(memberId, rank)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        await eventBus.emit(MLMEvents.INCOME_CLAIMED, {
            "memberId": memberId,
            "rank": rank,
            "amount": amount
        })
        return amount

    async def accrueRankPools(self, rank: str, amountPerMember, cycleId: str) -> Dict:
        """
        Batch accrual to every member holding the rank pool.
        Idempotent per cycleId; one member failing does not stop the rest.
        """
        rank = parseRank(rank).value
        memberIds = [row.memberID for row in self.session.query(IncomePool.memberID).filter_by(rank=rank).all()]

        results = {
            "success": True,
            "rank": rank,
            "cycleId": cycleId,
            "members": len(memberIds),
            "credited": 0,
            "totalDistributed": ZERO,
            "errors": []
        }

        for memberId in memberIds:
            try:
                credited = await self.accumulate(memberId, rank, amountPerMember, eventId=cycleId)
            except Exception as e:
                self.session.rollback()
                logger.error(f"Pool accrual {cycleId} failed for {memberId}: {e}")
                results["errors"].append({"memberId": memberId, "error": str(e)})
                continue

            if credited > ZERO:
                results["credited"] += 1
                results["totalDistributed"] += credited

        logger.info(
            f"Pool accrual {cycleId} for {rank}: {results['credited']}/{len(memberIds)} members, "
            f"total {results['totalDistributed']}"
        )
        return results
