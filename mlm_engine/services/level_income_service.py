# mlm_engine/services/level_income_service.py
"""
Level income: a share of each activation paid up to six uplines.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from sqlalchemy.orm import Session
import logging

from models import Member
from mlm_engine.config.ranks import LEVEL_INCOME_PERCENTAGES, RANK_ORDER
from mlm_engine.services.ledger_service import LedgerWriter, EntryType
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.utils.money import toMoney

logger = logging.getLogger(__name__)


class LevelIncomeDistributor:
    """Walks the upline chain and credits level income."""

    def __init__(
            self,
            session: Session,
            levelPercentages: Sequence[Decimal] = LEVEL_INCOME_PERCENTAGES,
            rankOrder: Sequence[str] = RANK_ORDER
    ):
        self.session = session
        self.levelPercentages = list(levelPercentages)
        self.rankOrder = {rank: position for position, rank in enumerate(rankOrder)}
        self.ledger = LedgerWriter(session)

    def rankIndex(self, rank: Optional[str]) -> int:
        return self.rankOrder.get(rank, -1)

    async def onActivation(
            self,
            newMemberId: str,
            activationAmount,
            activationId: Optional[str] = None,
            rank: Optional[str] = None
    ) -> Dict:
        """
        Credit uplines 1..N of the activating member.

        An upline is paid only if its own rank is at least the activated
        rank; otherwise that level is skipped and the walk continues.
        """
        member = self.session.query(Member).filter_by(memberID=newMemberId).first()
        if not member:
            logger.error(f"Level income: member {newMemberId} not found")
            return {"success": False, "error": "Member not found"}

        activatedRank = rank or member.rank
        requiredIndex = self.rankIndex(activatedRank)
        amount = Decimal(str(activationAmount))

        credits: List[Dict] = []
        skipped: List[Dict] = []
        visited = {member.memberID}
        uplineId = member.uplineID
        level = 1

        while uplineId and level <= len(self.levelPercentages):
            if uplineId in visited:
                logger.error(f"Cycle in upline chain of {newMemberId} at {uplineId}")
                break
            visited.add(uplineId)

            upline = self.session.query(Member).filter_by(memberID=uplineId).first()
            if not upline:
                logger.warning(f"Upline {uplineId} of {newMemberId} not found, stopping")
                break

            if self.rankIndex(upline.rank) >= requiredIndex:
                payout = toMoney(amount * self.levelPercentages[level - 1])
                entry = await self.ledger.credit(
                    upline.memberID,
                    EntryType.LEVEL,
                    payout,
                    sourceMemberId=newMemberId,
                    level=level,
                    rank=activatedRank,
                    eventId=activationId
                )
                credits.append({
                    "memberId": upline.memberID,
                    "level": level,
                    "amount": payout,
                    "duplicate": not entry.isNew
                })
            else:
                skipped.append({"memberId": upline.memberID, "level": level, "rank": upline.rank})

            uplineId = upline.uplineID
            level += 1

        self.session.commit()

        for credit in credits:
            if not credit["duplicate"]:
                await eventBus.emit(MLMEvents.LEVEL_INCOME_PAID, {
                    "memberId": credit["memberId"],
                    "sourceMemberId": newMemberId,
                    "level": credit["level"],
                    "amount": credit["amount"],
                    "activationId": activationId
                })

        total = sum((credit["amount"] for credit in credits), Decimal("0"))
        logger.info(
            f"Level income for {newMemberId}: {len(credits)} credited, "
            f"{len(skipped)} skipped, total {total}"
        )

        return {
            "success": True,
            "credits": credits,
            "skipped": skipped,
            "totalDistributed": total
        }
