# mlm_engine/services/referral_service.py
"""
Direct referral commission and the claim-eligibility gate.
"""
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

from models import Member, LedgerEntry
from mlm_engine.config.ranks import REFERRAL_COMMISSION_PERCENTAGE, CLAIM_ELIGIBILITY_THRESHOLD
from mlm_engine.services.ledger_service import LedgerWriter, EntryType
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.utils.money import toMoney

logger = logging.getLogger(__name__)


class ReferralDistributor:
    """Pays the sponsor's referral commission and tracks direct referrals."""

    def __init__(
            self,
            session: Session,
            percentage: Decimal = REFERRAL_COMMISSION_PERCENTAGE,
            threshold: int = CLAIM_ELIGIBILITY_THRESHOLD
    ):
        self.session = session
        self.percentage = percentage
        self.threshold = threshold
        self.ledger = LedgerWriter(session)

    async def onActivation(
            self,
            newMemberId: str,
            sponsorId: Optional[str],
            activationAmount,
            activationId: Optional[str] = None,
            countReferral: bool = True,
            rank: Optional[str] = None
    ) -> Dict:
        """
        Credit the sponsor and bump their direct referral count.

        The count moves only when the commission entry is new, so a replayed
        activation never counts twice. Reaching the threshold flips
        claimEligible once and marks the sponsor's pending pool income claimable.
        """
        if not sponsorId:
            return {"success": True, "skipped": "no sponsor"}

        commission = toMoney(Decimal(str(activationAmount)) * self.percentage)
        entry = await self.ledger.credit(
            sponsorId,
            EntryType.REFERRAL,
            commission,
            sourceMemberId=newMemberId,
            rank=rank,
            eventId=activationId
        )

        becameEligible = False
        if entry.isNew and countReferral:
            self.session.query(Member).filter(
                Member.memberID == sponsorId
            ).update({
                Member.directReferralsCount: Member.directReferralsCount + 1
            }, synchronize_session=False)
            becameEligible = self._grantEligibility(sponsorId)

        self.session.commit()

        if entry.isNew:
            await eventBus.emit(MLMEvents.REFERRAL_BONUS_PAID, {
                "memberId": sponsorId,
                "sourceMemberId": newMemberId,
                "amount": commission,
                "activationId": activationId
            })
        if becameEligible:
            await eventBus.emit(MLMEvents.CLAIM_ELIGIBILITY_GRANTED, {"memberId": sponsorId})

        return {
            "success": True,
            "sponsorId": sponsorId,
            "amount": commission,
            "duplicate": not entry.isNew,
            "claimEligibilityGranted": becameEligible
        }

    def _grantEligibility(self, sponsorId: str) -> bool:
        # Only the writer that flips false -> true marks pool income claimable
        flipped = self.session.query(Member).filter(
            Member.memberID == sponsorId,
            Member.claimEligible == False,  # noqa: E712
            Member.directReferralsCount >= self.threshold
        ).update({Member.claimEligible: True}, synchronize_session=False)

        if flipped != 1:
            return False

        marked = self.session.query(LedgerEntry).filter(
            LedgerEntry.memberID == sponsorId,
            LedgerEntry.entryType == EntryType.POOL,
            LedgerEntry.status == "pending",
            LedgerEntry.claimable == False  # noqa: E712
        ).update({LedgerEntry.claimable: True}, synchronize_session=False)

        logger.info(f"Member {sponsorId} became claim eligible, {marked} pool entries now claimable")
        return True
