# mlm_engine/services/ledger_service.py
"""
Ledger writer - the only code that moves money between balances.

Every movement is an immutable LedgerEntry plus an atomic increment of the
member's balance columns. Callers own the transaction: nothing here commits.
"""
from decimal import Decimal
from typing import Dict, Optional
from datetime import datetime, timezone
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from models import Member, LedgerEntry, IncomePool
from mlm_engine.errors import InvalidArgument, NotFound, FailedPrecondition, Aborted
from mlm_engine.utils.money import toMoney, ZERO

logger = logging.getLogger(__name__)


class EntryType:
    REFERRAL = "referral"
    LEVEL = "level"
    POOL = "pool"
    CLAIM = "claim"
    WITHDRAWAL = "withdrawal"
    ACTIVATION = "activation"


# Which balance columns a credit of each type increments,
# and the status the entry is written with.
CREDIT_ROUTING: Dict[str, Dict] = {
    EntryType.REFERRAL: {"columns": ("availableBalance", "totalEarnings"), "status": "credited"},
    EntryType.LEVEL: {"columns": ("availableBalance", "totalEarnings"), "status": "credited"},
    EntryType.POOL: {"columns": ("lockedBalance",), "status": "pending"},
}

DEBIT_ROUTING: Dict[str, Dict] = {
    EntryType.WITHDRAWAL: {"columns": ("totalWithdrawals",)},
    EntryType.ACTIVATION: {"columns": ()},
}


def idempotencyKey(
        eventId: Optional[str],
        entryType: str,
        memberId: str,
        level: Optional[int] = None,
        rank: Optional[str] = None
) -> Optional[str]:
    """Pool credits are keyed per rank, every other type per level."""
    if not eventId:
        return None
    if entryType == EntryType.POOL:
        return f"{eventId}:{entryType}:{memberId}:{rank}"
    return f"{eventId}:{entryType}:{memberId}:{level or 0}"


class LedgerWriter:
    """Appends ledger entries and applies their balance deltas."""

    def __init__(self, session: Session):
        self.session = session

    def findByKey(self, key: Optional[str]) -> Optional[LedgerEntry]:
        if not key:
            return None
        return self.session.query(LedgerEntry).filter_by(idempotencyKey=key).first()

    async def credit(
            self,
            memberId: str,
            entryType: str,
            amount,
            sourceMemberId: Optional[str] = None,
            level: Optional[int] = None,
            rank: Optional[str] = None,
            eventId: Optional[str] = None,
            notes: Optional[str] = None,
            claimable: bool = False
    ) -> LedgerEntry:
        """
        Credit a member. With an eventId the call is idempotent: a repeat
        returns the entry written the first time and changes nothing.
        The returned entry carries isNew so callers can tell the two apart.
        """
        routing = CREDIT_ROUTING.get(entryType)
        if routing is None:
            raise InvalidArgument(f"Unsupported credit type: {entryType}")

        amount = toMoney(amount)
        if amount <= ZERO:
            raise InvalidArgument(f"Credit amount must be positive, got {amount}")

        key = idempotencyKey(eventId, entryType, memberId, level, rank)
        existing = self.findByKey(key)
        if existing:
            logger.info(f"Duplicate {entryType} credit {key} ignored")
            existing.isNew = False
            return existing

        entry = LedgerEntry(
            memberID=memberId,
            sourceMemberID=sourceMemberId,
            entryType=entryType,
            amount=amount,
            level=level,
            rank=rank,
            status=routing["status"],
            eventID=eventId,
            idempotencyKey=key,
            claimable=claimable,
            notes=notes
        )
        self.session.add(entry)
        self._flush(f"{entryType} credit for {memberId}")

        self._increment(memberId, {column: amount for column in routing["columns"]})

        logger.info(
            f"Credited {amount} {entryType} to {memberId}"
            f"{f' (level {level})' if level else ''} from {sourceMemberId}"
        )
        entry.isNew = True
        return entry

    async def debit(
            self,
            memberId: str,
            amount,
            entryType: str = EntryType.WITHDRAWAL,
            eventId: Optional[str] = None,
            rank: Optional[str] = None,
            notes: Optional[str] = None
    ) -> LedgerEntry:
        """Conditionally decrement the available balance."""
        routing = DEBIT_ROUTING.get(entryType)
        if routing is None:
            raise InvalidArgument(f"Unsupported debit type: {entryType}")

        amount = toMoney(amount)
        if amount <= ZERO:
            raise InvalidArgument(f"Debit amount must be positive, got {amount}")

        key = idempotencyKey(eventId, entryType, memberId)
        existing = self.findByKey(key)
        if existing:
            existing.isNew = False
            return existing

        values = {Member.availableBalance: Member.availableBalance - amount}
        for column in routing["columns"]:
            attr = getattr(Member, column)
            values[attr] = attr + amount

        updated = self.session.query(Member).filter(
            Member.memberID == memberId,
            Member.availableBalance >= amount
        ).update(values, synchronize_session=False)

        if updated != 1:
            if not self._exists(memberId):
                raise NotFound(f"Member {memberId} not found")
            raise FailedPrecondition("Insufficient wallet balance")

        entry = LedgerEntry(
            memberID=memberId,
            entryType=entryType,
            amount=-amount,
            rank=rank,
            status="credited",
            eventID=eventId,
            idempotencyKey=key,
            notes=notes
        )
        self.session.add(entry)
        self._flush(f"{entryType} debit for {memberId}")

        logger.info(f"Debited {amount} ({entryType}) from {memberId}")
        entry.isNew = True
        return entry

    async def claim(self, memberId: str, rank: Optional[str] = None) -> Decimal:
        """
        Move pool income into the available balance.
        Scope is a single rank pool or, with rank=None, every pool.
        """
        member = self.session.query(Member).populate_existing().filter_by(memberID=memberId).first()
        if not member:
            raise NotFound(f"Member {memberId} not found")
        if not member.claimEligible:
            raise FailedPrecondition(
                "Claim not available: at least 2 direct referrals are required"
            )

        poolsQuery = self.session.query(IncomePool).populate_existing().filter(
            IncomePool.memberID == memberId,
            IncomePool.poolIncome > 0
        )
        if rank:
            poolsQuery = poolsQuery.filter(IncomePool.rank == rank)
        pools = poolsQuery.all()

        total = sum((toMoney(pool.poolIncome) for pool in pools), ZERO)
        if total <= ZERO:
            raise FailedPrecondition("No locked income available to claim")

        now = datetime.now(timezone.utc)
        for pool in pools:
            seen = toMoney(pool.poolIncome)
            updated = self.session.query(IncomePool).filter(
                IncomePool.poolID == pool.poolID,
                IncomePool.poolIncome >= seen
            ).update({
                IncomePool.poolIncome: IncomePool.poolIncome - seen,
                IncomePool.claimedAt: now
            }, synchronize_session=False)
            if updated != 1:
                raise Aborted(f"Pool {pool.rank} of {memberId} changed during claim, retry")

        updated = self.session.query(Member).filter(
            Member.memberID == memberId,
            Member.lockedBalance >= total
        ).update({
            Member.lockedBalance: Member.lockedBalance - total,
            Member.availableBalance: Member.availableBalance + total,
            Member.totalEarnings: Member.totalEarnings + total
        }, synchronize_session=False)
        if updated != 1:
            raise Aborted(f"Locked balance of {memberId} changed during claim, retry")

        entriesQuery = self.session.query(LedgerEntry).filter(
            LedgerEntry.memberID == memberId,
            LedgerEntry.entryType == EntryType.POOL,
            LedgerEntry.status == "pending"
        )
        if rank:
            entriesQuery = entriesQuery.filter(LedgerEntry.rank == rank)
        entriesQuery.update({LedgerEntry.status: "credited"}, synchronize_session=False)

        self.session.add(LedgerEntry(
            memberID=memberId,
            entryType=EntryType.CLAIM,
            amount=total,
            rank=rank,
            status="credited",
            notes=f"Claimed {len(pools)} pool(s)"
        ))
        self._flush(f"claim for {memberId}")

        logger.info(f"Member {memberId} claimed {total} from {len(pools)} pool(s)")
        return total

    async def reverse(self, entryId: int, reason: str) -> LedgerEntry:
        """Write a compensating entry for a credited entry and undo its balance effect."""
        original = self.session.query(LedgerEntry).filter_by(entryID=entryId).first()
        if not original:
            raise NotFound(f"Ledger entry {entryId} not found")
        if original.reversesEntryID is not None or original.status == "reversed":
            raise FailedPrecondition(f"Ledger entry {entryId} is itself a reversal")
        if self.session.query(LedgerEntry).filter_by(reversesEntryID=entryId).first():
            raise FailedPrecondition(f"Ledger entry {entryId} already reversed")

        routing = CREDIT_ROUTING.get(original.entryType)
        if routing is None:
            raise FailedPrecondition(f"Entries of type {original.entryType} cannot be reversed")
        if original.entryType == EntryType.POOL and original.status != "pending":
            raise FailedPrecondition("Claimed pool income cannot be reversed")

        amount = toMoney(original.amount)
        balanceColumn = getattr(Member, routing["columns"][0])
        values = {getattr(Member, column): getattr(Member, column) - amount for column in routing["columns"]}
        updated = self.session.query(Member).filter(
            Member.memberID == original.memberID,
            balanceColumn >= amount
        ).update(values, synchronize_session=False)
        if updated != 1:
            raise FailedPrecondition(f"Balance of {original.memberID} is too low to reverse entry {entryId}")

        if original.entryType == EntryType.POOL:
            self.session.query(IncomePool).filter(
                IncomePool.memberID == original.memberID,
                IncomePool.rank == original.rank
            ).update({IncomePool.poolIncome: IncomePool.poolIncome - amount}, synchronize_session=False)

        reversal = LedgerEntry(
            memberID=original.memberID,
            sourceMemberID=original.sourceMemberID,
            entryType=original.entryType,
            amount=-amount,
            level=original.level,
            rank=original.rank,
            status="reversed",
            eventID=original.eventID,
            reversesEntryID=original.entryID,
            notes=reason
        )
        self.session.add(reversal)
        self._flush(f"reversal of entry {entryId}")

        logger.warning(f"Reversed ledger entry {entryId} ({original.entryType} {amount}): {reason}")
        return reversal

    def _increment(self, memberId: str, deltas: Dict[str, Decimal]):
        values = {getattr(Member, column): getattr(Member, column) + delta for column, delta in deltas.items()}
        updated = self.session.query(Member).filter(
            Member.memberID == memberId
        ).update(values, synchronize_session=False)
        if updated != 1:
            raise NotFound(f"Member {memberId} not found")

    def _exists(self, memberId: str) -> bool:
        return self.session.query(func.count(Member.memberID)).filter(
            Member.memberID == memberId
        ).scalar() > 0

    def _flush(self, what: str):
        try:
            self.session.flush()
        except IntegrityError as e:
            logger.error(f"Conflict while writing {what}: {e}")
            raise Aborted(f"Concurrent write conflict on {what}")
