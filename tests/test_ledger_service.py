from decimal import Decimal

import pytest

from models import LedgerEntry, IncomePool
from mlm_engine.errors import InvalidArgument, NotFound, FailedPrecondition
from mlm_engine.services.ledger_service import LedgerWriter, EntryType


@pytest.fixture
def ledger(session):
    return LedgerWriter(session)


@pytest.mark.asyncio
async def test_referral_credit_updates_available_and_earnings(ledger, session, add_member, fetch):
    add_member("A")
    entry = await ledger.credit("A", EntryType.REFERRAL, Decimal("2.50"), sourceMemberId="B", eventId="act-1")
    session.commit()

    assert entry.isNew
    assert entry.status == "credited"
    member = fetch("A")
    assert member.availableBalance == Decimal("2.50")
    assert member.totalEarnings == Decimal("2.50")
    assert member.lockedBalance == Decimal("0")


@pytest.mark.asyncio
async def test_pool_credit_goes_to_locked_balance_pending(ledger, session, add_member, fetch):
    add_member("A")
    entry = await ledger.credit("A", EntryType.POOL, Decimal("4"), rank="azurite", eventId="act-1")
    session.commit()

    assert entry.status == "pending"
    member = fetch("A")
    assert member.lockedBalance == Decimal("4.00")
    assert member.availableBalance == Decimal("0")


@pytest.mark.asyncio
async def test_credit_rounds_half_up_once(ledger, session, add_member, fetch):
    add_member("A")
    entry = await ledger.credit("A", EntryType.LEVEL, Decimal("0.125"), level=1)
    session.commit()
    assert entry.amount == Decimal("0.13")
    assert fetch("A").availableBalance == Decimal("0.13")


@pytest.mark.asyncio
async def test_credit_is_idempotent_per_event(ledger, session, add_member, fetch):
    add_member("A")
    first = await ledger.credit("A", EntryType.LEVEL, Decimal("2"), level=1, eventId="act-1")
    second = await ledger.credit("A", EntryType.LEVEL, Decimal("2"), level=1, eventId="act-1")
    session.commit()

    assert first.entryID == second.entryID
    assert second.isNew is False
    assert fetch("A").availableBalance == Decimal("2.00")
    assert session.query(LedgerEntry).count() == 1


@pytest.mark.asyncio
async def test_credit_rejects_unknown_type_and_non_positive(ledger, add_member):
    add_member("A")
    with pytest.raises(InvalidArgument):
        await ledger.credit("A", "bonus", Decimal("1"))
    with pytest.raises(InvalidArgument):
        await ledger.credit("A", EntryType.REFERRAL, Decimal("0"))


@pytest.mark.asyncio
async def test_credit_unknown_member(ledger, session):
    with pytest.raises(NotFound):
        await ledger.credit("ghost", EntryType.REFERRAL, Decimal("1"))
    session.rollback()


@pytest.mark.asyncio
async def test_debit_withdrawal(ledger, session, add_member, fetch):
    add_member("A", available=Decimal("10"))
    await ledger.debit("A", Decimal("4"))
    session.commit()

    member = fetch("A")
    assert member.availableBalance == Decimal("6.00")
    assert member.totalWithdrawals == Decimal("4.00")


@pytest.mark.asyncio
async def test_debit_insufficient(ledger, session, add_member, fetch):
    add_member("A", available=Decimal("3"))
    with pytest.raises(FailedPrecondition):
        await ledger.debit("A", Decimal("4"))
    session.rollback()
    assert fetch("A").availableBalance == Decimal("3.00")


@pytest.mark.asyncio
async def test_debit_unknown_member(ledger):
    with pytest.raises(NotFound):
        await ledger.debit("ghost", Decimal("1"))


async def _fillPool(session, ledger, memberId, amount, eventId):
    session.query(IncomePool).filter_by(memberID=memberId, rank="azurite").update(
        {IncomePool.poolIncome: IncomePool.poolIncome + amount}
    )
    await ledger.credit(memberId, EntryType.POOL, amount, rank="azurite", eventId=eventId)
    session.commit()


@pytest.mark.asyncio
async def test_claim_requires_eligibility(ledger, session, add_member):
    add_member("A")
    await _fillPool(session, ledger, "A", Decimal("4"), "act-1")

    with pytest.raises(FailedPrecondition, match="2 direct referrals"):
        await ledger.claim("A")


@pytest.mark.asyncio
async def test_claim_requires_balance(ledger, session, add_member, fetch):
    add_member("A")
    member = fetch("A")
    member.claimEligible = True
    session.commit()

    with pytest.raises(FailedPrecondition, match="No locked income"):
        await ledger.claim("A")


@pytest.mark.asyncio
async def test_claim_moves_locked_to_available(ledger, session, add_member, fetch):
    add_member("A")
    await _fillPool(session, ledger, "A", Decimal("4"), "act-1")
    await _fillPool(session, ledger, "A", Decimal("2"), "act-2")
    member = fetch("A")
    member.claimEligible = True
    session.commit()

    amount = await ledger.claim("A")
    session.commit()

    assert amount == Decimal("6.00")
    member = fetch("A")
    assert member.lockedBalance == Decimal("0")
    assert member.availableBalance == Decimal("6.00")
    assert member.totalEarnings == Decimal("6.00")

    pool = session.query(IncomePool).filter_by(memberID="A").one()
    assert pool.poolIncome == Decimal("0")
    assert pool.claimedAt is not None

    pending = session.query(LedgerEntry).filter_by(memberID="A", entryType=EntryType.POOL, status="pending").count()
    assert pending == 0
    claim = session.query(LedgerEntry).filter_by(memberID="A", entryType=EntryType.CLAIM).one()
    assert claim.amount == Decimal("6.00")


@pytest.mark.asyncio
async def test_reverse_referral_credit(ledger, session, add_member, fetch):
    add_member("A")
    entry = await ledger.credit("A", EntryType.REFERRAL, Decimal("2.50"), eventId="act-1")
    session.commit()

    reversal = await ledger.reverse(entry.entryID, "chargeback")
    session.commit()

    assert reversal.amount == Decimal("-2.50")
    assert reversal.reversesEntryID == entry.entryID
    member = fetch("A")
    assert member.availableBalance == Decimal("0")
    assert member.totalEarnings == Decimal("0")

    with pytest.raises(FailedPrecondition):
        await ledger.reverse(entry.entryID, "again")
