# mlm_engine/services/tree_locator.py
"""
Binary tree placement: finds the slot a new member attaches to.

locate() only proposes a slot. The slot is taken by claimSlot() inside the
member-creation transaction, which fails with SlotConflict when somebody
else got there first; callers then locate again from scratch.
"""
from typing import Dict, List, NamedTuple, Optional
from sqlalchemy.orm import Session
import logging

from models import Member
from mlm_engine.errors import NotFound, FailedPrecondition, InvalidArgument, Internal, SlotConflict

logger = logging.getLogger(__name__)

SIDES = ("left", "right")


class Placement(NamedTuple):
    uplineId: Optional[str]
    side: Optional[str]
    level: int

    @property
    def isRoot(self) -> bool:
        return self.uplineId is None


def normalizeSide(side: Optional[str]) -> str:
    if side is None:
        return "left"
    side = side.lower()
    if side not in SIDES:
        raise InvalidArgument(f"Invalid position: {side}")
    return side


def otherSide(side: str) -> str:
    return "right" if side == "left" else "left"


def childColumn(side: str):
    return Member.leftChildID if side == "left" else Member.rightChildID


class TreeLocator:
    """Finds and claims placement slots in the binary tree."""

    def __init__(self, session: Session):
        self.session = session

    async def locate(
            self,
            sponsorId: Optional[str],
            preferredSide: Optional[str] = "left",
            placementId: Optional[str] = None
    ) -> Placement:
        """
        Resolve the slot for a new member.

        No sponsor means a new root. An explicit placementId pins the slot
        and fails if it is taken. Otherwise the sponsor's preferred side,
        then its other side, then breadth-first spillover under the sponsor.
        """
        if not sponsorId:
            return Placement(None, None, 1)

        side = normalizeSide(preferredSide)

        sponsor = self._load(sponsorId)
        if not sponsor:
            raise NotFound(f"Sponsor {sponsorId} not found")
        if sponsor.status != "active":
            raise FailedPrecondition(f"Sponsor {sponsorId} is not active")

        if placementId:
            target = sponsor if placementId == sponsorId else self._load(placementId)
            if not target:
                raise NotFound(f"Placement parent {placementId} not found")
            if target.childOn(side):
                raise FailedPrecondition("Position already occupied")
            return Placement(target.memberID, side, target.treeLevel + 1)

        for candidate in (side, otherSide(side)):
            if not sponsor.childOn(candidate):
                return Placement(sponsor.memberID, candidate, sponsor.treeLevel + 1)

        return self._spillover(sponsor)

    def _spillover(self, sponsor: Member) -> Placement:
        """
        Level-order search below a full sponsor.

        Nodes are kept in an id-indexed arena and each level is fetched with
        a single IN query. The first node with a free slot wins, left before
        right at that node.
        """
        arena: Dict[str, Member] = {sponsor.memberID: sponsor}
        visited = {sponsor.memberID}
        frontier: List[str] = []
        for childId in (sponsor.leftChildID, sponsor.rightChildID):
            if childId not in visited:
                visited.add(childId)
                frontier.append(childId)

        depth = 0
        while frontier:
            depth += 1
            rows = self.session.query(Member).populate_existing().filter(
                Member.memberID.in_(frontier)
            ).all()
            arena.update({row.memberID: row for row in rows})

            nextFrontier = []
            for memberId in frontier:
                node = arena.get(memberId)
                if node is None:
                    logger.warning(f"Dangling child reference {memberId} under sponsor {sponsor.memberID}")
                    continue

                for side in SIDES:
                    if not node.childOn(side):
                        logger.info(
                            f"Spillover for sponsor {sponsor.memberID}: "
                            f"{node.memberID}/{side} at depth {depth}"
                        )
                        return Placement(node.memberID, side, node.treeLevel + 1)

                for childId in (node.leftChildID, node.rightChildID):
                    if childId in visited:
                        logger.error(f"Cycle detected at {childId} under sponsor {sponsor.memberID}")
                        continue
                    visited.add(childId)
                    nextFrontier.append(childId)

            frontier = nextFrontier

        raise Internal(f"No free slot found under sponsor {sponsor.memberID}")

    def claimSlot(self, placement: Placement, childId: str):
        """Attach childId to the proposed slot. Must run inside the creating transaction."""
        if placement.isRoot:
            return

        column = childColumn(placement.side)
        updated = self.session.query(Member).filter(
            Member.memberID == placement.uplineId,
            column.is_(None)
        ).update({column: childId}, synchronize_session=False)

        if updated != 1:
            raise SlotConflict(
                f"Slot {placement.side} of {placement.uplineId} was taken concurrently"
            )

    def _load(self, memberId: str) -> Optional[Member]:
        return self.session.query(Member).populate_existing().filter_by(
            memberID=memberId
        ).first()
