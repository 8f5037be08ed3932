# mlm_ledger/services/network_service.py
"""
Network graph accessor - directs, team by level and upline over the sponsor tree.

Traversals are iterative with a visited set, so malformed data (a sponsor
loop) cannot make them run forever.
"""
from typing import Dict, List, Optional
from sqlalchemy import and_
from sqlalchemy.orm import Session
import logging

from models import User
from mlm_ledger.errors import UnknownUser

logger = logging.getLogger(__name__)

DEFAULT_TEAM_DEPTH = 10
IN_CHUNK = 500


def activeFilter():
    return and_(User.activeStatus == 1, User.blockStatus == 0)


class NetworkService:

    def __init__(self, session: Session):
        self.session = session

    def isActive(self, userId: int) -> bool:
        user = self.session.query(User.activeStatus, User.blockStatus).filter_by(userID=userId).first()
        return bool(user) and user.activeStatus == 1 and user.blockStatus == 0

    def directsOf(self, userId: int, activeOnly: bool = False) -> List[int]:
        """Immediate sponsees in creation order."""
        query = self.session.query(User.userID).filter(User.sponsorID == userId)
        if activeOnly:
            query = query.filter(activeFilter())
        return [row.userID for row in query.order_by(User.userID).all()]

    def teamOf(self, userId: int, maxDepth: Optional[int] = DEFAULT_TEAM_DEPTH,
               activeOnly: bool = False) -> List[Dict[int, List[int]]]:
        """
        Team by level, breadth-first.

        Returns list where item i holds level i + 1 as {parentId: [childIds]}.
        Stops at the first empty level or at maxDepth (None = no depth limit).
        With activeOnly, inactive members are neither listed nor expanded.
        """
        levels = []
        visited = {userId}
        frontier = [userId]

        while frontier and (maxDepth is None or len(levels) < maxDepth):
            levelMap: Dict[int, List[int]] = {}
            nextFrontier = []

            for childId, parentId in self._childrenOf(frontier, activeOnly):
                if childId in visited:
                    logger.warning(f"Sponsor loop detected at user {childId} under {parentId}")
                    continue
                visited.add(childId)
                levelMap.setdefault(parentId, []).append(childId)
                nextFrontier.append(childId)

            if not levelMap:
                break

            levels.append(levelMap)
            frontier = nextFrontier

        return levels

    def teamMembers(self, userId: int, maxDepth: Optional[int] = DEFAULT_TEAM_DEPTH,
                    activeOnly: bool = False) -> List[int]:
        members = []
        for level in self.teamOf(userId, maxDepth, activeOnly):
            members.extend(self.levelMembers(level))
        return members

    def teamCounts(self, userId: int, maxDepth: Optional[int] = DEFAULT_TEAM_DEPTH,
                   activeOnly: bool = False) -> List[int]:
        """Number of members per level."""
        return [len(self.levelMembers(level)) for level in self.teamOf(userId, maxDepth, activeOnly)]

    def uplineOf(self, userId: int, activeOnly: bool = False,
                 maxDepth: Optional[int] = None) -> List[int]:
        """
        Sponsors from the immediate one up to the root.
        With activeOnly the chain ends before the first inactive or blocked ancestor.
        """
        start = self.session.query(User.sponsorID).filter_by(userID=userId).first()
        if start is None:
            raise UnknownUser(userId)

        chain = []
        visited = {userId}
        currentId = start.sponsorID

        while currentId is not None and (maxDepth is None or len(chain) < maxDepth):
            if currentId in visited:
                logger.warning(f"Sponsor loop detected in upline of user {userId} at {currentId}")
                break

            row = self.session.query(
                User.userID, User.sponsorID, User.activeStatus, User.blockStatus
            ).filter_by(userID=currentId).first()
            if not row:
                logger.error(f"Sponsor {currentId} of chain from user {userId} not found")
                break

            if activeOnly and not (row.activeStatus == 1 and row.blockStatus == 0):
                break

            chain.append(row.userID)
            visited.add(row.userID)
            currentId = row.sponsorID

        return chain

    @staticmethod
    def levelMembers(level: Dict[int, List[int]]) -> List[int]:
        members = []
        for children in level.values():
            members.extend(children)
        return members

    def _childrenOf(self, parentIds: List[int], activeOnly: bool):
        for start in range(0, len(parentIds), IN_CHUNK):
            chunk = parentIds[start:start + IN_CHUNK]
            query = self.session.query(User.userID, User.sponsorID).filter(User.sponsorID.in_(chunk))
            if activeOnly:
                query = query.filter(activeFilter())
            for row in query.order_by(User.userID).all():
                yield row.userID, row.sponsorID
