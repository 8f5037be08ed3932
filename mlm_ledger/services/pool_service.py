# mlm_ledger/services/pool_service.py
"""
Autopool service - placement tree filled breadth-first and pool income
paid up the placement chain.
"""
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased
import logging

from models import PoolNode, PinSetting
from mlm_ledger.config.plan import (
    IncomeSource, PLAN_AUTOPOOL, PLAN_AUTOPOOL_REQ_TEAM, PLAN_AUTOPOOL_REQ_DIRECT
)
from mlm_ledger.events.event_bus import MLMEvents
from mlm_ledger.services.network_service import IN_CHUNK
from mlm_ledger.services.payout_service import PayoutService, PayoutContext
from mlm_ledger.services.settings_service import SettingsService

logger = logging.getLogger(__name__)

PLACEMENT_ATTEMPTS = 3


class AutopoolService(PayoutService):

    source = IncomeSource.AUTOPOOL

    # Placement

    def nextPoolParent(self, session: Session, poolType: str,
                       sponsorId: Optional[int] = None) -> Optional[PoolNode]:
        """
        Earliest-created node with a free leg.
        With a sponsor that has a node, only the sponsor's pool subtree is searched,
        breadth-first; otherwise the whole pool.
        """
        legs = SettingsService(session).getInt("autopool_legs")

        if sponsorId is not None:
            sponsorNode = session.query(PoolNode).filter_by(userID=sponsorId, poolType=poolType).first()
            if sponsorNode:
                candidates = [sponsorNode.poolNodeID]
                for level in self._subtreeLevels(session, sponsorNode.poolNodeID, self._maxLevels(session)):
                    candidates.extend(level)
                childCounts = self._childCounts(session, candidates)
                for nodeId in candidates:
                    if childCounts.get(nodeId, 0) < legs:
                        return session.query(PoolNode).filter_by(poolNodeID=nodeId).first()
                logger.warning(f"Sponsor {sponsorId} pool subtree is full, placing globally")

        child = aliased(PoolNode)
        return session.query(PoolNode).outerjoin(
            child, child.parentID == PoolNode.poolNodeID
        ).filter(
            PoolNode.poolType == poolType
        ).group_by(
            PoolNode.poolNodeID
        ).having(
            func.count(child.poolNodeID) < legs
        ).order_by(PoolNode.poolNodeID).first()

    def placeNode(self, session: Session, userId: int, poolType: str,
                  sponsorId: Optional[int] = None) -> PoolNode:
        """
        Insert user into the pool under the next parent.
        Returns the existing node if the user is already placed.
        """
        existing = session.query(PoolNode).filter_by(userID=userId, poolType=poolType).first()
        if existing:
            return existing

        pin = session.query(PinSetting).filter_by(poolType=poolType).first()
        poolId = pin.poolId if pin else None

        for attempt in range(PLACEMENT_ATTEMPTS):
            parent = self.nextPoolParent(session, poolType, sponsorId)
            if parent is None:
                if self._hasNodes(session, poolType):
                    raise ValueError(f"No free pool position in {poolType}")
                parentId, position = None, None
            else:
                parentId = parent.poolNodeID
                position = session.query(func.count(PoolNode.poolNodeID)).filter_by(parentID=parentId).scalar() + 1

            node = PoolNode(
                userID=userId,
                poolType=poolType,
                poolId=poolId,
                parentID=parentId,
                poolPosition=position
            )
            try:
                with session.begin_nested():
                    session.add(node)
            except IntegrityError:
                # Position or root taken by a parallel registration
                logger.debug(f"Pool position {position} under {parentId} taken, retry {attempt + 1}")
                continue

            logger.info(f"User {userId} placed in {poolType} pool under node {parentId} at position {position}")
            return node

        raise ValueError(f"Could not place user {userId} in {poolType} pool")

    async def register(self, userId: int, poolType: str, sponsorId: Optional[int] = None) -> Dict:
        """Place user and announce it; pool income follows the pool.registered event."""
        with self.sessionFactory() as session:
            try:
                node = self.placeNode(session, userId, poolType, sponsorId)
                session.commit()
                trigger = self.triggerFor(node)
            except Exception as e:
                session.rollback()
                logger.error(f"Pool registration of user {userId} in {poolType} failed: {e}")
                return {"success": False, "error": str(e)}

        await self.bus.emit(MLMEvents.POOL_REGISTERED, trigger)
        return {"success": True, **trigger}

    @staticmethod
    def _hasNodes(session: Session, poolType: str) -> bool:
        return session.query(PoolNode.poolNodeID).filter_by(poolType=poolType).first() is not None

    @staticmethod
    def triggerFor(node: PoolNode) -> Dict:
        return {
            "poolNodeId": node.poolNodeID,
            "userId": node.userID,
            "poolType": node.poolType,
            "parentId": node.parentID,
            "position": node.poolPosition,
        }

    # Pool team

    def poolTeam(self, session: Session, userId: int, poolType: str,
                 maxLevels: Optional[int] = None) -> List[List[int]]:
        """User ids below the user's node, by depth; bounded by autopool_levels."""
        node = session.query(PoolNode.poolNodeID).filter_by(userID=userId, poolType=poolType).first()
        if not node:
            return []

        if maxLevels is None:
            maxLevels = self._maxLevels(session)

        result = []
        for level in self._subtreeLevels(session, node.poolNodeID, maxLevels):
            rows = session.query(PoolNode.userID).filter(
                PoolNode.poolNodeID.in_(level)
            ).order_by(PoolNode.poolNodeID).all()
            result.append([row.userID for row in rows])
        return result

    # Pool income

    async def runAutopoolIncome(self, trigger: Dict) -> Dict:
        """
        Pay the placement chain above a new node.
        trigger: dict with poolNodeId, as emitted on pool.registered.
        """
        return await self.runBatch([trigger["poolNodeId"]], self._payChain, jobName="autopool")

    def _payChain(self, ctx: PayoutContext, poolNodeId: int) -> List[Dict]:
        node = ctx.session.query(PoolNode).filter_by(poolNodeID=poolNodeId).first()
        if not node:
            logger.error(f"Autopool: node {poolNodeId} not found")
            return []

        amounts = ctx.settings.getPlanLevels(PLAN_AUTOPOOL)
        teamReq = ctx.settings.getPlanLevels(PLAN_AUTOPOOL_REQ_TEAM)
        directReq = ctx.settings.getPlanLevels(PLAN_AUTOPOOL_REQ_DIRECT)
        depth = min(len(amounts), self._maxLevels(ctx.session))
        if depth == 0:
            return []

        payouts = []
        visited = {node.poolNodeID}
        parentId = node.parentID
        level = 1

        while parentId is not None and level <= depth and parentId not in visited:
            ancestor = ctx.session.query(PoolNode).filter_by(poolNodeID=parentId).first()
            if not ancestor:
                break
            visited.add(ancestor.poolNodeID)

            if self._eligible(ctx, ancestor, level, teamReq, directReq):
                payout = self.safePayIncome(
                    ctx, ancestor.userID, amounts[level - 1], poolNodeId,
                    level=level,
                    txUCode=node.userID,
                    remark=f"Autopool {node.poolType} income for level {level}"
                )
                if payout:
                    payouts.append(payout)

            parentId = ancestor.parentID
            level += 1

        return payouts

    def _eligible(self, ctx: PayoutContext, ancestor: PoolNode, level: int,
                  teamReq: List, directReq: List) -> bool:
        if not ctx.network.isActive(ancestor.userID):
            logger.debug(f"Autopool: user {ancestor.userID} inactive, skip level {level}")
            return False

        if level <= len(teamReq):
            levels = self._subtreeLevels(ctx.session, ancestor.poolNodeID, level)
            size = len(levels[level - 1]) if len(levels) >= level else 0
            if size < int(teamReq[level - 1]):
                logger.debug(f"Autopool: user {ancestor.userID} pool level {level} has {size} < {teamReq[level - 1]}")
                return False

        if level <= len(directReq):
            directs = len(ctx.network.directsOf(ancestor.userID, activeOnly=True))
            if directs < int(directReq[level - 1]):
                logger.debug(f"Autopool: user {ancestor.userID} has {directs} directs < {directReq[level - 1]}")
                return False

        return True

    # Helpers

    def _maxLevels(self, session: Session) -> int:
        return SettingsService(session).getInt("autopool_levels")

    def _subtreeLevels(self, session: Session, rootId: int, maxLevels: int) -> List[List[int]]:
        """Node ids below rootId by depth, creation order inside a level."""
        levels = []
        visited = {rootId}
        frontier = [rootId]
        while frontier and len(levels) < maxLevels:
            children = []
            for start in range(0, len(frontier), IN_CHUNK):
                rows = session.query(PoolNode.poolNodeID).filter(
                    PoolNode.parentID.in_(frontier[start:start + IN_CHUNK])
                ).order_by(PoolNode.poolNodeID).all()
                children.extend(row.poolNodeID for row in rows if row.poolNodeID not in visited)
            if not children:
                break
            # Chunks keep parent order, sort restores creation order across chunks
            children.sort()
            visited.update(children)
            levels.append(children)
            frontier = children
        return levels

    @staticmethod
    def _childCounts(session: Session, nodeIds: List[int]) -> Dict[int, int]:
        counts = {}
        for start in range(0, len(nodeIds), IN_CHUNK):
            rows = session.query(PoolNode.parentID, func.count(PoolNode.poolNodeID)).filter(
                PoolNode.parentID.in_(nodeIds[start:start + IN_CHUNK])
            ).group_by(PoolNode.parentID).all()
            counts.update({parentId: count for parentId, count in rows})
        return counts
