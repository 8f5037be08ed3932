# mlm_ledger/services/business_service.py
"""
Business aggregator - order volume over self, directs, team and team levels.
"""
from decimal import Decimal
from typing import Iterable, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from models import Order, User
from models.order import ORDER_ACTIVE, PAYOUT_ELIGIBLE
from mlm_ledger.config.plan import ZERO
from mlm_ledger.services.network_service import NetworkService, DEFAULT_TEAM_DEPTH, IN_CHUNK, activeFilter

logger = logging.getLogger(__name__)


class BusinessService:

    def __init__(self, session: Session, network: NetworkService = None):
        self.session = session
        self.network = network or NetworkService(session)

    def sumBusiness(self, userIds: Iterable[int], activeOnly: bool = False,
                    excludePaidOut: bool = True, field: str = "bv") -> Decimal:
        """Sum of Order.bv (or amount) over active orders of the given users."""
        userIds = list(userIds)
        if not userIds:
            return ZERO

        column = getattr(Order, field)
        total = ZERO
        for start in range(0, len(userIds), IN_CHUNK):
            chunk = userIds[start:start + IN_CHUNK]
            query = self.session.query(func.coalesce(func.sum(column), 0)).filter(
                Order.userID.in_(chunk),
                Order.status == ORDER_ACTIVE
            )
            if excludePaidOut:
                query = query.filter(Order.payOutStatus == PAYOUT_ELIGIBLE)
            if activeOnly:
                query = query.join(User, User.userID == Order.userID).filter(activeFilter())
            total += Decimal(str(query.scalar() or 0))
        return total

    def selfBusiness(self, userId: int, excludePaidOut: bool = True) -> Decimal:
        return self.sumBusiness([userId], excludePaidOut=excludePaidOut)

    def lifetimePackage(self, userId: int) -> Decimal:
        """Package value behind the cap: all active orders, paid-out ones included."""
        return self.sumBusiness([userId], excludePaidOut=False)

    def directBusiness(self, userId: int, activeOnly: bool = False,
                       excludePaidOut: bool = True) -> Decimal:
        directs = self.network.directsOf(userId, activeOnly)
        return self.sumBusiness(directs, excludePaidOut=excludePaidOut)

    def teamBusiness(self, userId: int, maxDepth: Optional[int] = DEFAULT_TEAM_DEPTH,
                     activeOnly: bool = False, excludePaidOut: bool = True) -> Decimal:
        members = self.network.teamMembers(userId, maxDepth, activeOnly)
        return self.sumBusiness(members, excludePaidOut=excludePaidOut)

    def levelBusiness(self, userId: int, maxDepth: Optional[int] = DEFAULT_TEAM_DEPTH,
                      activeOnly: bool = False, excludePaidOut: bool = True) -> List[Decimal]:
        """
        Business per team level; item i is level i + 1.
        Levels past the deepest populated one are absent, callers treat them as zero.
        """
        result = []
        for level in self.network.teamOf(userId, maxDepth, activeOnly):
            members = self.network.levelMembers(level)
            result.append(self.sumBusiness(members, excludePaidOut=excludePaidOut))
        return result
