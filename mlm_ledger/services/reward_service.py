# mlm_ledger/services/reward_service.py
"""
Reward distributor - one-time rank rewards for active team size per level.
"""
from typing import Dict, List, Optional
from sqlalchemy.exc import IntegrityError
import logging

from models import RankAchievement
from mlm_ledger.config.plan import IncomeSource, RANK_REWARD, RANK_REWARD_REQ_TEAM
from mlm_ledger.errors import LedgerError, CapReached
from mlm_ledger.events.event_bus import MLMEvents
from mlm_ledger.services.level_service import activeUserIds
from mlm_ledger.services.payout_service import PayoutService, PayoutContext

logger = logging.getLogger(__name__)


class RewardService(PayoutService):
    """
    Rank i is reached when level i of the active team has at least
    reward_req_team[i] members. Each rank pays reward[i] once; the
    RankAchievement row is the guard, not the income record.
    """

    source = IncomeSource.REWARD

    async def runReward(self) -> Dict:
        userIds = self.loadIds(activeUserIds)
        logger.info(f"Reward run: {len(userIds)} active users")
        result = await self.runBatch(userIds, self._evaluateUser, jobName="reward")

        for payout in result["payouts"]:
            await self.bus.emit(MLMEvents.RANK_ACHIEVED, {
                "userId": payout["userId"],
                "rank": payout["level"],
                "amount": payout["amount"],
            })
        return result

    def _evaluateUser(self, ctx: PayoutContext, userId: int) -> List[Dict]:
        rewards = ctx.settings.getRankLevels(RANK_REWARD)
        teamReq = ctx.settings.getRankLevels(RANK_REWARD_REQ_TEAM)
        depth = min(len(rewards), len(teamReq))
        if depth == 0:
            return []

        counts = ctx.network.teamCounts(userId, maxDepth=depth, activeOnly=True)
        achieved = {
            row.rank for row in ctx.session.query(RankAchievement.rank).filter_by(userID=userId).all()
        }

        payouts = []
        # Every met tier is checked, a missed lower tier does not block higher ones
        for index in range(min(len(counts), depth)):
            rank = index + 1
            if rank in achieved:
                continue
            if counts[index] < int(teamReq[index]):
                logger.debug(f"Reward: user {userId} level {rank} team {counts[index]} < {teamReq[index]}")
                continue

            payout = self._payRank(ctx, userId, rank, rewards[index])
            if payout:
                payouts.append(payout)
        return payouts

    def _payRank(self, ctx: PayoutContext, userId: int, rank: int, amount) -> Optional[Dict]:
        """Rank marker and income in one savepoint."""
        try:
            with ctx.session.begin_nested():
                ctx.session.add(RankAchievement(userID=userId, rank=rank, isCompleted=True))
                ctx.session.flush()
                payout = self.payIncome(
                    ctx, userId, amount, userId,
                    level=rank,
                    remark=f"Reward for rank {rank}"
                )
                if payout is None:
                    # Capped out: no marker, the rank stays open
                    raise CapReached(userId)
        except CapReached:
            logger.debug(f"Reward: rank {rank} of user {userId} left open, capping reached")
            return None
        except IntegrityError:
            logger.debug(f"Reward: rank {rank} of user {userId} already recorded")
            return None
        except LedgerError as e:
            logger.error(f"Reward: rank {rank} of user {userId} failed: {e}")
            return None

        logger.info(f"User {userId} achieved rank {rank}")
        return payout
