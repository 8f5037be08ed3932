# mlm_ledger/services/level_service.py
"""
Level income distributors over the sponsor upline:
daily level (fixed amounts, every day) and withdraw level (percent of a withdrawal).
"""
from typing import Dict, List
import logging

from models import User
from mlm_ledger.config.plan import (
    IncomeSource, PLAN_DAILY_LEVEL, PLAN_DAILY_LEVEL_REQ_DIRECT,
    PLAN_WITHDRAW_LEVEL, PLAN_WITHDRAW_LEVEL_REQ_DIRECT
)
from mlm_ledger.services.payout_service import PayoutService, PayoutContext
from mlm_ledger.utils.money import percentOf, toDecimal
from mlm_ledger.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


def activeUserIds(session) -> List[int]:
    return [
        row.userID for row in session.query(User.userID).filter_by(
            activeStatus=1,
            blockStatus=0
        ).order_by(User.userID).all()
    ]


class DailyLevelService(PayoutService):
    """Fixed daily amount per upline level, gated by active direct count."""

    source = IncomeSource.DAILY_LEVEL

    async def runDailyLevel(self) -> Dict:
        period = timeMachine.today
        userIds = self.loadIds(activeUserIds)
        logger.info(f"Daily level run for {period}: {len(userIds)} active users")
        return await self.runBatch(
            userIds,
            lambda ctx, userId: self._payUpline(ctx, userId, period),
            jobName="daily_level"
        )

    def _payUpline(self, ctx: PayoutContext, userId: int, period: str) -> List[Dict]:
        amounts = ctx.settings.getPlanLevels(PLAN_DAILY_LEVEL)
        directReq = ctx.settings.getPlanLevels(PLAN_DAILY_LEVEL_REQ_DIRECT)
        depth = min(len(amounts), len(directReq))
        if depth == 0:
            return []

        payouts = []
        upline = ctx.network.uplineOf(userId, activeOnly=True, maxDepth=depth)
        for index, sponsorId in enumerate(upline):
            required = int(directReq[index])
            directs = ctx.network.directsOf(sponsorId, activeOnly=True)
            if len(directs) < required:
                logger.debug(f"Daily level: user {sponsorId} has {len(directs)} directs, needs {required}")
                continue

            payout = self.safePayIncome(
                ctx, sponsorId, amounts[index], userId,
                level=index + 1,
                period=period,
                txUCode=userId,
                remark=f"Daily level income for level {index + 1}"
            )
            if payout:
                payouts.append(payout)
        return payouts


class WithdrawLevelService(PayoutService):
    """Percent of a withdrawn amount to the withdrawing user's active upline."""

    source = IncomeSource.WITHDRAW_LEVEL

    async def runWithdrawLevel(self, trigger: Dict) -> Dict:
        """
        trigger: {"userId", "amount", "fundTxId"} of a debited withdrawal.
        The withdrawal id keys idempotency, so a repeated event pays nothing.
        """
        userId = trigger["userId"]
        amount = toDecimal(trigger["amount"])
        fundTxId = trigger["fundTxId"]

        return await self.runBatch(
            [userId],
            lambda ctx, uid: self._payUpline(ctx, uid, amount, fundTxId),
            jobName="withdraw_level"
        )

    def _payUpline(self, ctx: PayoutContext, userId: int, amount, fundTxId) -> List[Dict]:
        if not ctx.network.isActive(userId):
            logger.debug(f"Withdraw level: user {userId} inactive, skip")
            return []

        percents = ctx.settings.getPlanLevels(PLAN_WITHDRAW_LEVEL)
        directReq = ctx.settings.getPlanLevels(PLAN_WITHDRAW_LEVEL_REQ_DIRECT)
        if not percents:
            return []

        payouts = []
        upline = ctx.network.uplineOf(userId, activeOnly=True, maxDepth=len(percents))
        for index, sponsorId in enumerate(upline):
            # Levels without a configured requirement need no directs
            required = int(directReq[index]) if index < len(directReq) else 0
            directs = ctx.network.directsOf(sponsorId, activeOnly=True)
            if len(directs) < required:
                logger.debug(f"Withdraw level: user {sponsorId} has {len(directs)} directs, needs {required}")
                continue

            payout = self.safePayIncome(
                ctx, sponsorId, percentOf(amount, percents[index]), fundTxId,
                level=index + 1,
                txUCode=userId,
                remark=f"Withdraw level {percents[index]}% for level {index + 1}"
            )
            if payout:
                payouts.append(payout)
        return payouts
