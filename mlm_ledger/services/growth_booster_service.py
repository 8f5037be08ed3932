# mlm_ledger/services/growth_booster_service.py
"""
Growth booster distributor - weekly payout per team level whose
business reaches the configured threshold.
"""
from typing import Dict, List
import logging

from mlm_ledger.config.plan import IncomeSource, RANK_GROWTH_BOOSTER, RANK_GROWTH_BOOSTER_REQ_BUSINESS
from mlm_ledger.services.level_service import activeUserIds
from mlm_ledger.services.payout_service import PayoutService, PayoutContext
from mlm_ledger.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class GrowthBoosterService(PayoutService):

    source = IncomeSource.GROWTH_BOOSTER

    async def runGrowthBooster(self) -> Dict:
        period = timeMachine.currentWeek
        userIds = self.loadIds(activeUserIds)
        logger.info(f"Growth booster run for {period}: {len(userIds)} active users")
        return await self.runBatch(
            userIds,
            lambda ctx, userId: self._payLevels(ctx, userId, period),
            jobName="growth_booster"
        )

    def _payLevels(self, ctx: PayoutContext, userId: int, period: str) -> List[Dict]:
        amounts = ctx.settings.getRankLevels(RANK_GROWTH_BOOSTER)
        required = ctx.settings.getRankLevels(RANK_GROWTH_BOOSTER_REQ_BUSINESS)
        depth = min(len(amounts), len(required))
        if depth == 0:
            return []

        # Paid-out orders still count as team volume here
        levelBusiness = ctx.business.levelBusiness(userId, maxDepth=depth, excludePaidOut=False)

        payouts = []
        for index, business in enumerate(levelBusiness[:depth]):
            if business < required[index]:
                logger.debug(f"Growth booster: user {userId} level {index + 1} business {business} < {required[index]}")
                continue

            payout = self.safePayIncome(
                ctx, userId, amounts[index], userId,
                level=index + 1,
                period=period,
                remark=f"Growth booster for level {index + 1}"
            )
            if payout:
                payouts.append(payout)
        return payouts
