# mlm_ledger/services/roi_service.py
"""
ROI distributor - daily return on every payout-eligible order,
with optional level ROI to the owner's active upline.
"""
from typing import Dict, List
import logging

from models import Order, PinSetting
from models.order import ORDER_ACTIVE, PAYOUT_ELIGIBLE
from mlm_ledger.config.plan import IncomeSource, PLAN_LEVEL_ROI
from mlm_ledger.services.payout_service import PayoutService, PayoutContext
from mlm_ledger.utils.money import percentOf, toDecimal
from mlm_ledger.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class RoiService(PayoutService):
    """ROI payouts, one per order and day."""

    source = IncomeSource.ROI

    async def runROI(self) -> Dict:
        period = timeMachine.today
        orderIds = self.loadIds(lambda session: [
            row.orderID for row in session.query(Order.orderID).filter_by(
                status=ORDER_ACTIVE,
                payOutStatus=PAYOUT_ELIGIBLE
            ).order_by(Order.orderID).all()
        ])

        logger.info(f"ROI run for {period}: {len(orderIds)} eligible orders")
        return await self.runBatch(
            orderIds,
            lambda ctx, orderId: self._payOrder(ctx, orderId, period),
            jobName="roi"
        )

    def _payOrder(self, ctx: PayoutContext, orderId: int, period: str) -> List[Dict]:
        order = ctx.session.query(Order).filter_by(orderID=orderId).first()
        if not order or order.status != ORDER_ACTIVE or order.payOutStatus != PAYOUT_ELIGIBLE:
            return []

        pin = ctx.session.query(PinSetting).filter_by(pinID=order.pinID).first()
        if not pin:
            logger.error(f"ROI: package {order.pinID} of order {orderId} not found")
            return []

        if not ctx.network.isActive(order.userID):
            logger.debug(f"ROI: owner {order.userID} of order {orderId} inactive, skip")
            return []

        amount = toDecimal(order.amount or 0)
        roi = toDecimal(pin.roi or 0)
        if amount <= 0 or roi <= 0:
            return []

        payouts = []
        payout = self.safePayIncome(
            ctx, order.userID, percentOf(amount, roi), orderId,
            period=period,
            remark=f"ROI of {roi}% on order {orderId}"
        )
        if not payout:
            return payouts
        payouts.append(payout)

        if ctx.settings.isEnabled("roi_level"):
            payouts.extend(self._payLevelRoi(ctx, order, payout["amount"], period))
        return payouts

    def _payLevelRoi(self, ctx: PayoutContext, order: Order, roiAmount, period: str) -> List[Dict]:
        """level_roi[i] percent of the ROI payout to the i+1-th active sponsor."""
        levels = ctx.settings.getPlanLevels(PLAN_LEVEL_ROI)
        if not levels:
            return []

        payouts = []
        upline = ctx.network.uplineOf(order.userID, activeOnly=True, maxDepth=len(levels))
        for index, sponsorId in enumerate(upline):
            percent = levels[index]
            if percent <= 0:
                continue
            payout = self.safePayIncome(
                ctx, sponsorId, percentOf(roiAmount, percent), order.orderID,
                level=index + 1,
                period=period,
                txUCode=order.userID,
                source=IncomeSource.LEVEL_ROI,
                remark=f"Level ROI {percent}% for level {index + 1}"
            )
            if payout:
                payouts.append(payout)
        return payouts
