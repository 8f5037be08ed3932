# mlm_ledger/services/capping_service.py
"""
Capping engine - lifetime earning ceiling per user.

totalCap = lifetime package value * capping% / 100
remaining = totalCap - usage, where usage is the balance of the 'capping' slot.
"""
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

import config
from models import User, Order
from models.order import ORDER_ACTIVE, PAYOUT_ELIGIBLE, PAYOUT_EXCLUDED
from mlm_ledger.config.plan import CAPPING_WALLET, ZERO
from mlm_ledger.errors import UnknownUser
from mlm_ledger.services.business_service import BusinessService
from mlm_ledger.services.ledger_service import LedgerService
from mlm_ledger.utils.money import toDecimal, quantize

logger = logging.getLogger(__name__)

CONSUME_ATTEMPTS = 3


class CappingService:

    def __init__(self, session: Session, ledger: LedgerService = None, business: BusinessService = None):
        self.session = session
        self.ledger = ledger or LedgerService(session)
        self.business = business or BusinessService(session)

    def totalCap(self, userId: int) -> Optional[Decimal]:
        """Lifetime cap, or None when the user has no capping."""
        row = self.session.query(User.capping).filter_by(userID=userId).first()
        if row is None:
            raise UnknownUser(userId)

        percent = toDecimal(row.capping or 0)
        if percent <= 0:
            return None
        return self.business.lifetimePackage(userId) * percent / Decimal("100")

    def remainingCap(self, userId: int) -> Decimal:
        total = self.totalCap(userId)
        if total is None:
            return config.UNLIMITED_CAP
        usage = self.ledger.getBalance(userId, CAPPING_WALLET)
        return total - usage

    def clamp(self, userId: int, amount) -> Decimal:
        """min(amount, remainingCap), never negative."""
        amount = toDecimal(amount)
        remaining = self.remainingCap(userId)
        if remaining <= 0 or amount <= 0:
            return ZERO
        return min(amount, remaining)

    def consume(self, userId: int, amount) -> Decimal:
        """
        Clamp amount to the remaining cap and book it on the capping slot.
        The booking is a ceiling-checked update, so parallel payouts cannot
        push usage past the cap. Returns the booked amount, 0 when capped out.
        """
        for _ in range(CONSUME_ATTEMPTS):
            payable = quantize(self.clamp(userId, amount))
            if payable <= 0:
                return ZERO

            total = self.totalCap(userId)
            change = self.ledger.adjustBalance(userId, CAPPING_WALLET, payable, ceiling=total)
            if change.applied:
                return payable

            logger.debug(f"User {userId}: capping moved during payout, retrying")

        return ZERO

    async def updateUserStatus(self) -> Dict:
        """Deactivate users whose cap is exhausted and exclude their orders from payouts."""
        users = self.session.query(User).filter_by(activeStatus=1, blockStatus=0).all()
        deactivated = 0

        for user in users:
            if self.totalCap(user.userID) is None:
                continue
            if self.remainingCap(user.userID) > 0:
                continue

            user.activeStatus = 0
            self.session.query(Order).filter_by(
                userID=user.userID,
                status=ORDER_ACTIVE,
                payOutStatus=PAYOUT_ELIGIBLE
            ).update({Order.payOutStatus: PAYOUT_EXCLUDED}, synchronize_session=False)
            deactivated += 1
            logger.info(f"User {user.userID} reached capping, deactivated")

        self.session.commit()
        logger.info(f"User status check: {deactivated} of {len(users)} users deactivated")
        return {"success": True, "checked": len(users), "deactivated": deactivated}

    async def updateOrderPayoutStatus(self) -> Dict:
        """
        Re-evaluate payout eligibility of orders, newest first.
        Each order uses amount * capping% of the remaining cap; once it is used up
        the older orders are excluded.
        """
        users = self.session.query(User).filter_by(activeStatus=1, blockStatus=0).all()
        excluded = 0

        for user in users:
            percent = toDecimal(user.capping or 0)
            if percent <= 0:
                continue

            orders = self.session.query(Order).filter_by(
                userID=user.userID,
                status=ORDER_ACTIVE
            ).order_by(Order.orderID.desc()).all()
            if not orders:
                continue

            remaining = self.remainingCap(user.userID)
            for order in orders:
                if remaining > 0:
                    order.payOutStatus = PAYOUT_ELIGIBLE
                    remaining -= toDecimal(order.amount or 0) * percent / Decimal("100")
                else:
                    if order.payOutStatus != PAYOUT_EXCLUDED:
                        excluded += 1
                    order.payOutStatus = PAYOUT_EXCLUDED

        self.session.commit()
        logger.info(f"Order payout status updated: {excluded} orders excluded")
        return {"success": True, "checked": len(users), "excluded": excluded}
