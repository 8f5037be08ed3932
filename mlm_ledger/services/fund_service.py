# mlm_ledger/services/fund_service.py
"""
Fund operations called by the controller layer:
transfer, convert, withdraw, withdrawal approval, admin adjustment, top-up.

Business failures come back as {"success": False, "error": ...}; unknown
slugs or users and malformed amounts raise.

Two-leg operations (transfer, convert) run both legs in one database
transaction; a failed second leg rolls the first one back.
"""
import json
import uuid as uuidlib
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

import config
from models import User, Order, PinSetting, FundTransaction
from models.order import ORDER_ACTIVE, PAYOUT_ELIGIBLE
from models.fund_transaction import TX_PENDING, TX_APPROVED, TX_REJECTED
from mlm_ledger.config.plan import FundTxType, PayoutMethod, DEBIT, CREDIT
from mlm_ledger.errors import UnknownUser, ExternalGatewayFailure, PartialMultiStepFailure
from mlm_ledger.events.event_bus import eventBus, EventBus, MLMEvents
from mlm_ledger.gateway.payout_gateway import PayoutGateway
from mlm_ledger.services.ledger_service import LedgerService
from mlm_ledger.services.settings_service import SettingsService
from mlm_ledger.services.transaction_service import TransactionService
from mlm_ledger.services.wallet_settings_service import WalletSettingsService
from mlm_ledger.utils.money import quantize, percentOf

logger = logging.getLogger(__name__)


class FundService:
    """User and admin fund operations."""

    def __init__(self, session: Session, bus: EventBus = None, gateway: PayoutGateway = None,
                 autopool=None):
        self.session = session
        self.bus = bus or eventBus
        self.gateway = gateway or PayoutGateway()
        self.registry = WalletSettingsService(session)
        self.ledger = LedgerService(session, self.registry)
        self.transactions = TransactionService(session)
        self.settings = SettingsService(session)
        self._autopool = autopool

    # Balances

    def getBalance(self, userId: int, slug: str) -> Decimal:
        return self.ledger.getBalance(userId, slug)

    def getBalancesByType(self, userId: int, walletType: str) -> Dict:
        self._getUser(userId)
        return self.ledger.getBalancesByType(userId, walletType)

    # Transfer and convert

    async def transfer(self, fromUserId: int, toUserId: int, walletSlug: str, amount) -> Dict:
        """Move amount from one user to another; the charge is kept from the credited side."""
        amount = quantize(amount)
        if amount <= 0:
            return {"success": False, "error": "Amount must be positive"}
        if fromUserId == toUserId:
            return {"success": False, "error": "Cannot transfer to yourself"}

        sender = self._getUser(fromUserId)
        receiver = self._getUser(toUserId)
        self.registry.resolve(walletSlug)

        if sender.blockStatus or receiver.blockStatus:
            logger.warning(f"Transfer {fromUserId} -> {toUserId} refused: blocked account")
            return {"success": False, "error": "Account is blocked"}

        minimum = self.settings.getDecimal("transfer_minimum")
        if minimum > 0 and amount < minimum:
            return {"success": False, "error": f"Minimum transfer amount is {minimum}"}

        charge = percentOf(amount, self.settings.getDecimal("transfer_charge"))
        creditAmount = amount - charge

        try:
            debit = self.ledger.adjustBalance(fromUserId, walletSlug, -amount)
            if not debit.applied:
                self.session.rollback()
                logger.warning(f"Transfer {fromUserId} -> {toUserId}: insufficient {walletSlug}")
                return {"success": False, "error": "Insufficient balance"}

            credit = self.ledger.adjustBalance(toUserId, walletSlug, creditAmount)
            if not credit.applied:
                raise PartialMultiStepFailure(f"Credit of {creditAmount} to user {toUserId} not applied")

            debitTx = self.transactions.recordFund(
                uCode=fromUserId, txType=FundTxType.USER_FUND_TRANSFER.value, debitCredit=DEBIT,
                walletType=walletSlug, amount=amount, change=debit,
                txUCode=toUserId, txCharge=charge,
                remark=f"Transfer of {config.CURRENCY} {amount} to {receiver.username}"
            )
            creditTx = self.transactions.recordFund(
                uCode=toUserId, txType=FundTxType.USER_FUND_TRANSFER.value, debitCredit=CREDIT,
                walletType=walletSlug, amount=creditAmount, change=credit,
                txUCode=fromUserId,
                remark=f"Transfer of {config.CURRENCY} {creditAmount} from {sender.username}"
            )
            self.session.commit()
        except PartialMultiStepFailure as e:
            self._rollback(f"transfer {fromUserId} -> {toUserId}")
            logger.error(f"Transfer {fromUserId} -> {toUserId} reverted: {e}")
            return {"success": False, "error": "Transfer failed, no funds were moved"}
        except Exception:
            self._rollback(f"transfer {fromUserId} -> {toUserId}")
            raise

        logger.info(f"Transfer {amount} {walletSlug} from {fromUserId} to {toUserId}, charge {charge}")
        result = {
            "success": True,
            "debitTxId": debitTx.fundTxID,
            "creditTxId": creditTx.fundTxID,
            "amount": amount,
            "charge": charge,
            "credited": creditAmount,
        }
        await self.bus.emit(MLMEvents.FUND_TRANSFERRED, {"fromUserId": fromUserId, "toUserId": toUserId, **result})
        return result

    async def convert(self, userId: int, fromSlug: str, toSlug: str, amount) -> Dict:
        """Move amount between two wallets of one user, minus convert charge."""
        amount = quantize(amount)
        if amount <= 0:
            return {"success": False, "error": "Amount must be positive"}
        if fromSlug == toSlug:
            return {"success": False, "error": "Source and target wallet are the same"}

        user = self._getUser(userId)
        self.registry.resolve(fromSlug)
        self.registry.resolve(toSlug)
        if user.blockStatus:
            return {"success": False, "error": "Account is blocked"}

        charge = percentOf(amount, self.settings.getDecimal("convert_charge"))
        creditAmount = amount - charge

        try:
            debit = self.ledger.adjustBalance(userId, fromSlug, -amount)
            if not debit.applied:
                self.session.rollback()
                return {"success": False, "error": "Insufficient balance"}

            credit = self.ledger.adjustBalance(userId, toSlug, creditAmount)
            if not credit.applied:
                raise PartialMultiStepFailure(f"Credit of {creditAmount} to {toSlug} not applied")

            debitTx = self.transactions.recordFund(
                uCode=userId, txType=FundTxType.FUND_CONVERT.value, debitCredit=DEBIT,
                walletType=fromSlug, amount=amount, change=debit, txCharge=charge,
                remark=f"Convert {amount} from {fromSlug} to {toSlug}"
            )
            creditTx = self.transactions.recordFund(
                uCode=userId, txType=FundTxType.FUND_CONVERT.value, debitCredit=CREDIT,
                fromWalletType=fromSlug, walletType=toSlug, amount=creditAmount, change=credit,
                remark=f"Convert {creditAmount} from {fromSlug} to {toSlug}"
            )
            self.session.commit()
        except PartialMultiStepFailure as e:
            self._rollback(f"convert for user {userId}")
            logger.error(f"Convert for user {userId} reverted: {e}")
            return {"success": False, "error": "Conversion failed, no funds were moved"}
        except Exception:
            self._rollback(f"convert for user {userId}")
            raise

        logger.info(f"User {userId} converted {amount} {fromSlug} -> {toSlug}, charge {charge}")
        result = {
            "success": True,
            "debitTxId": debitTx.fundTxID,
            "creditTxId": creditTx.fundTxID,
            "amount": amount,
            "charge": charge,
            "credited": creditAmount,
        }
        await self.bus.emit(MLMEvents.FUND_CONVERTED, {"userId": userId, **result})
        return result

    # Withdrawal

    async def withdraw(self, userId: int, walletSlug: str, amount, account: Dict) -> Dict:
        """
        Withdraw amount (gross) from wallet. The fund entry holds the debited gross
        amount and the charge in txCharge; the payout is amount - txCharge.

        account: {"method": "manual"|"auto", "chain", "address", "token", ...}
        Manual: debit now, entry stays pending for admin approval.
        Auto: pending entry first, debit only after the gateway confirms payout.
        """
        amount = quantize(amount)
        if amount <= 0:
            return {"success": False, "error": "Amount must be positive"}

        user = self._getUser(userId)
        self.registry.resolve(walletSlug)
        if user.blockStatus:
            return {"success": False, "error": "Account is blocked"}

        balance = self.ledger.getBalance(userId, walletSlug)
        if balance < amount:
            logger.warning(f"Withdrawal of {amount} by user {userId} refused: balance {balance}")
            return {"success": False, "error": "Insufficient wallet balance"}

        charge = percentOf(amount, self.settings.getDecimal("withdrawal_charge"))
        netAmount = amount - charge
        if netAmount <= 0:
            return {"success": False, "error": "Withdrawal amount after charge is not positive"}

        method = account.get("method", PayoutMethod.MANUAL.value)
        if method == PayoutMethod.AUTO.value:
            return await self._autoWithdraw(user, walletSlug, amount, netAmount, charge, account)
        return await self._manualWithdraw(user, walletSlug, amount, netAmount, charge, account)

    async def _manualWithdraw(self, user: User, walletSlug: str, amount: Decimal,
                              netAmount: Decimal, charge: Decimal, account: Dict) -> Dict:
        try:
            debit = self.ledger.adjustBalance(user.userID, walletSlug, -amount)
            if not debit.applied:
                self.session.rollback()
                return {"success": False, "error": "Insufficient wallet balance"}

            tx = self.transactions.recordFund(
                uCode=user.userID, txType=FundTxType.WITHDRAWAL.value, debitCredit=DEBIT,
                walletType=walletSlug, amount=amount, change=debit, txCharge=charge,
                status=TX_PENDING, method=PayoutMethod.MANUAL.value,
                account=json.dumps(account), uuid=str(uuidlib.uuid4()),
                remark=f"Withdrawal of {config.CURRENCY} {netAmount} from {walletSlug}"
            )
            self.session.commit()
        except Exception:
            self._rollback(f"withdrawal for user {user.userID}")
            raise

        logger.info(f"Manual withdrawal {tx.fundTxID}: user {user.userID} {amount} {walletSlug}, pending approval")
        event = self._withdrawalEvent(tx)
        await self.bus.emit(MLMEvents.WITHDRAWAL_REQUESTED, event)
        await self.bus.emit(MLMEvents.WITHDRAWAL_DEBITED, event)
        return {"success": True, "fundTxId": tx.fundTxID, "status": TX_PENDING,
                "amount": amount, "netAmount": netAmount, "charge": charge}

    async def _autoWithdraw(self, user: User, walletSlug: str, amount: Decimal,
                            netAmount: Decimal, charge: Decimal, account: Dict) -> Dict:
        address = account.get("address")
        if not address:
            return {"success": False, "error": "Withdrawal address not found"}

        memo = f"{user.username} withdrew {config.CURRENCY} {netAmount} from {walletSlug}"
        try:
            tx = self.transactions.recordFund(
                uCode=user.userID, txType=FundTxType.WITHDRAWAL.value, debitCredit=DEBIT,
                walletType=walletSlug, amount=amount, txCharge=charge,
                status=TX_PENDING, method=PayoutMethod.AUTO.value,
                account=json.dumps(account), uuid=str(uuidlib.uuid4()), remark=memo
            )
            self.session.commit()
        except Exception:
            self._rollback(f"withdrawal for user {user.userID}")
            raise

        await self.bus.emit(MLMEvents.WITHDRAWAL_REQUESTED, self._withdrawalEvent(tx))

        try:
            result = await self.gateway.initiateWithdrawal(
                uuid=tx.uuid,
                chain=account.get("chain", ""),
                to=address,
                token=account.get("token", ""),
                amount=netAmount,
                memo=memo
            )
        except ExternalGatewayFailure as e:
            # Outcome unknown: no debit, entry stays pending for reconciliation
            logger.warning(f"Withdrawal {tx.fundTxID} left pending, gateway outcome unknown: {e}")
            tx.response = json.dumps({"error": str(e)})
            self.session.commit()
            return {"success": False, "error": "Payout gateway unavailable, request left pending",
                    "fundTxId": tx.fundTxID, "status": TX_PENDING}

        tx.response = json.dumps(result.raw, default=str)
        if not result.success:
            logger.warning(f"Withdrawal {tx.fundTxID} refused by gateway: {result.message}")
            self.session.commit()
            return {"success": False, "error": result.message or "Payout refused",
                    "fundTxId": tx.fundTxID, "status": TX_PENDING}

        tx.txNumber = result.txHash
        try:
            debit = self.ledger.adjustBalance(user.userID, walletSlug, -amount)
            if not debit.applied:
                raise PartialMultiStepFailure(f"Debit of {amount} {walletSlug} not applied after payout")
            self.transactions.applySnapshot(tx, debit)
            tx.status = TX_APPROVED
            self.session.commit()
        except Exception as e:
            self._rollback(f"withdrawal {tx.fundTxID}")
            logger.critical(
                f"Withdrawal {tx.fundTxID} paid out (tx {result.txHash}) but debit of {amount} "
                f"{walletSlug} for user {user.userID} failed: {e}"
            )
            self._storeGatewayOutcome(tx.fundTxID, result.txHash, result.raw)
            await self.bus.emit(MLMEvents.WITHDRAWAL_RECONCILIATION_REQUIRED, {
                "fundTxId": tx.fundTxID,
                "userId": user.userID,
                "amount": amount,
                "txHash": result.txHash,
            })
            return {"success": False, "error": "Payout sent, balance update pending reconciliation",
                    "fundTxId": tx.fundTxID, "status": TX_PENDING}

        logger.info(f"Auto withdrawal {tx.fundTxID}: user {user.userID} {amount} {walletSlug}, tx {result.txHash}")
        await self.bus.emit(MLMEvents.WITHDRAWAL_DEBITED, self._withdrawalEvent(tx))
        return {"success": True, "fundTxId": tx.fundTxID, "status": TX_APPROVED, "txHash": result.txHash,
                "amount": amount, "netAmount": netAmount, "charge": charge}

    async def updateWithdrawalStatus(self, adminId: int, fundTxId: int, status: int,
                                     reason: Optional[str] = None) -> Dict:
        """Admin approves (1) or rejects (2) a pending withdrawal."""
        admin = self._getUser(adminId)
        if not admin.isAdmin:
            return {"success": False, "error": "Unauthorized access"}

        if status not in (TX_APPROVED, TX_REJECTED):
            return {"success": False, "error": "Invalid status"}
        if status == TX_REJECTED and not (reason and reason.strip()):
            return {"success": False, "error": "Reason is required for reject request"}

        tx = self.session.query(FundTransaction).filter_by(
            fundTxID=fundTxId,
            txType=FundTxType.WITHDRAWAL.value
        ).first()
        if not tx:
            return {"success": False, "error": "Transaction not found"}
        if tx.status != TX_PENDING:
            return {"success": False, "error": "Transaction already processed"}

        gross = Decimal(tx.amount)
        debitedNow = False

        try:
            if status == TX_APPROVED:
                if not tx.isDebited:
                    debit = self.ledger.adjustBalance(tx.uCode, tx.walletType, -gross)
                    if not debit.applied:
                        self.session.rollback()
                        return {"success": False, "error": "Insufficient wallet balance"}
                    self.transactions.applySnapshot(tx, debit)
                    debitedNow = True
            elif tx.isDebited:
                refund = self.ledger.adjustBalance(tx.uCode, tx.walletType, gross)
                self.transactions.recordFund(
                    uCode=tx.uCode, txType=FundTxType.WITHDRAWAL_REFUND.value, debitCredit=CREDIT,
                    walletType=tx.walletType, amount=gross, change=refund, txUCode=adminId,
                    reason=reason, remark=f"Refund of rejected withdrawal {tx.fundTxID}"
                )

            tx.status = status
            if reason:
                tx.reason = reason
            self.session.commit()
        except Exception:
            self._rollback(f"withdrawal status {fundTxId}")
            raise

        logger.info(f"Withdrawal {fundTxId} set to status {status} by admin {adminId}")
        event = self._withdrawalEvent(tx)
        event["status"] = status
        await self.bus.emit(MLMEvents.WITHDRAWAL_STATUS_CHANGED, event)
        if debitedNow:
            await self.bus.emit(MLMEvents.WITHDRAWAL_DEBITED, event)
        return {"success": True, "fundTxId": fundTxId, "status": status}

    # Admin adjustment

    async def adminAdjust(self, adminId: int, userId: int, walletSlug: str, amount,
                          debitCredit: str = CREDIT, remark: str = None) -> Dict:
        """Admin credit (fund transfer) or debit (fund retrieve) of any wallet."""
        admin = self._getUser(adminId)
        if not admin.isAdmin:
            return {"success": False, "error": "Unauthorized access"}

        amount = quantize(amount)
        if amount <= 0:
            return {"success": False, "error": "Amount must be positive"}
        if debitCredit not in (DEBIT, CREDIT):
            return {"success": False, "error": "debitCredit must be DEBIT or CREDIT"}

        self._getUser(userId)
        self.registry.resolve(walletSlug)
        signed = amount if debitCredit == CREDIT else -amount

        try:
            change = self.ledger.adjustBalance(userId, walletSlug, signed)
            if not change.applied:
                self.session.rollback()
                return {"success": False, "error": "Insufficient balance"}
            tx = self.transactions.recordFund(
                uCode=userId, txType=FundTxType.DIRECT_FUND_TRANSFER.value, debitCredit=debitCredit,
                walletType=walletSlug, amount=amount, change=change, txUCode=adminId,
                isRetrieveFund=debitCredit == DEBIT,
                remark=remark or f"Admin {debitCredit.lower()} of {config.CURRENCY} {amount}"
            )
            self.session.commit()
        except Exception:
            self._rollback(f"admin adjustment for user {userId}")
            raise

        logger.info(f"Admin {adminId}: {debitCredit} {amount} {walletSlug} for user {userId}")
        result = {"success": True, "fundTxId": tx.fundTxID, "newBalance": change.newBalance}
        await self.bus.emit(MLMEvents.FUND_ADJUSTED, {"userId": userId, "adminId": adminId, **result})
        return result

    # Top-up

    async def topUp(self, actorId: int, receiverId: int, pinId: int, amount=None) -> Dict:
        """
        Buy a package for receiver, paid from actor's top-up wallet.
        First order activates the receiver and places them in the package's autopool.
        """
        actor = self._getUser(actorId)
        receiver = self._getUser(receiverId)
        if actor.blockStatus or receiver.blockStatus:
            return {"success": False, "error": "Account is blocked"}

        pin = self.session.query(PinSetting).filter_by(pinID=pinId, status=1).first()
        if not pin:
            return {"success": False, "error": "Package not found"}

        if pin.type == "range":
            if amount is None:
                return {"success": False, "error": "Amount is required for this package"}
            amount = quantize(amount)
            if amount < Decimal(pin.rateMin or 0) or (pin.rateMax is not None and amount > Decimal(pin.rateMax)):
                return {"success": False, "error": f"Amount must be between {pin.rateMin} and {pin.rateMax}"}
        else:
            amount = quantize(pin.rateMin or 0)

        if amount <= 0:
            return {"success": False, "error": "Amount must be positive"}

        fundSlug = self.settings.getApp("topup_fund_wallet")
        self.registry.resolve(fundSlug)

        previousOrders = self.session.query(func.count(Order.orderID)).filter_by(
            userID=receiverId,
            status=ORDER_ACTIVE
        ).scalar()
        txType = FundTxType.TOPUP if previousOrders == 0 else FundTxType.RETOPUP
        poolTrigger = None

        try:
            debit = self.ledger.adjustBalance(actorId, fundSlug, -amount)
            if not debit.applied:
                self.session.rollback()
                return {"success": False, "error": "Insufficient balance"}

            if receiver.activeID is None:
                lastActiveId = self.session.query(func.max(User.activeID)).scalar() or 0
                receiver.activeID = lastActiveId + 1
            receiver.activeStatus = 1

            order = Order(
                userID=receiverId,
                pinID=pin.pinID,
                activeID=receiver.activeID,
                txType=txType.value,
                bv=Decimal(pin.bv) if pin.bv is not None else amount,
                amount=amount,
                status=ORDER_ACTIVE,
                payOutStatus=PAYOUT_ELIGIBLE
            )
            self.session.add(order)

            tx = self.transactions.recordFund(
                uCode=actorId, txType=txType.value, debitCredit=DEBIT,
                walletType=fundSlug, amount=amount, change=debit, txUCode=receiverId,
                remark=f"{pin.name} {txType.value} of {config.CURRENCY} {amount} for {receiver.username}"
            )

            if txType == FundTxType.TOPUP and pin.poolType:
                node = self.autopool.placeNode(self.session, receiverId, pin.poolType)
                self.session.flush()
                poolTrigger = self.autopool.triggerFor(node)

            self.session.commit()
        except Exception:
            self._rollback(f"top-up for user {receiverId}")
            raise

        logger.info(f"Top-up {order.orderID}: {amount} {pin.slug} for user {receiverId} by {actorId} ({txType.value})")
        result = {
            "success": True,
            "orderId": order.orderID,
            "fundTxId": tx.fundTxID,
            "txType": txType.value,
            "amount": amount,
        }
        await self.bus.emit(MLMEvents.TOPUP_COMPLETED, {"userId": receiverId, "actorId": actorId, **result})
        if poolTrigger:
            await self.bus.emit(MLMEvents.POOL_REGISTERED, poolTrigger)
            result["pool"] = poolTrigger
        return result

    # Helpers

    @property
    def autopool(self):
        if self._autopool is None:
            from mlm_ledger.services.pool_service import AutopoolService
            self._autopool = AutopoolService(bus=self.bus)
        return self._autopool

    def _getUser(self, userId: int) -> User:
        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            logger.error(f"User {userId} not found")
            raise UnknownUser(userId)
        return user

    def _rollback(self, operation: str):
        try:
            self.session.rollback()
        except Exception as e:
            logger.critical(f"Rollback of {operation} failed, manual reconciliation required: {e}")
            raise

    def _storeGatewayOutcome(self, fundTxId: int, txHash: Optional[str], raw: Dict):
        tx = self.session.query(FundTransaction).filter_by(fundTxID=fundTxId).first()
        if tx:
            tx.txNumber = txHash
            tx.response = json.dumps(raw, default=str)
            self.session.commit()

    @staticmethod
    def _withdrawalEvent(tx: FundTransaction) -> Dict:
        return {
            "fundTxId": tx.fundTxID,
            "userId": tx.uCode,
            "walletType": tx.walletType,
            "amount": Decimal(tx.amount),
            "netAmount": Decimal(tx.amount) - Decimal(tx.txCharge or 0),
        }
