# tests/test_fund_service.py
from decimal import Decimal
from unittest import mock

from models import FundTransaction, Order, PoolNode
from models.fund_transaction import TX_PENDING, TX_APPROVED, TX_REJECTED
from mlm_ledger.config.plan import DEBIT, CREDIT
from mlm_ledger.errors import UnknownUser, UnknownWalletSlug, ExternalGatewayFailure
from mlm_ledger.events.event_bus import MLMEvents
from mlm_ledger.gateway.payout_gateway import GatewayResult
from mlm_ledger.services.fund_service import FundService
from mlm_ledger.services.ledger_service import BalanceChange, INSUFFICIENT_FUNDS
from mlm_ledger.services.pool_service import AutopoolService
from tests.ledger_case import LedgerTestCase

AUTO_ACCOUNT = {"method": "auto", "chain": "tron", "address": "TXa1b2c3", "token": "usdt"}
MANUAL_ACCOUNT = {"method": "manual", "address": "TXa1b2c3"}


class FakeGateway:
    """Stands in for PayoutGateway; records every call."""

    def __init__(self, result=None, error=None):
        self.result = result or GatewayResult(success=True, txHash="0xfeed", raw={"success": True})
        self.error = error
        self.calls = []

    async def initiateWithdrawal(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.result


class FundServiceTestCase(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.gateway = FakeGateway()
        self.autopool = AutopoolService(self.sessionFactory, self.bus)
        self.fund = FundService(self.session, self.bus, self.gateway, self.autopool)
        self.events = []
        for name in (MLMEvents.FUND_TRANSFERRED, MLMEvents.FUND_CONVERTED, MLMEvents.FUND_ADJUSTED,
                     MLMEvents.TOPUP_COMPLETED, MLMEvents.POOL_REGISTERED,
                     MLMEvents.WITHDRAWAL_REQUESTED, MLMEvents.WITHDRAWAL_DEBITED,
                     MLMEvents.WITHDRAWAL_STATUS_CHANGED, MLMEvents.WITHDRAWAL_RECONCILIATION_REQUIRED):
            self.bus.subscribe(name, lambda data, name=name: self.events.append((name, data)))

        self.alice = self.makeUser("alice")
        self.bob = self.makeUser("bob")
        self.admin = self.makeUser("admin", role="Admin")

    def fundTxs(self, **filters):
        self.session.expire_all()
        return self.session.query(FundTransaction).filter_by(**filters).order_by(FundTransaction.fundTxID).all()

    def eventNames(self):
        return [name for name, _ in self.events]


class TransferTest(FundServiceTestCase):

    async def test_transfer_with_charge(self):
        self.credit(self.alice, "fund_wallet", 50)
        self.settings.setApp("transfer_charge", 10)

        result = await self.fund.transfer(self.alice.userID, self.bob.userID, "fund_wallet", 50)

        self.assertTrue(result["success"])
        self.assertEqual(result["charge"], Decimal("5"))
        self.assertEqual(self.balance(self.alice, "fund_wallet"), Decimal("0"))
        self.assertEqual(self.balance(self.bob, "fund_wallet"), Decimal("45"))

        debit, credit = self.fundTxs(txType="user_fund_transfer")
        self.assertEqual((debit.uCode, debit.debitCredit, debit.amount), (self.alice.userID, DEBIT, Decimal("50")))
        self.assertEqual(debit.txCharge, Decimal("5"))
        self.assertEqual(debit.postWalletBalance, Decimal("0"))
        self.assertTrue(debit.isDebited)
        self.assertEqual((credit.uCode, credit.debitCredit, credit.amount), (self.bob.userID, CREDIT, Decimal("45")))
        self.assertEqual(credit.txUCode, self.alice.userID)
        self.assertEqual(self.eventNames(), [MLMEvents.FUND_TRANSFERRED])

    async def test_insufficient_balance(self):
        self.credit(self.alice, "fund_wallet", 10)

        result = await self.fund.transfer(self.alice.userID, self.bob.userID, "fund_wallet", 50)

        self.assertFalse(result["success"])
        self.assertEqual(self.balance(self.alice, "fund_wallet"), Decimal("10"))
        self.assertEqual(self.fundTxs(), [])
        self.assertEqual(self.events, [])

    async def test_blocked_receiver(self):
        self.credit(self.alice, "fund_wallet", 50)
        carol = self.makeUser("carol", blocked=True)

        result = await self.fund.transfer(self.alice.userID, carol.userID, "fund_wallet", 20)

        self.assertFalse(result["success"])
        self.assertEqual(self.balance(self.alice, "fund_wallet"), Decimal("50"))

    async def test_rejected_inputs(self):
        self.credit(self.alice, "fund_wallet", 50)
        self.settings.setApp("transfer_minimum", 20)

        selfTransfer = await self.fund.transfer(self.alice.userID, self.alice.userID, "fund_wallet", 30)
        belowMinimum = await self.fund.transfer(self.alice.userID, self.bob.userID, "fund_wallet", 10)
        negative = await self.fund.transfer(self.alice.userID, self.bob.userID, "fund_wallet", -5)

        self.assertFalse(selfTransfer["success"])
        self.assertFalse(belowMinimum["success"])
        self.assertFalse(negative["success"])
        self.assertEqual(self.balance(self.alice, "fund_wallet"), Decimal("50"))

    async def test_integrity_errors_raise(self):
        with self.assertRaises(UnknownWalletSlug):
            await self.fund.transfer(self.alice.userID, self.bob.userID, "gold_wallet", 5)
        with self.assertRaises(UnknownUser):
            await self.fund.transfer(self.alice.userID, 777, "fund_wallet", 5)


class ConvertTest(FundServiceTestCase):

    async def test_convert_between_wallets(self):
        self.credit(self.alice, "main_wallet", 100)
        self.settings.setApp("convert_charge", 5)

        result = await self.fund.convert(self.alice.userID, "main_wallet", "fund_wallet", 100)

        self.assertTrue(result["success"])
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("0"))
        self.assertEqual(self.balance(self.alice, "fund_wallet"), Decimal("95"))
        credit = self.fundTxs(txType="fund_convert", debitCredit=CREDIT)[0]
        self.assertEqual(credit.fromWalletType, "main_wallet")

    async def test_failed_second_leg_rolls_back_first(self):
        self.credit(self.alice, "main_wallet", 100)
        original = self.fund.ledger.adjustBalance

        def secondLegFails(userId, slug, amount, ceiling=None):
            if slug == "fund_wallet":
                return BalanceChange(False, Decimal("0"), INSUFFICIENT_FUNDS, Decimal("0"), slug)
            return original(userId, slug, amount, ceiling)

        with mock.patch.object(self.fund.ledger, "adjustBalance", side_effect=secondLegFails):
            result = await self.fund.convert(self.alice.userID, "main_wallet", "fund_wallet", 60)

        self.assertFalse(result["success"])
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("100"))
        self.assertEqual(self.fundTxs(), [])

    async def test_same_wallet_rejected(self):
        result = await self.fund.convert(self.alice.userID, "main_wallet", "main_wallet", 10)

        self.assertFalse(result["success"])


class WithdrawTest(FundServiceTestCase):

    async def test_withdrawal_above_balance_touches_nothing(self):
        self.credit(self.alice, "main_wallet", 30)

        result = await self.fund.withdraw(self.alice.userID, "main_wallet", 50, AUTO_ACCOUNT)

        self.assertFalse(result["success"])
        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(self.fundTxs(), [])
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("30"))

    async def test_manual_withdrawal_debits_and_waits(self):
        self.credit(self.alice, "main_wallet", 100)
        self.settings.setApp("withdrawal_charge", 10)

        result = await self.fund.withdraw(self.alice.userID, "main_wallet", 50, MANUAL_ACCOUNT)

        self.assertTrue(result["success"])
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("50"))
        tx = self.fundTxs(txType="withdrawal")[0]
        self.assertEqual(tx.status, TX_PENDING)
        self.assertEqual(tx.amount, Decimal("50"))
        self.assertEqual(tx.txCharge, Decimal("5"))
        self.assertTrue(tx.isDebited)
        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(self.eventNames(), [MLMEvents.WITHDRAWAL_REQUESTED, MLMEvents.WITHDRAWAL_DEBITED])
        self.assertEqual(self.events[1][1]["amount"], Decimal("50"))
        self.assertEqual(self.events[1][1]["netAmount"], Decimal("45"))

    async def test_charged_withdrawal_snapshot_matches_amount(self):
        self.credit(self.alice, "main_wallet", 100)
        self.settings.setApp("withdrawal_charge", 10)

        await self.fund.withdraw(self.alice.userID, "main_wallet", 50, MANUAL_ACCOUNT)
        await self.fund.withdraw(self.alice.userID, "main_wallet", 20, AUTO_ACCOUNT)

        manual, auto = self.fundTxs(txType="withdrawal")
        for tx in (manual, auto):
            self.assertEqual(tx.postWalletBalance - tx.currentWalletBalance, -tx.amount)
        self.assertEqual(auto.amount, Decimal("20"))
        self.assertEqual(auto.txCharge, Decimal("2"))
        self.assertEqual(self.gateway.calls[0]["amount"], Decimal("18"))
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("30"))

    async def test_auto_withdrawal_success(self):
        self.credit(self.alice, "main_wallet", 100)

        result = await self.fund.withdraw(self.alice.userID, "main_wallet", 40, AUTO_ACCOUNT)

        self.assertTrue(result["success"])
        self.assertEqual(result["txHash"], "0xfeed")
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("60"))
        tx = self.fundTxs(txType="withdrawal")[0]
        self.assertEqual(tx.status, TX_APPROVED)
        self.assertEqual(tx.txNumber, "0xfeed")
        self.assertTrue(tx.isDebited)
        self.assertEqual(len(self.gateway.calls), 1)
        self.assertEqual(self.gateway.calls[0]["to"], "TXa1b2c3")
        self.assertEqual(self.gateway.calls[0]["uuid"], tx.uuid)
        self.assertIn(MLMEvents.WITHDRAWAL_DEBITED, self.eventNames())

    async def test_gateway_failure_leaves_request_pending(self):
        self.credit(self.alice, "main_wallet", 100)
        self.fund.gateway = FakeGateway(error=ExternalGatewayFailure("timeout"))

        result = await self.fund.withdraw(self.alice.userID, "main_wallet", 40, AUTO_ACCOUNT)

        self.assertFalse(result["success"])
        self.assertEqual(result["status"], TX_PENDING)
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("100"))
        tx = self.fundTxs(txType="withdrawal")[0]
        self.assertEqual(tx.status, TX_PENDING)
        self.assertFalse(tx.isDebited)
        self.assertNotIn(MLMEvents.WITHDRAWAL_DEBITED, self.eventNames())

    async def test_gateway_refusal_leaves_request_pending(self):
        self.credit(self.alice, "main_wallet", 100)
        self.fund.gateway = FakeGateway(result=GatewayResult(success=False, message="Hot wallet empty",
                                                             raw={"success": False}))

        result = await self.fund.withdraw(self.alice.userID, "main_wallet", 40, AUTO_ACCOUNT)

        self.assertFalse(result["success"])
        self.assertEqual(result["error"], "Hot wallet empty")
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("100"))

    async def test_auto_withdrawal_needs_address(self):
        self.credit(self.alice, "main_wallet", 100)

        result = await self.fund.withdraw(self.alice.userID, "main_wallet", 40, {"method": "auto"})

        self.assertFalse(result["success"])
        self.assertEqual(self.gateway.calls, [])

    async def test_debit_failure_after_payout_requires_reconciliation(self):
        self.credit(self.alice, "main_wallet", 100)
        refused = BalanceChange(False, Decimal("0"), INSUFFICIENT_FUNDS, Decimal("0"), "main_wallet")

        with mock.patch.object(self.fund.ledger, "adjustBalance", return_value=refused):
            result = await self.fund.withdraw(self.alice.userID, "main_wallet", 40, AUTO_ACCOUNT)

        self.assertFalse(result["success"])
        self.assertIn(MLMEvents.WITHDRAWAL_RECONCILIATION_REQUIRED, self.eventNames())
        tx = self.fundTxs(txType="withdrawal")[0]
        self.assertEqual(tx.status, TX_PENDING)
        self.assertEqual(tx.txNumber, "0xfeed")


class WithdrawalStatusTest(FundServiceTestCase):

    async def manualWithdrawal(self, amount=50):
        self.credit(self.alice, "main_wallet", 100)
        result = await self.fund.withdraw(self.alice.userID, "main_wallet", amount, MANUAL_ACCOUNT)
        return result["fundTxId"]

    async def test_approve_debited_withdrawal(self):
        txId = await self.manualWithdrawal()

        result = await self.fund.updateWithdrawalStatus(self.admin.userID, txId, TX_APPROVED)

        self.assertTrue(result["success"])
        self.assertEqual(self.fundTxs(fundTxID=txId)[0].status, TX_APPROVED)
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("50"))

    async def test_reject_refunds_gross_amount(self):
        self.settings.setApp("withdrawal_charge", 10)
        txId = await self.manualWithdrawal()

        result = await self.fund.updateWithdrawalStatus(self.admin.userID, txId, TX_REJECTED, "Wrong address")

        self.assertTrue(result["success"])
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("100"))
        refund = self.fundTxs(txType="withdrawal_refund")[0]
        self.assertEqual(refund.amount, Decimal("50"))
        self.assertEqual(refund.debitCredit, CREDIT)
        self.assertEqual(self.fundTxs(fundTxID=txId)[0].reason, "Wrong address")

    async def test_reject_requires_reason(self):
        txId = await self.manualWithdrawal()

        result = await self.fund.updateWithdrawalStatus(self.admin.userID, txId, TX_REJECTED, "  ")

        self.assertFalse(result["success"])
        self.assertEqual(self.fundTxs(fundTxID=txId)[0].status, TX_PENDING)

    async def test_only_admin_and_only_pending(self):
        txId = await self.manualWithdrawal()

        notAdmin = await self.fund.updateWithdrawalStatus(self.bob.userID, txId, TX_APPROVED)
        await self.fund.updateWithdrawalStatus(self.admin.userID, txId, TX_APPROVED)
        twice = await self.fund.updateWithdrawalStatus(self.admin.userID, txId, TX_REJECTED, "late")

        self.assertFalse(notAdmin["success"])
        self.assertFalse(twice["success"])
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("50"))

    async def test_approve_pending_auto_withdrawal_debits(self):
        self.credit(self.alice, "main_wallet", 100)
        self.fund.gateway = FakeGateway(error=ExternalGatewayFailure("timeout"))
        txId = (await self.fund.withdraw(self.alice.userID, "main_wallet", 40, AUTO_ACCOUNT))["fundTxId"]
        self.events.clear()

        result = await self.fund.updateWithdrawalStatus(self.admin.userID, txId, TX_APPROVED)

        self.assertTrue(result["success"])
        self.assertEqual(self.balance(self.alice, "main_wallet"), Decimal("60"))
        self.assertTrue(self.fundTxs(fundTxID=txId)[0].isDebited)
        self.assertEqual(self.eventNames(), [MLMEvents.WITHDRAWAL_STATUS_CHANGED, MLMEvents.WITHDRAWAL_DEBITED])


class AdminAdjustTest(FundServiceTestCase):

    async def test_credit_and_retrieve(self):
        credited = await self.fund.adminAdjust(self.admin.userID, self.alice.userID, "fund_wallet", 100)
        retrieved = await self.fund.adminAdjust(self.admin.userID, self.alice.userID, "fund_wallet", 30, DEBIT)
        overdrawn = await self.fund.adminAdjust(self.admin.userID, self.alice.userID, "fund_wallet", 500, DEBIT)

        self.assertTrue(credited["success"])
        self.assertTrue(retrieved["success"])
        self.assertFalse(overdrawn["success"])
        self.assertEqual(self.balance(self.alice, "fund_wallet"), Decimal("70"))
        txs = self.fundTxs(txType="direct_fund_transfer")
        self.assertEqual([tx.isRetrieveFund for tx in txs], [False, True])

    async def test_requires_admin(self):
        result = await self.fund.adminAdjust(self.bob.userID, self.alice.userID, "fund_wallet", 100)

        self.assertFalse(result["success"])
        self.assertEqual(self.balance(self.alice, "fund_wallet"), Decimal("0"))

    def test_balances_of_unknown_user(self):
        with self.assertRaises(UnknownUser):
            self.fund.getBalancesByType(999, "wallet")


class TopUpTest(FundServiceTestCase):

    def setUp(self):
        super().setUp()
        self.newbie = self.makeUser("newbie", sponsor=self.alice, active=False)
        self.credit(self.alice, "fund_wallet", 300)

    async def test_first_topup_activates_receiver(self):
        pin = self.makePin(rateMin=100, roi=1)

        result = await self.fund.topUp(self.alice.userID, self.newbie.userID, pin.pinID)

        self.assertTrue(result["success"])
        self.assertEqual(result["txType"], "topup")
        self.assertEqual(self.balance(self.alice, "fund_wallet"), Decimal("200"))
        newbie = self.refresh(self.newbie)
        self.assertEqual(newbie.activeStatus, 1)
        self.assertEqual(newbie.activeID, 1)
        order = self.session.query(Order).filter_by(userID=newbie.userID).one()
        self.assertEqual(order.amount, Decimal("100"))
        self.assertEqual(order.bv, Decimal("100"))
        self.assertEqual(self.fundTxs(txType="topup")[0].txUCode, newbie.userID)

        again = await self.fund.topUp(self.alice.userID, self.newbie.userID, pin.pinID)

        self.assertEqual(again["txType"], "retopup")
        self.assertEqual(self.refresh(self.newbie).activeID, 1)

    async def test_range_package_amount(self):
        pin = self.makePin(slug="flex", pinType="range", rateMin=50, rateMax=250, bv=10)

        missing = await self.fund.topUp(self.alice.userID, self.newbie.userID, pin.pinID)
        tooBig = await self.fund.topUp(self.alice.userID, self.newbie.userID, pin.pinID, 260)
        ok = await self.fund.topUp(self.alice.userID, self.newbie.userID, pin.pinID, 120)

        self.assertFalse(missing["success"])
        self.assertFalse(tooBig["success"])
        self.assertTrue(ok["success"])
        order = self.session.query(Order).filter_by(orderID=ok["orderId"]).one()
        self.assertEqual(order.amount, Decimal("120"))
        self.assertEqual(order.bv, Decimal("10"))

    async def test_insufficient_fund_wallet(self):
        pin = self.makePin(rateMin=1000)

        result = await self.fund.topUp(self.alice.userID, self.newbie.userID, pin.pinID)

        self.assertFalse(result["success"])
        self.assertEqual(self.session.query(Order).count(), 0)
        self.assertEqual(self.refresh(self.newbie).activeStatus, 0)

    async def test_first_topup_registers_autopool(self):
        pin = self.makePin(rateMin=100, poolType="global")

        result = await self.fund.topUp(self.alice.userID, self.newbie.userID, pin.pinID)
        await self.fund.topUp(self.alice.userID, self.newbie.userID, pin.pinID)

        node = self.session.query(PoolNode).filter_by(userID=self.newbie.userID).one()
        self.assertIsNone(node.parentID)
        self.assertEqual(node.poolId, "global-1")
        self.assertEqual(result["pool"]["poolNodeId"], node.poolNodeID)
        registered = [data for name, data in self.events if name == MLMEvents.POOL_REGISTERED]
        self.assertEqual(len(registered), 1)
