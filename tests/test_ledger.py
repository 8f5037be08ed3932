# tests/test_ledger.py
import asyncio
import unittest
from decimal import Decimal

from models import Wallet, WalletSetting
from models.plan import PlanSetting, normalize_levels
from mlm_ledger.errors import UnknownWalletSlug, UnknownUser, ValidationError
from mlm_ledger.services.ledger_service import LedgerService, INSUFFICIENT_FUNDS, LIMIT_EXCEEDED
from mlm_ledger.services.wallet_settings_service import WalletSettingsService
from mlm_ledger.utils.money import toDecimal, quantize, percentOf
from tests.ledger_case import LedgerTestCase


class AdjustBalanceTest(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.ledger = LedgerService(self.session)
        self.user = self.makeUser("alice")

    def test_overdraw_is_refused_and_balance_kept(self):
        self.credit(self.user, "main_wallet", 100)

        change = self.ledger.adjustBalance(self.user.userID, "main_wallet", -150)
        self.session.commit()

        self.assertFalse(change.applied)
        self.assertEqual(change.reason, INSUFFICIENT_FUNDS)
        self.assertEqual(change.newBalance, Decimal("100"))
        self.assertEqual(self.balance(self.user, "main_wallet"), Decimal("100"))

    def test_debit_to_exactly_zero(self):
        self.credit(self.user, "main_wallet", 40)

        change = self.ledger.adjustBalance(self.user.userID, "main_wallet", Decimal("-40"))
        self.session.commit()

        self.assertTrue(change.applied)
        self.assertEqual(change.previousBalance, Decimal("40"))
        self.assertEqual(change.newBalance, Decimal("0"))
        self.assertEqual(change.amount, Decimal("-40"))

    def test_first_credit_creates_wallet(self):
        self.assertEqual(self.session.query(Wallet).filter_by(userID=self.user.userID).count(), 0)

        change = self.ledger.adjustBalance(self.user.userID, "fund_wallet", 25)
        self.session.commit()

        self.assertTrue(change.applied)
        wallet = self.session.query(Wallet).filter_by(userID=self.user.userID).one()
        self.assertEqual(wallet.c2, Decimal("25"))
        self.assertEqual(wallet.c1, Decimal("0"))

    def test_debit_without_wallet_creates_nothing(self):
        change = self.ledger.adjustBalance(self.user.userID, "main_wallet", -1)
        self.session.commit()

        self.assertFalse(change.applied)
        self.assertEqual(change.reason, INSUFFICIENT_FUNDS)
        self.assertEqual(self.session.query(Wallet).filter_by(userID=self.user.userID).count(), 0)

    def test_unknown_slug_raises(self):
        with self.assertRaises(UnknownWalletSlug):
            self.ledger.adjustBalance(self.user.userID, "no_such_wallet", 10)

    def test_unknown_user_raises_on_wallet_creation(self):
        with self.assertRaises(UnknownUser):
            self.ledger.adjustBalance(9999, "main_wallet", 10)

    def test_malformed_amount_raises(self):
        with self.assertRaises(ValidationError):
            self.ledger.adjustBalance(self.user.userID, "main_wallet", "ten")

    def test_get_balance_is_lenient(self):
        self.assertEqual(self.ledger.getBalance(self.user.userID, "main_wallet"), Decimal("0"))
        self.assertEqual(self.ledger.getBalance(self.user.userID, "no_such_wallet"), Decimal("0"))

    def test_ceiling_refuses_change_above_limit(self):
        self.credit(self.user, "capping", 90)

        refused = self.ledger.adjustBalance(self.user.userID, "capping", 20, ceiling=100)
        applied = self.ledger.adjustBalance(self.user.userID, "capping", 10, ceiling=100)
        self.session.commit()

        self.assertFalse(refused.applied)
        self.assertEqual(refused.reason, LIMIT_EXCEEDED)
        self.assertTrue(applied.applied)
        self.assertEqual(self.balance(self.user, "capping"), Decimal("100"))

    def test_credit_fans_out_to_linked_wallet(self):
        changes = self.ledger.credit(self.user.userID, "roi", Decimal("20"))
        self.session.commit()

        self.assertEqual([c.slug for c in changes], ["roi", "main_wallet"])
        self.assertEqual(self.balance(self.user, "roi"), Decimal("20"))
        self.assertEqual(self.balance(self.user, "main_wallet"), Decimal("20"))

    def test_balances_by_type(self):
        self.credit(self.user, "roi", 5)
        self.credit(self.user, "reward", 7)

        result = self.ledger.getBalancesByType(self.user.userID, "income")

        self.assertEqual(result["balances"]["roi"], Decimal("5"))
        self.assertEqual(result["balances"]["reward"], Decimal("7"))
        self.assertEqual(result["balances"]["autopool"], Decimal("0"))
        self.assertEqual(result["total"], Decimal("12"))

    def test_balances_by_type_skips_hidden_settings(self):
        setting = self.session.query(WalletSetting).filter_by(slug="reward").one()
        setting.status = 0
        self.session.commit()

        result = self.ledger.getBalancesByType(self.user.userID, "income")

        self.assertNotIn("reward", result["balances"])


class ConcurrentAdjustTest(LedgerTestCase):
    """Writers in separate sessions and threads on one wallet row."""

    def setUp(self):
        super().setUp()
        self.user = self.makeUser("alice")
        self.userId = self.user.userID

    def adjustInOwnSession(self, amount):
        with self.sessionFactory() as session:
            change = LedgerService(session).adjustBalance(self.userId, "main_wallet", amount)
            session.commit()
            return change

    async def adjustConcurrently(self, amounts):
        return await asyncio.gather(*(asyncio.to_thread(self.adjustInOwnSession, a) for a in amounts))

    async def test_racing_debits_never_overdraw(self):
        self.credit(self.user, "main_wallet", 100)

        changes = await self.adjustConcurrently([-10] * 30)

        applied = [c for c in changes if c.applied]
        refused = [c for c in changes if not c.applied]
        self.assertEqual(len(applied), 10)
        self.assertEqual(len(refused), 20)
        self.assertTrue(all(c.reason == INSUFFICIENT_FUNDS for c in refused))
        self.assertTrue(all(c.newBalance >= 0 for c in changes))
        self.assertEqual(self.balance(self.user, "main_wallet"), Decimal("0"))

    async def test_racing_credits_lose_no_update(self):
        changes = await self.adjustConcurrently([Decimal("1.5")] * 40)

        self.assertTrue(all(c.applied for c in changes))
        self.assertEqual(self.balance(self.user, "main_wallet"), Decimal("60"))
        self.assertEqual(self.session.query(Wallet).filter_by(userID=self.userId).count(), 1)

    async def test_mixed_writers_sum_to_applied_deltas(self):
        self.credit(self.user, "main_wallet", 20)
        amounts = [Decimal("-7"), Decimal("5")] * 25

        changes = await self.adjustConcurrently(amounts)

        applied = [amount for amount, change in zip(amounts, changes) if change.applied]
        for amount, change in zip(amounts, changes):
            self.assertGreaterEqual(change.newBalance, 0)
            if change.applied:
                self.assertEqual(change.newBalance - change.previousBalance, amount)
        self.assertEqual(len([a for a in applied if a > 0]), 25)
        self.assertEqual(self.balance(self.user, "main_wallet"), Decimal("20") + sum(applied))


class WalletRegistryTest(LedgerTestCase):

    def test_seed_is_idempotent(self):
        registry = WalletSettingsService(self.session)
        self.assertEqual(registry.seedDefaults(), 0)
        self.assertEqual(self.session.query(WalletSetting).count(), 10)

    def test_new_income_type_needs_no_schema_change(self):
        self.session.add(WalletSetting(slug="matching", name="Matching Income", column="c20",
                                       type="income", wallet="main_wallet"))
        self.session.commit()
        user = self.makeUser("bob")

        LedgerService(self.session).credit(user.userID, "matching", 3)
        self.session.commit()

        self.assertEqual(self.balance(user, "matching"), Decimal("3"))
        self.assertEqual(self.balance(user, "main_wallet"), Decimal("3"))

    def test_linked_wallet_loop_terminates(self):
        self.session.add(WalletSetting(slug="loop_a", name="A", column="c21", type="plain", wallet="loop_b"))
        self.session.add(WalletSetting(slug="loop_b", name="B", column="c22", type="plain", wallet="loop_a"))
        self.session.commit()

        chain = WalletSettingsService(self.session).fanOutChain("loop_a")

        self.assertEqual([slot.slug for slot in chain], ["loop_a", "loop_b"])

    def test_invalid_column_rejected(self):
        with self.assertRaises(ValueError):
            WalletSetting(slug="bad", name="Bad", column="c30", type="income")

    def test_invalid_type_rejected(self):
        with self.assertRaises(ValueError):
            WalletSetting(slug="bad", name="Bad", column="c11", type="bonus")


class PlanValuesTest(LedgerTestCase):

    def test_levels_are_stored_as_decimals(self):
        self.settings.setPlan("daily_level", [1, "0.5", 0.25])

        self.assertEqual(self.settings.getPlanLevels("daily_level"),
                         [Decimal("1"), Decimal("0.5"), Decimal("0.25")])

    def test_invalid_level_value_rejected(self):
        with self.assertRaises(ValueError):
            self.settings.setPlan("daily_level", [1, "abc"])
        with self.assertRaises(ValueError):
            self.settings.setPlan("daily_level", [1, -2])

        self.assertEqual(self.session.query(PlanSetting).count(), 0)

    def test_normalize_rejects_non_list(self):
        with self.assertRaises(ValueError):
            normalize_levels("1,2,3")

    def test_missing_plan_is_empty(self):
        self.assertEqual(self.settings.getPlanLevels("autopool"), [])

    def test_app_setting_defaults(self):
        self.assertEqual(self.settings.getInt("autopool_legs"), 3)
        self.assertFalse(self.settings.isEnabled("roi_level"))

        self.settings.setApp("roi_level", "yes")

        self.assertTrue(self.settings.isEnabled("roi_level"))


class MoneyTest(unittest.TestCase):

    def test_to_decimal(self):
        self.assertEqual(toDecimal(0.1), Decimal("0.1"))
        self.assertEqual(toDecimal(" 5 "), Decimal("5"))
        for bad in (None, True, "x", float("nan")):
            with self.assertRaises(ValidationError):
                toDecimal(bad)

    def test_quantize_rounds_down(self):
        self.assertEqual(quantize("1.23459"), Decimal("1.2345"))
        self.assertEqual(percentOf(1000, 2), Decimal("20.0000"))
        self.assertEqual(percentOf("33.33", 10), Decimal("3.3330"))
