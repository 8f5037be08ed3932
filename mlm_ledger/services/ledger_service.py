# mlm_ledger/services/ledger_service.py
"""
Ledger store - per-user wallet balances with atomic, non-negative updates.

Every change is a single conditional UPDATE (column + delta >= 0), so two
writers on the same wallet row are serialized by the database and a debit
that would go negative touches no column at all.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from models import User, Wallet
from mlm_ledger.config.plan import ZERO
from mlm_ledger.errors import UnknownUser
from mlm_ledger.services.wallet_settings_service import WalletSettingsService
from mlm_ledger.utils.money import toDecimal

logger = logging.getLogger(__name__)

INSUFFICIENT_FUNDS = "insufficient_funds"
LIMIT_EXCEEDED = "limit_exceeded"


@dataclass
class BalanceChange:
    applied: bool
    newBalance: Decimal
    reason: Optional[str] = None
    previousBalance: Decimal = ZERO
    slug: Optional[str] = None

    @property
    def amount(self) -> Decimal:
        return self.newBalance - self.previousBalance


class LedgerService:
    """Wallet balances addressed by slug."""

    def __init__(self, session: Session, registry: WalletSettingsService = None):
        self.session = session
        self.registry = registry or WalletSettingsService(session)

    def getBalance(self, userId: int, slug: str) -> Decimal:
        """Balance of slug; 0 for a missing wallet or an unknown slug."""
        slot = self.registry.find(slug)
        if slot is None:
            return ZERO
        balance = self._readColumn(userId, slot.column)
        return balance if balance is not None else ZERO

    def adjustBalance(self, userId: int, slug: str, signedAmount, ceiling=None) -> BalanceChange:
        """
        Apply signed delta to one wallet column.

        Raises UnknownWalletSlug for an unregistered slug. Insufficient funds
        is reported as applied=False with the balance left unchanged. With a
        ceiling the change is also refused when the new balance would exceed it.
        """
        amount = toDecimal(signedAmount)
        slot = self.registry.resolve(slug)
        column = getattr(Wallet, slot.column)

        conditions = [Wallet.userID == userId, column + amount >= 0]
        if ceiling is not None:
            ceiling = toDecimal(ceiling)
            conditions.append(column + amount <= ceiling)

        result = self.session.execute(
            update(Wallet)
            .where(*conditions)
            .values({slot.column: column + amount})
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            current = self._readColumn(userId, slot.column)

            if current is None:
                # Кошелька нет - создаем только для неотрицательной суммы
                if amount < 0:
                    logger.warning(f"User {userId}: debit {amount} from {slug} without wallet")
                    return BalanceChange(False, ZERO, INSUFFICIENT_FUNDS, ZERO, slug)
                if ceiling is not None and amount > ceiling:
                    return BalanceChange(False, ZERO, LIMIT_EXCEEDED, ZERO, slug)
                if self._createWallet(userId, slot.column, amount):
                    return BalanceChange(True, amount, None, ZERO, slug)
                # Another writer created the row first; apply as a normal update
                return self.adjustBalance(userId, slug, amount, ceiling)

            if current + amount < 0:
                logger.warning(f"User {userId}: insufficient funds in {slug} (balance {current}, delta {amount})")
                return BalanceChange(False, current, INSUFFICIENT_FUNDS, current, slug)

            logger.debug(f"User {userId}: {slug} change {amount} exceeds limit {ceiling}")
            return BalanceChange(False, current, LIMIT_EXCEEDED, current, slug)

        newBalance = self._readColumn(userId, slot.column)
        return BalanceChange(True, newBalance, None, newBalance - amount, slug)

    def credit(self, userId: int, slug: str, amount) -> List[BalanceChange]:
        """
        Credit slug and every linked wallet of its registry entry.
        First element is the change on slug itself.
        """
        changes = []
        for slot in self.registry.fanOutChain(slug):
            changes.append(self.adjustBalance(userId, slot.slug, amount))
        return changes

    def getBalancesByType(self, userId: int, walletType: str) -> Dict:
        slots = self.registry.resolveActiveByType(walletType)
        if not slots:
            return {"balances": {}, "total": ZERO}

        columns = [getattr(Wallet, slot.column) for slot in slots]
        row = self.session.execute(
            select(*columns).where(Wallet.userID == userId)
        ).first()

        balances = {}
        for index, slot in enumerate(slots):
            value = row[index] if row is not None else None
            balances[slot.slug] = value if value is not None else ZERO

        return {"balances": balances, "total": sum(balances.values(), ZERO)}

    def _readColumn(self, userId: int, column: str) -> Optional[Decimal]:
        return self.session.execute(
            select(getattr(Wallet, column)).where(Wallet.userID == userId)
        ).scalar()

    def _createWallet(self, userId: int, column: str, amount: Decimal) -> bool:
        """Create wallet row with one column set. False if it already exists."""
        username = self.session.execute(
            select(User.username).where(User.userID == userId)
        ).first()
        if username is None:
            logger.error(f"Cannot create wallet: user {userId} not found")
            raise UnknownUser(userId)

        try:
            with self.session.begin_nested():
                self.session.add(Wallet(userID=userId, username=username[0], **{column: amount}))
        except IntegrityError:
            logger.debug(f"Wallet for user {userId} created concurrently")
            return False

        logger.debug(f"Created wallet for user {userId}")
        return True
