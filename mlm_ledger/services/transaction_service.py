# mlm_ledger/services/transaction_service.py
"""
Transaction recorder - income and fund entries with balance snapshots.

Entries are written from the BalanceChange the ledger actually applied,
so pre/post balances always match the wallet.
"""
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session
import logging

from models import IncomeTransaction, FundTransaction
from models.fund_transaction import TX_APPROVED
from mlm_ledger.config.plan import CREDIT
from mlm_ledger.services.ledger_service import BalanceChange

logger = logging.getLogger(__name__)


class TransactionService:

    def __init__(self, session: Session):
        self.session = session

    def incomeExists(self, uCode: int, source: str, sourceRef, level: int = 0, period: str = "") -> bool:
        return self.session.query(IncomeTransaction.incomeID).filter_by(
            uCode=uCode,
            source=source,
            sourceRef=str(sourceRef),
            level=level,
            period=period
        ).first() is not None

    def recordIncome(self, uCode: int, source: str, sourceRef, change: BalanceChange,
                     walletType: str, txUCode: Optional[int] = None, level: int = 0,
                     period: str = "", remark: str = None) -> IncomeTransaction:
        tx = IncomeTransaction(
            uCode=uCode,
            txUCode=txUCode,
            walletType=walletType,
            source=source,
            sourceRef=str(sourceRef),
            level=level,
            period=period,
            amount=change.amount,
            currentWalletBalance=change.previousBalance,
            postWalletBalance=change.newBalance,
            txType="income",
            remark=remark,
            status=1
        )
        self.session.add(tx)
        self.session.flush()
        return tx

    def recordFund(self, uCode: int, txType: str, debitCredit: str, walletType: str,
                   amount: Decimal, change: Optional[BalanceChange] = None,
                   status: int = TX_APPROVED, **fields) -> FundTransaction:
        """
        Fund entry; amount is unsigned, debitCredit gives the direction.
        Without a change (pending withdrawal) balances are left empty.
        """
        tx = FundTransaction(
            uCode=uCode,
            txType=txType,
            debitCredit=debitCredit,
            walletType=walletType,
            amount=amount,
            status=status,
            **fields
        )
        if change is not None:
            self.applySnapshot(tx, change)
        self.session.add(tx)
        self.session.flush()
        return tx

    @staticmethod
    def applySnapshot(tx: FundTransaction, change: BalanceChange):
        tx.currentWalletBalance = change.previousBalance
        tx.postWalletBalance = change.newBalance
        tx.isDebited = tx.debitCredit != CREDIT
