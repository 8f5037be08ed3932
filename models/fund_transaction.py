# models/fund_transaction.py
"""
FundTransaction model - transfers, conversions, top-ups, withdrawals and admin adjustments.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey, Boolean, Text
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin

TX_PENDING = 0
TX_APPROVED = 1
TX_REJECTED = 2


class FundTransaction(Base, AuditMixin):
    __tablename__ = 'fund_transactions'

    # Primary key
    fundTxID = Column(Integer, primary_key=True, autoincrement=True)

    # Owner of the entry and counterparty
    uCode = Column(Integer, ForeignKey('users.userID'), nullable=False)
    txUCode = Column(Integer, ForeignKey('users.userID'), nullable=True)

    txType = Column(String, nullable=False)  # user_fund_transfer, fund_convert, withdrawal, ...
    debitCredit = Column(String, nullable=False)  # DEBIT или CREDIT
    fromWalletType = Column(String, nullable=True)
    walletType = Column(String, nullable=False)

    amount = Column(DECIMAL(18, 4), nullable=False)
    txCharge = Column(DECIMAL(18, 4), default=0)

    currentWalletBalance = Column(DECIMAL(18, 4), nullable=True)
    postWalletBalance = Column(DECIMAL(18, 4), nullable=True)

    # Withdrawal / external payout fields
    method = Column(String, nullable=True)  # manual, auto
    account = Column(String, nullable=True)
    uuid = Column(String, nullable=True, unique=True)
    txNumber = Column(String, nullable=True)  # Хэш транзакции шлюза
    response = Column(Text, nullable=True)
    reason = Column(String, nullable=True)
    remark = Column(String, nullable=True)

    isRetrieveFund = Column(Boolean, default=False)
    isDebited = Column(Boolean, default=False)

    status = Column(Integer, default=TX_PENDING)  # 0 pending, 1 approved, 2 rejected

    # Relationships
    owner = relationship('User', foreign_keys=[uCode], backref='fund_transactions')
    counterparty = relationship('User', foreign_keys=[txUCode])

    @property
    def isPending(self):
        return self.status == TX_PENDING

    def __repr__(self):
        return (f"<FundTransaction(fundTxID={self.fundTxID}, uCode={self.uCode}, txType={self.txType}, "
                f"{self.debitCredit} {self.amount}, status={self.status})>")
