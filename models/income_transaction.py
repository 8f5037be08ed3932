# models/income_transaction.py
"""
IncomeTransaction model - append-only record of every commission payout.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class IncomeTransaction(Base, AuditMixin):
    __tablename__ = 'income_transactions'

    # Primary key
    incomeID = Column(Integer, primary_key=True, autoincrement=True)

    # Beneficiary and originating actor
    uCode = Column(Integer, ForeignKey('users.userID'), nullable=False)
    txUCode = Column(Integer, ForeignKey('users.userID'), nullable=True)

    walletType = Column(String, nullable=False)  # slug дохода, например 'roi'

    # Idempotency key: one payout per (beneficiary, source, sourceRef, level, period)
    source = Column(String, nullable=False)  # roi, level_roi, daily_level, reward, ...
    sourceRef = Column(String, nullable=False)  # orderID, userID, poolNodeID, fundTxID
    level = Column(Integer, nullable=False, default=0)
    period = Column(String, nullable=False, default="")  # YYYY-MM-DD, YYYY-Www или ''

    # Snapshot of the income slot around the credit
    amount = Column(DECIMAL(18, 4), nullable=False)
    currentWalletBalance = Column(DECIMAL(18, 4), nullable=False)
    postWalletBalance = Column(DECIMAL(18, 4), nullable=False)

    txType = Column(String, nullable=False)
    remark = Column(String, nullable=True)
    status = Column(Integer, default=1)

    # Relationships
    beneficiary = relationship('User', foreign_keys=[uCode], backref='incomes')
    actor = relationship('User', foreign_keys=[txUCode])

    __table_args__ = (
        UniqueConstraint('uCode', 'source', 'sourceRef', 'level', 'period', name='uq_income_payout'),
        Index('ix_income_source', 'source', 'period'),
    )

    def __repr__(self):
        return (f"<IncomeTransaction(incomeID={self.incomeID}, uCode={self.uCode}, "
                f"source={self.source}, level={self.level}, amount={self.amount})>")
