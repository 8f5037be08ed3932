# models/wallet.py
"""
Wallet model - one row per user with a fixed set of numeric columns.
Slugs are mapped onto these columns through WalletSetting.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin

# c30 is a retired slot and stays unused
WALLET_COLUMNS = tuple(f"c{i}" for i in list(range(1, 30)) + list(range(31, 41)))


class Wallet(Base, AuditMixin):
    __tablename__ = 'wallets'

    walletID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('users.userID'), unique=True, nullable=False)
    username = Column(String, nullable=True)

    # Balance slots
    c1 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c2 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c3 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c4 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c5 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c6 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c7 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c8 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c9 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c10 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c11 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c12 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c13 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c14 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c15 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c16 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c17 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c18 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c19 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c20 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c21 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c22 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c23 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c24 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c25 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c26 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c27 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c28 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c29 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c31 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c32 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c33 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c34 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c35 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c36 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c37 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c38 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c39 = Column(DECIMAL(18, 4), nullable=False, default=0)
    c40 = Column(DECIMAL(18, 4), nullable=False, default=0)

    user = relationship('User', backref='wallet')

    __table_args__ = (
        CheckConstraint(" AND ".join(f"{c} >= 0" for c in WALLET_COLUMNS), name="ck_wallets_non_negative"),
    )

    def __repr__(self):
        return f"<Wallet(user={self.userID})>"
