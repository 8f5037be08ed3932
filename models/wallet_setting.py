# models/wallet_setting.py
"""
WalletSetting model - maps a wallet slug onto a physical Wallet column.
"""
from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import validates
from models.base import Base, AuditMixin
from models.wallet import WALLET_COLUMNS

WALLET_TYPES = ("income", "wallet", "plain")


class WalletSetting(Base, AuditMixin):
    __tablename__ = 'wallet_settings'

    settingID = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    column = Column(String, nullable=False)  # c1..c40
    type = Column(String, default="plain")  # income, wallet, plain
    wallet = Column(String, nullable=True)  # Связанный кошелек, получает то же начисление

    status = Column(Integer, default=1)  # Видим пользователю
    adminStatus = Column(Integer, default=1)  # Доступен для начислений

    @validates('column')
    def validate_column(self, key, value):
        if value not in WALLET_COLUMNS:
            raise ValueError(f"Invalid wallet column '{value}'")
        return value

    @validates('type')
    def validate_type(self, key, value):
        if value not in WALLET_TYPES:
            raise ValueError(f"Invalid wallet type '{value}'")
        return value

    def __repr__(self):
        return f"<WalletSetting(slug={self.slug}, column={self.column}, type={self.type})>"
