# models/__init__.py
"""
Database models for the MLM ledger.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Network and ledger
from models.user import User
from models.wallet import Wallet, WALLET_COLUMNS
from models.wallet_setting import WalletSetting

# Packages and orders
from models.pin_setting import PinSetting
from models.order import Order

# Transactions
from models.income_transaction import IncomeTransaction
from models.fund_transaction import FundTransaction

# Plan configuration
from models.plan import PlanSetting, RankSetting
from models.app_setting import AppSetting
from models.rank import RankAchievement

# Autopool and jobs
from models.pool import PoolNode
from models.job_run import JobRun

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Network and ledger
    'User',
    'Wallet',
    'WALLET_COLUMNS',
    'WalletSetting',

    # Orders
    'PinSetting',
    'Order',

    # Transactions
    'IncomeTransaction',
    'FundTransaction',

    # Plan
    'PlanSetting',
    'RankSetting',
    'AppSetting',
    'RankAchievement',

    # Pool and jobs
    'PoolNode',
    'JobRun',
]
