# mlm_ledger/__init__.py
"""
MLM ledger - wallet ledger and commission distribution engine.
"""

# Core services
from mlm_ledger.services.wallet_settings_service import WalletSettingsService, WalletSlot
from mlm_ledger.services.ledger_service import LedgerService, BalanceChange
from mlm_ledger.services.network_service import NetworkService
from mlm_ledger.services.business_service import BusinessService
from mlm_ledger.services.capping_service import CappingService
from mlm_ledger.services.transaction_service import TransactionService
from mlm_ledger.services.settings_service import SettingsService
from mlm_ledger.services.fund_service import FundService

# Distributors
from mlm_ledger.services.roi_service import RoiService
from mlm_ledger.services.level_service import DailyLevelService, WithdrawLevelService
from mlm_ledger.services.reward_service import RewardService
from mlm_ledger.services.growth_booster_service import GrowthBoosterService
from mlm_ledger.services.pool_service import AutopoolService

# Scheduling
from mlm_ledger.scheduler import PayoutScheduler, buildJobs

# Configuration
from mlm_ledger.config.plan import IncomeSource, WalletType, FundTxType, PayoutMethod

# Utilities
from mlm_ledger.utils.time_machine import timeMachine

# Events
from mlm_ledger.events.event_bus import eventBus, EventBus, MLMEvents

# Errors
from mlm_ledger.errors import (
    LedgerError, ValidationError, InsufficientFunds, UnknownWalletSlug,
    UnknownUser, CapReached, ExternalGatewayFailure, PartialMultiStepFailure
)

__all__ = [
    # Services
    'WalletSettingsService',
    'WalletSlot',
    'LedgerService',
    'BalanceChange',
    'NetworkService',
    'BusinessService',
    'CappingService',
    'TransactionService',
    'SettingsService',
    'FundService',

    # Distributors
    'RoiService',
    'DailyLevelService',
    'WithdrawLevelService',
    'RewardService',
    'GrowthBoosterService',
    'AutopoolService',

    # Scheduling
    'PayoutScheduler',
    'buildJobs',

    # Config
    'IncomeSource',
    'WalletType',
    'FundTxType',
    'PayoutMethod',

    # Utils
    'timeMachine',

    # Events
    'eventBus',
    'EventBus',
    'MLMEvents',

    # Errors
    'LedgerError',
    'ValidationError',
    'InsufficientFunds',
    'UnknownWalletSlug',
    'UnknownUser',
    'CapReached',
    'ExternalGatewayFailure',
    'PartialMultiStepFailure',
]
