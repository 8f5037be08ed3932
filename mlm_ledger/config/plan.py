# mlm_ledger/config/plan.py
"""
Plan configuration constants: income sources, wallet slugs, setting slugs.
"""
from enum import Enum
from decimal import Decimal


class IncomeSource(Enum):
    ROI = "roi"
    LEVEL_ROI = "level_roi"
    DAILY_LEVEL = "daily_level"
    REWARD = "reward"
    GROWTH_BOOSTER = "growth_booster"
    AUTOPOOL = "autopool"
    WITHDRAW_LEVEL = "withdraw_level"


class WalletType(Enum):
    INCOME = "income"
    WALLET = "wallet"
    PLAIN = "plain"


class FundTxType(Enum):
    USER_FUND_TRANSFER = "user_fund_transfer"
    FUND_CONVERT = "fund_convert"
    WITHDRAWAL = "withdrawal"
    TOPUP = "topup"
    RETOPUP = "retopup"
    DIRECT_FUND_TRANSFER = "direct_fund_transfer"
    WITHDRAWAL_REFUND = "withdrawal_refund"


class PayoutMethod(Enum):
    MANUAL = "manual"
    AUTO = "auto"


DEBIT = "DEBIT"
CREDIT = "CREDIT"

# Wallet slugs the engine depends on
MAIN_WALLET = "main_wallet"
FUND_WALLET = "fund_wallet"
CAPPING_WALLET = "capping"

# Income slug credited by each distributor
INCOME_WALLET = {
    IncomeSource.ROI: "roi",
    IncomeSource.LEVEL_ROI: "level_roi",
    IncomeSource.DAILY_LEVEL: "daily_level",
    IncomeSource.REWARD: "reward",
    IncomeSource.GROWTH_BOOSTER: "growth_booster",
    IncomeSource.AUTOPOOL: "autopool",
    IncomeSource.WITHDRAW_LEVEL: "withdraw_level",
}

# AppSetting slugs and defaults
APP_SETTING_DEFAULTS = {
    "transfer_charge": Decimal("0"),  # % с переводов
    "transfer_minimum": Decimal("0"),
    "convert_charge": Decimal("0"),  # % с конвертации
    "withdrawal_charge": Decimal("0"),  # % с вывода
    "autopool_legs": 3,
    "autopool_levels": 10,
    "roi_level": "no",
    "topup_fund_wallet": FUND_WALLET,
}

# PlanSetting slugs
PLAN_DAILY_LEVEL = "daily_level"
PLAN_DAILY_LEVEL_REQ_DIRECT = "daily_level_req_direct"
PLAN_LEVEL_ROI = "level_roi"
PLAN_WITHDRAW_LEVEL = "withdraw_level"
PLAN_WITHDRAW_LEVEL_REQ_DIRECT = "withdraw_level_req_direct"
PLAN_AUTOPOOL = "autopool"
PLAN_AUTOPOOL_REQ_TEAM = "autopool_req_team"
PLAN_AUTOPOOL_REQ_DIRECT = "autopool_req_direct"

# RankSetting slugs
RANK_REWARD = "reward"
RANK_REWARD_REQ_TEAM = "reward_req_team"
RANK_GROWTH_BOOSTER = "growth_booster"
RANK_GROWTH_BOOSTER_REQ_BUSINESS = "growth_booster_req_level_business"

# Money precision
MONEY_QUANT = Decimal("0.0001")
ZERO = Decimal("0")
