import os
from decimal import Decimal
from dotenv import load_dotenv

# Загрузка .env
load_dotenv()

# База данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///mlm_ledger.db")

# Часовой пояс для расписания выплат
TIME_ZONE = os.getenv("TIME_ZONE", "Asia/Kolkata")

# Batch processing
WORKER_POOL_SIZE = int(os.getenv("WORKER_POOL_SIZE", "8"))
SCHEDULER_CHECK_INTERVAL = int(os.getenv("SCHEDULER_CHECK_INTERVAL", "30"))
# A running job older than this (seconds) is treated as crashed and may be reclaimed
JOB_STALE_AFTER = int(os.getenv("JOB_STALE_AFTER", "7200"))

# Payout gateway (auto withdrawals)
PAYOUT_GATEWAY_URL = os.getenv("PAYOUT_GATEWAY_URL", "https://api.ctpeway.com/api/withdraw")
PAYOUT_GATEWAY_API_KEY = os.getenv("PAYOUT_GATEWAY_API_KEY", "")
PAYOUT_GATEWAY_TIMEOUT = int(os.getenv("PAYOUT_GATEWAY_TIMEOUT", "30"))

# Прочие настройки
CURRENCY = os.getenv("CURRENCY", "USD")
UNLIMITED_CAP = Decimal(os.getenv("UNLIMITED_CAP", "999999999999"))

# Default wallet registry, seeded on first start.
# slug: (name, column, type, linked wallet)
DEFAULT_WALLET_SETTINGS = {
    "main_wallet": ("Main Wallet", "c1", "wallet", None),
    "fund_wallet": ("Fund Wallet", "c2", "wallet", None),
    "capping": ("Capping Usage", "c3", "plain", None),
    "roi": ("ROI Income", "c4", "income", "main_wallet"),
    "level_roi": ("Level ROI Income", "c5", "income", "main_wallet"),
    "daily_level": ("Daily Level Income", "c6", "income", "main_wallet"),
    "reward": ("Reward Income", "c7", "income", "main_wallet"),
    "growth_booster": ("Growth Booster Income", "c8", "income", "main_wallet"),
    "autopool": ("Autopool Income", "c9", "income", "main_wallet"),
    "withdraw_level": ("Withdraw Level Income", "c10", "income", "main_wallet"),
}

# Payout schedule: job name -> (hour, minute, weekday or None)
# weekday follows datetime.weekday(): Monday == 0, Sunday == 6
PAYOUT_SCHEDULE = {
    "roi": (0, 1, None),
    "growth_booster": (0, 30, 6),
    "daily_level": (0, 50, None),
    "reward": (0, 55, None),
    "order_payout_status": (23, 0, None),
    "user_status": (23, 45, None),
}
