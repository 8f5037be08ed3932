# mlm_ledger/utils/time_machine.py
"""
Time machine - system clock in the payout time zone, with virtual time for tests.
"""
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo
import logging

import config

logger = logging.getLogger(__name__)


class TimeMachine:
    """Singleton for managing system time."""

    _instance = None
    _virtualTime: Optional[datetime] = None
    _isTestMode: bool = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(config.TIME_ZONE)

    @property
    def now(self) -> datetime:
        """Get current system time (real or virtual) in the payout zone."""
        if self._isTestMode and self._virtualTime:
            return self._virtualTime
        return datetime.now(self.zone)

    @property
    def today(self) -> str:
        """Daily period key, YYYY-MM-DD."""
        return self.now.strftime('%Y-%m-%d')

    @property
    def currentWeek(self) -> str:
        """Weekly period key, ISO week YYYY-Www."""
        year, week, _ = self.now.isocalendar()
        return f"{year}-W{week:02d}"

    @property
    def isTestMode(self) -> bool:
        return self._isTestMode

    def setTime(self, newTime: datetime, adminId: Optional[int] = None):
        """Set virtual time for testing. Naive values are taken as payout-zone time."""
        if newTime.tzinfo is None:
            newTime = newTime.replace(tzinfo=self.zone)
        self._isTestMode = True
        self._virtualTime = newTime.astimezone(self.zone)
        logger.info(f"Virtual time set to {self._virtualTime} by admin {adminId}")

    def advanceTime(self, days: int = 0, hours: int = 0, minutes: int = 0):
        """Advance virtual time forward."""
        if not self._isTestMode:
            raise ValueError("Cannot advance time when not in test mode")

        self._virtualTime += timedelta(days=days, hours=hours, minutes=minutes)
        logger.info(f"Time advanced to {self._virtualTime}")

    def resetToRealTime(self):
        """Return to real time."""
        self._isTestMode = False
        self._virtualTime = None
        logger.info("Returned to real time")


# Global instance
timeMachine = TimeMachine()
