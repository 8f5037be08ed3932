# mlm_ledger/services/settings_service.py
"""
Plan, rank and application settings access.
"""
from decimal import Decimal
from typing import Any, List
from sqlalchemy.orm import Session
import logging

from models import AppSetting, PlanSetting, RankSetting
from mlm_ledger.config.plan import APP_SETTING_DEFAULTS
from mlm_ledger.utils.money import toDecimal

logger = logging.getLogger(__name__)


class SettingsService:

    def __init__(self, session: Session):
        self.session = session

    def getApp(self, slug: str, default: Any = None) -> Any:
        setting = self.session.query(AppSetting).filter_by(slug=slug, status=1).first()
        if setting is not None and setting.value is not None:
            return setting.value
        if default is not None:
            return default
        return APP_SETTING_DEFAULTS.get(slug)

    def getDecimal(self, slug: str) -> Decimal:
        value = self.getApp(slug)
        return toDecimal(value if value is not None else 0)

    def getInt(self, slug: str) -> int:
        return int(self.getDecimal(slug))

    def isEnabled(self, slug: str) -> bool:
        return str(self.getApp(slug, "no")).lower() in ("yes", "true", "1")

    def getPlanLevels(self, slug: str) -> List[Decimal]:
        """Per-level values of a plan; empty when missing or disabled."""
        plan = self.session.query(PlanSetting).filter_by(slug=slug, status=1).first()
        if not plan:
            logger.debug(f"Plan '{slug}' not configured")
            return []
        return plan.levels

    def getRankLevels(self, slug: str) -> List[Decimal]:
        rank = self.session.query(RankSetting).filter_by(slug=slug, status=1).first()
        if not rank:
            logger.debug(f"Rank setting '{slug}' not configured")
            return []
        return rank.levels

    def setApp(self, slug: str, value: Any):
        setting = self.session.query(AppSetting).filter_by(slug=slug).first()
        if isinstance(value, Decimal):
            value = str(value)
        if setting:
            setting.value = value
        else:
            self.session.add(AppSetting(slug=slug, value=value))
        self.session.commit()

    def setPlan(self, slug: str, values: List):
        """Store plan values; raises ValueError on a non-numeric or negative entry."""
        self._setLevels(PlanSetting, slug, values)

    def setRank(self, slug: str, values: List):
        self._setLevels(RankSetting, slug, values)

    def _setLevels(self, model, slug: str, values: List):
        setting = self.session.query(model).filter_by(slug=slug).first()
        try:
            if setting:
                setting.value = values
            else:
                self.session.add(model(slug=slug, value=values))
        except ValueError:
            self.session.rollback()
            raise
        self.session.commit()
        logger.info(f"{model.__name__} '{slug}' set to {values}")
