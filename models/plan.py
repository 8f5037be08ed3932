# models/plan.py
"""
Plan and rank settings - ordered per-level values.

value[i] is the configured number for level i + 1 (generation depth or rank tier).
Values are stored as decimal strings and validated when assigned.
"""
from decimal import Decimal, InvalidOperation
from typing import List

from sqlalchemy import Column, Integer, String, JSON
from sqlalchemy.orm import validates
from models.base import Base, AuditMixin


def normalize_levels(values) -> List[str]:
    """Validate a list of per-level values and return them as decimal strings"""
    if values is None:
        return []
    if isinstance(values, (str, bytes)) or not hasattr(values, '__iter__'):
        raise ValueError(f"Level values must be a list, got {type(values).__name__}")

    result = []
    for index, raw in enumerate(values):
        if isinstance(raw, bool):
            raise ValueError(f"Level {index + 1}: boolean is not a number")
        try:
            value = Decimal(str(raw).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f"Level {index + 1}: '{raw}' is not a number")
        if not value.is_finite() or value < 0:
            raise ValueError(f"Level {index + 1}: '{raw}' must be a non-negative number")
        result.append(str(value))
    return result


class _LevelValuesMixin:
    slug = Column(String, unique=True, nullable=False)
    title = Column(String, nullable=True)
    value = Column(JSON, nullable=False, default=list)
    status = Column(Integer, default=1)

    @validates('value')
    def validate_value(self, key, value):
        return normalize_levels(value)

    @property
    def levels(self) -> List[Decimal]:
        return [Decimal(v) for v in (self.value or [])]


class PlanSetting(_LevelValuesMixin, Base, AuditMixin):
    __tablename__ = 'plan_settings'

    planID = Column(Integer, primary_key=True, autoincrement=True)

    def __repr__(self):
        return f"<PlanSetting(slug={self.slug}, levels={len(self.value or [])})>"


class RankSetting(_LevelValuesMixin, Base, AuditMixin):
    __tablename__ = 'rank_settings'

    rankSettingID = Column(Integer, primary_key=True, autoincrement=True)

    def __repr__(self):
        return f"<RankSetting(slug={self.slug}, levels={len(self.value or [])})>"
