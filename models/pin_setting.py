# models/pin_setting.py
from sqlalchemy import Column, Integer, String, DECIMAL
from models.base import Base, AuditMixin


class PinSetting(Base, AuditMixin):
    __tablename__ = 'pin_settings'

    pinID = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String, nullable=False)
    name = Column(String, nullable=False)

    type = Column(String, default="fix")  # fix, range
    rateMin = Column(DECIMAL(18, 4), nullable=True)
    rateMax = Column(DECIMAL(18, 4), nullable=True)

    roi = Column(DECIMAL(8, 4), default=0)  # Процент ROI за период
    bv = Column(DECIMAL(18, 4), nullable=True)
    poolType = Column(String, nullable=True)  # Автопул, в который попадает первый заказ
    poolId = Column(String, nullable=True)

    status = Column(Integer, default=1)
