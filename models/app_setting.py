# models/app_setting.py
from sqlalchemy import Column, Integer, String, JSON
from models.base import Base, AuditMixin


class AppSetting(Base, AuditMixin):
    __tablename__ = 'app_settings'

    settingID = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String, unique=True, nullable=False)
    title = Column(String, nullable=True)
    value = Column(JSON, nullable=True)  # Число, строка или список
    status = Column(Integer, default=1)

    def __repr__(self):
        return f"<AppSetting(slug={self.slug}, value={self.value})>"
