# models/rank.py
from sqlalchemy import Column, Integer, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class RankAchievement(Base, AuditMixin):
    """Permanent marker that a user reached a reward rank; never re-paid"""
    __tablename__ = 'rank_achievements'

    achievementID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False)
    rank = Column(Integer, nullable=False)  # 1-based tier
    isCompleted = Column(Boolean, default=True)

    user = relationship('User', backref='rank_achievements')

    __table_args__ = (
        UniqueConstraint('userID', 'rank', name='uq_rank_user'),
    )
