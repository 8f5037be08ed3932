# models/user.py
"""
User model - identity and position in the sponsor tree.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey, Index
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class User(Base, AuditMixin):
    __tablename__ = 'users'

    # Primary identification
    userID = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, unique=True, nullable=False)
    sponsorID = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)  # NULL только у корня
    name = Column(String, nullable=True)
    contactNumber = Column(String, nullable=True)

    role = Column(String, default="User")  # User, Admin

    # accountStatus
    activeStatus = Column(Integer, default=0)  # 1 - active
    blockStatus = Column(Integer, default=0)  # 1 - blocked
    activeID = Column(Integer, nullable=True)

    # Процент лимита выплат от суммы пакетов, 0 - без лимита
    capping = Column(DECIMAL(8, 2), default=0)

    # Relationships
    sponsor = relationship('User', remote_side=[userID], back_populates='downlines')
    downlines = relationship('User', back_populates='sponsor', order_by='User.userID')

    __table_args__ = (
        Index('ix_users_status', 'activeStatus', 'blockStatus'),
    )

    @property
    def isActive(self) -> bool:
        """Active and not blocked - the only users payout traversals consider."""
        return self.activeStatus == 1 and self.blockStatus == 0

    @property
    def isAdmin(self) -> bool:
        return self.role == "Admin"

    def __repr__(self):
        return f"<User(userID={self.userID}, username={self.username}, sponsor={self.sponsorID})>"
