# models/order.py
"""
Order model - one row per package purchase (top-up).
"""
from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey, Index
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin

ORDER_PENDING = 0
ORDER_ACTIVE = 1
ORDER_REJECTED = 2

PAYOUT_ELIGIBLE = 0
PAYOUT_EXCLUDED = 1


class Order(Base, AuditMixin):
    __tablename__ = 'orders'

    orderID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False)
    pinID = Column(Integer, ForeignKey('pin_settings.pinID'), nullable=False)

    activeID = Column(Integer, nullable=True)
    txType = Column(String, nullable=True)  # topup, retopup

    # Business value counts toward network volume
    bv = Column(DECIMAL(18, 4), default=0)
    amount = Column(DECIMAL(18, 4), default=0)

    status = Column(Integer, default=ORDER_ACTIVE)  # 0 pending, 1 active, 2 rejected
    payOutStatus = Column(Integer, default=PAYOUT_ELIGIBLE)  # 0 eligible, 1 excluded

    # Relationships
    user = relationship('User', backref='orders')
    pin = relationship('PinSetting')

    __table_args__ = (
        Index('ix_orders_user_status', 'userID', 'status', 'payOutStatus'),
    )

    def __repr__(self):
        return f"<Order(orderID={self.orderID}, user={self.userID}, amount={self.amount})>"
