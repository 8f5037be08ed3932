# models/pool.py
"""
PoolNode model - autopool placement tree, independent of the sponsor tree.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint, Index, text
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class PoolNode(Base, AuditMixin):
    __tablename__ = 'pool_nodes'

    poolNodeID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False)

    poolType = Column(String, nullable=False)
    poolId = Column(String, nullable=True)

    # Tree pointer; NULL only for the first node of a pool
    parentID = Column(Integer, ForeignKey('pool_nodes.poolNodeID'), nullable=True)
    poolPosition = Column(Integer, nullable=True)  # 1..legs

    # Relationships
    user = relationship('User', backref='pool_nodes')
    parent = relationship('PoolNode', remote_side=[poolNodeID], back_populates='children')
    children = relationship('PoolNode', back_populates='parent', order_by='PoolNode.poolNodeID')

    __table_args__ = (
        UniqueConstraint('userID', 'poolType', name='uq_pool_user_type'),
        UniqueConstraint('parentID', 'poolPosition', name='uq_pool_parent_position'),
        Index('ix_pool_type_parent', 'poolType', 'parentID'),
        # One root per pool; NULL parents are not covered by uq_pool_parent_position
        Index('uq_pool_root', 'poolType', unique=True,
              sqlite_where=text('"parentID" IS NULL'),
              postgresql_where=text('"parentID" IS NULL')),
    )

    def __repr__(self):
        return f"<PoolNode(poolNodeID={self.poolNodeID}, user={self.userID}, parent={self.parentID}, pos={self.poolPosition})>"
