from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, func
from . import Base

class Story(Base):
    __tablename__ = 'stories'
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    media_url = Column(String, nullable=False)
    # set together from one clock reading; expires_at == created_at + TTL
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
