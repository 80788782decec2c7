"""
Social graph edges and likes used by the personalized feed pool.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime, timezone
from ..database import Base


class RelationshipKind:
    FOLLOW = "follow"
    FRIEND = "friend"
    SUBSCRIBE = "subscribe"
    MUTE = "mute"
    BLOCK = "block"

    ALL = (FOLLOW, FRIEND, SUBSCRIBE, MUTE, BLOCK)


class Relationship(Base):
    __tablename__ = "relationships"
    __table_args__ = (UniqueConstraint("user_id", "target_id", "kind", name="uq_relationship_edge"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    target_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String(20), nullable=False, index=True)  # follow, friend, subscribe, mute, block
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class PostLike(Base):
    __tablename__ = "post_likes"
    __table_args__ = (UniqueConstraint("user_id", "post_id", name="uq_post_like"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
