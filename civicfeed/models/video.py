"""
Video model: the durable record an encoding job reports into.

The record must exist before a job referencing it is queued; the worker
updates it by id as phases complete.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ..database import Base


class VideoStatus:
    PENDING = "PENDING"
    ENCODING = "ENCODING"
    READY = "READY"
    FAILED = "FAILED"

    TERMINAL = (READY, FAILED)


class TiersStatus:
    NONE = "NONE"
    PARTIAL = "PARTIAL"
    PARTIAL_FAILED = "PARTIAL_FAILED"
    ALL = "ALL"


class Video(Base):
    __tablename__ = "videos"

    id = Column(String(50), primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    raw_blob_name = Column(String(500), nullable=False)  # upload location in the blob store
    status = Column(String(20), default=VideoStatus.PENDING, index=True)
    tiers_status = Column(String(20), default=TiersStatus.NONE)
    mp4_url = Column(String(1000), nullable=True)
    hls_manifest_url = Column(String(1000), nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
    encoding_started_at = Column(DateTime, nullable=True)
    encoding_completed_at = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User", back_populates="videos")

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            "video_id": self.id,
            "status": self.status,
            "tiers_status": self.tiers_status,
            "mp4_url": self.mp4_url,
            "hls_manifest_url": self.hls_manifest_url,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "encoding_started_at": self.encoding_started_at.isoformat() if self.encoding_started_at else None,
            "encoding_completed_at": self.encoding_completed_at.isoformat() if self.encoding_completed_at else None,
        }
