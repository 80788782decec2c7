"""
Durable video store: the source of truth the worker reports into.

Writes are idempotent; setting the same status twice is harmless, which
lets a retried job repeat a write that already landed.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from ..models.video import Video, VideoStatus


@dataclass
class VideoRecord:
    """Detached copy of a videos row"""
    id: str
    raw_blob_name: str
    status: str
    tiers_status: Optional[str]
    mp4_url: Optional[str]
    hls_manifest_url: Optional[str]
    failure_reason: Optional[str]
    created_at: Optional[datetime]


def _to_record(video: Video) -> VideoRecord:
    return VideoRecord(
        id=video.id,
        raw_blob_name=video.raw_blob_name,
        status=video.status,
        tiers_status=video.tiers_status,
        mp4_url=video.mp4_url,
        hls_manifest_url=video.hls_manifest_url,
        failure_reason=video.failure_reason,
        created_at=video.created_at,
    )


class SqlVideoStore:
    """Short-lived session per call; safe to use from worker threads"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get(self, video_id: str) -> Optional[VideoRecord]:
        with self.session_factory() as db:
            video = db.query(Video).filter(Video.id == video_id).first()
            return _to_record(video) if video else None

    def update_status(
        self,
        video_id: str,
        status: str,
        mp4_url: Optional[str] = None,
        hls_manifest_url: Optional[str] = None,
        failure_reason: Optional[str] = None,
        tiers_status: Optional[str] = None,
    ) -> bool:
        """Returns False when the record does not exist"""
        now = datetime.now(timezone.utc)
        with self.session_factory() as db:
            video = db.query(Video).filter(Video.id == video_id).first()
            if video is None:
                return False

            video.status = status
            if mp4_url is not None:
                video.mp4_url = mp4_url
            if hls_manifest_url is not None:
                video.hls_manifest_url = hls_manifest_url
            if tiers_status is not None:
                video.tiers_status = tiers_status
            video.failure_reason = failure_reason if status == VideoStatus.FAILED else None

            if status == VideoStatus.ENCODING and video.encoding_started_at is None:
                video.encoding_started_at = now
            if status in VideoStatus.TERMINAL and video.encoding_completed_at is None:
                video.encoding_completed_at = now

            db.commit()
            return True

    def update_media(
        self,
        video_id: str,
        hls_manifest_url: Optional[str] = None,
        tiers_status: Optional[str] = None,
    ) -> bool:
        """Attach phase-2 output without touching status"""
        with self.session_factory() as db:
            video = db.query(Video).filter(Video.id == video_id).first()
            if video is None:
                return False
            if hls_manifest_url is not None:
                video.hls_manifest_url = hls_manifest_url
            if tiers_status is not None:
                video.tiers_status = tiers_status
            db.commit()
            return True

    def find_pending_since(self, cutoff: datetime) -> List[VideoRecord]:
        """PENDING records created at or after cutoff, oldest first"""
        with self.session_factory() as db:
            videos = (
                db.query(Video)
                .filter(Video.status == VideoStatus.PENDING)
                .filter(Video.created_at >= cutoff)
                .order_by(Video.created_at.asc())
                .all()
            )
            return [_to_record(video) for video in videos]
