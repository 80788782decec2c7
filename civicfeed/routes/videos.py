"""
Video routes: enqueue encoding for an uploaded video and read its status.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session
from typing import Optional

from ..auth import get_required_user_id
from ..database import get_db
from ..logging_config import api_logger
from ..models.video import Video, VideoStatus
from ..responses import ApiException, not_found, success
from ..worker.encoding_worker import EncodingWorker
from .video_pipeline import get_encoding_worker

router = APIRouter(prefix="/api/videos", tags=["videos"])


class EncodeRequest(BaseModel):
    """Schema for queueing an encode."""
    priority: Optional[int] = None


@router.post("/{video_id}/encode", status_code=202)
def enqueue_encode(
    video_id: str,
    body: Optional[EncodeRequest] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_required_user_id),
    worker: EncodingWorker = Depends(get_encoding_worker),
):
    """Queue an encoding job. The video record must already exist."""
    video = db.query(Video).filter(Video.id == video_id).first()
    if not video:
        not_found("Video", video_id)
    if video.user_id is not None and video.user_id != user_id:
        raise ApiException(403, "Not the owner of this video", "FORBIDDEN")

    existing = worker.queue.get_job_by_video_id(video_id)
    if existing is not None and not existing.is_terminal:
        return success(existing.to_dict(), message="Encoding already queued")

    if video.status == VideoStatus.FAILED:
        video.status = VideoStatus.PENDING
        video.failure_reason = None
        db.commit()

    priority = body.priority if body else None
    job_id = worker.queue.add_job(video.id, video.raw_blob_name, priority)
    api_logger.info("Encoding requested", video_id=video_id, job_id=job_id, user_id=user_id)
    return success(worker.queue.get_job(job_id).to_dict(), message="Encoding queued")


@router.get("/{video_id}")
def get_video(video_id: str, db: Session = Depends(get_db)):
    """Durable record status."""
    video = db.query(Video).filter(Video.id == video_id).first()
    if not video:
        not_found("Video", video_id)
    return success(video.to_dict())
