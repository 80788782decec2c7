"""
Inbound webhooks from the cloud encoding provider.
"""
import hashlib
import hmac
import json

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ValidationError
from typing import Optional

from ..config import get_settings
from ..logging_config import api_logger
from ..responses import ApiException, bad_request, not_found, success
from ..worker.encoding_worker import EncodingWorker
from .video_pipeline import get_encoding_worker

settings = get_settings()

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "X-CivicFeed-Signature"


class EncodingCallback(BaseModel):
    video_id: str
    status: str  # completed | failed
    mp4_url: Optional[str] = None
    hls_manifest_url: Optional[str] = None
    error: Optional[str] = None


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """HMAC-SHA256 over the raw body, sent as sha256=<hex>"""
    expected = "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return bool(signature) and hmac.compare_digest(expected, signature)


@router.post("/encoding")
async def encoding_callback(request: Request, worker: EncodingWorker = Depends(get_encoding_worker)):
    """Cloud provider reports a finished (or failed) encode."""
    body = await request.body()

    if settings.cloud_encoding_api_key:
        if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), settings.cloud_encoding_api_key):
            raise ApiException(401, "Invalid webhook signature", "INVALID_SIGNATURE")

    try:
        callback = EncodingCallback(**json.loads(body or b"{}"))
    except (ValueError, TypeError, ValidationError) as e:
        bad_request(f"Invalid callback payload: {e}", "INVALID_PAYLOAD")

    if callback.status not in ("completed", "failed"):
        bad_request(f"Unknown status '{callback.status}'", "INVALID_STATUS")

    # SqlVideoStore is blocking; keep it off the event loop
    found = await run_in_threadpool(
        worker.complete_cloud_job,
        callback.video_id,
        success=callback.status == "completed",
        mp4_url=callback.mp4_url,
        hls_manifest_url=callback.hls_manifest_url,
        error=callback.error,
    )
    if not found:
        not_found("Video", callback.video_id)

    api_logger.info("Encoding callback processed", video_id=callback.video_id, status=callback.status)
    return success({"video_id": callback.video_id, "status": callback.status})
