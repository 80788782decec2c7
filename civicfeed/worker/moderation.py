"""
Moderation gate between phase 1 and READY.

The scoring itself lives in an external service; this module only asks it
for a verdict.
"""
from dataclasses import dataclass
from typing import Optional

import requests

from ..logging_config import video_logger
from .errors import ModerationUnavailableError


@dataclass
class ModerationResult:
    approved: bool
    reason: Optional[str] = None


class ModerationService:
    def evaluate(self, media_location: str) -> ModerationResult:
        raise NotImplementedError


class AllowAllModeration(ModerationService):
    """Development stand-in when no moderation endpoint is configured"""

    def evaluate(self, media_location: str) -> ModerationResult:
        return ModerationResult(approved=True)


class HttpModerationService(ModerationService):
    """POSTs the media URL to the moderation endpoint and reads back a verdict"""

    def __init__(self, url: str, blob_store, timeout: int = 30):
        self.url = url
        self.blob_store = blob_store
        self.timeout = timeout

    def evaluate(self, media_location: str) -> ModerationResult:
        try:
            response = requests.post(
                self.url,
                json={"media_url": self.blob_store.url_for(media_location), "location": media_location},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ModerationUnavailableError(f"Moderation request failed: {e}")

        if not isinstance(data, dict) or not isinstance(data.get("approved"), bool):
            raise ModerationUnavailableError(f"Malformed moderation response: {data!r}")

        reason = data.get("reason")
        result = ModerationResult(approved=data["approved"], reason=str(reason) if reason is not None else None)
        video_logger.info("Moderation verdict", location=media_location, approved=result.approved, reason=result.reason)
        return result
