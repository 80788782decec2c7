"""
Cloud encoding handoff.

The provider encodes out of process and reports back through the webhook
route, which calls EncodingWorker.complete_cloud_job.
"""
from typing import Optional

import requests

from ..logging_config import video_logger
from .errors import CloudDispatchError


class CloudEncodingDispatcher:
    def __init__(
        self,
        url: str,
        api_key: str,
        blob_store,
        callback_url: Optional[str] = None,
        timeout: int = 30,
    ):
        self.url = url
        self.api_key = api_key
        self.blob_store = blob_store
        self.callback_url = callback_url
        self.timeout = timeout

    def submit(self, video_id: str, input_location: str) -> Optional[str]:
        """Hand the raw upload to the provider; returns the provider's job id if it sends one"""
        payload = {
            "video_id": video_id,
            "input_url": self.blob_store.url_for(input_location),
            "outputs": ["480p", "720p", "hls"],
        }
        if self.callback_url:
            payload["webhook"] = self.callback_url

        try:
            response = requests.post(
                self.url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise CloudDispatchError(f"Cloud encoder unreachable: {e}")

        if response.status_code >= 400:
            raise CloudDispatchError(f"Cloud encoder error {response.status_code}: {response.text[:200]}")

        try:
            provider_job_id = response.json().get("id")
        except ValueError:
            provider_job_id = None

        video_logger.info("Submitted to cloud encoder", video_id=video_id, provider_job_id=provider_job_id)
        return provider_job_id
