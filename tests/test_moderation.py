"""
Tests for the HTTP moderation client.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from civicfeed.worker.errors import ModerationUnavailableError
from civicfeed.worker.moderation import HttpModerationService


def respond_with(payload):
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = payload
    return response


@pytest.fixture
def service(blob_store):
    return HttpModerationService("https://moderation.example/check", blob_store, timeout=5)


class TestHttpModeration:
    """Verdicts are read strictly; anything malformed counts as an outage."""

    def test_approved(self, service):
        with patch("civicfeed.worker.moderation.requests.post", return_value=respond_with({"approved": True})) as post:
            result = service.evaluate("encoded/vid-1/480p/video.mp4")

        assert result.approved is True
        assert result.reason is None
        assert post.call_args.kwargs["json"]["media_url"] == "/media/encoded/vid-1/480p/video.mp4"

    def test_rejected_with_reason(self, service):
        payload = {"approved": False, "reason": "graphic content"}
        with patch("civicfeed.worker.moderation.requests.post", return_value=respond_with(payload)):
            result = service.evaluate("encoded/vid-1/480p/video.mp4")

        assert result.approved is False
        assert result.reason == "graphic content"

    @pytest.mark.parametrize("payload", [
        {"approved": "false"},
        {"approved": 1},
        {"reason": "no verdict"},
        [{"approved": True}],
        None,
    ])
    def test_malformed_verdict_is_unavailable(self, service, payload):
        with patch("civicfeed.worker.moderation.requests.post", return_value=respond_with(payload)):
            with pytest.raises(ModerationUnavailableError):
                service.evaluate("encoded/vid-1/480p/video.mp4")

    def test_transport_error_is_unavailable(self, service):
        with patch("civicfeed.worker.moderation.requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(ModerationUnavailableError):
                service.evaluate("encoded/vid-1/480p/video.mp4")
