"""
Tests for the HTTP host: feed, video and pipeline endpoints.
"""
import asyncio
import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest

from civicfeed.models import Post, User
from civicfeed.models.video import VideoStatus
from civicfeed.routes import webhooks


@pytest.fixture
def posts(db, test_user):
    """A second author with a page of public posts."""
    author = User(username="author", display_name="Author", reputation=80)
    db.add(author)
    db.commit()
    created = [Post(author_id=author.id, content=f"post {i}", likes_count=i) for i in range(20)]
    db.add_all(created)
    db.commit()
    return created


class TestFeedEndpoints:
    """Slot-roll feed over HTTP."""

    def test_public_feed(self, client, posts):
        response = client.get("/api/feed/public?limit=10")
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert len(data["data"]["items"]) == 10
        assert data["meta"]["is_logged_in"] is False
        assert {item["pool"] for item in data["data"]["items"]} <= {"random", "trending"}

    def test_public_feed_excludes_seen_items(self, client, posts):
        seen = [post.id for post in posts[:15]]
        response = client.get("/api/feed/public", params={"limit": 10, "exclude_ids": ",".join(map(str, seen))})
        assert response.status_code == 200
        ids = [item["item"]["id"] for item in response.json()["data"]["items"]]
        assert len(ids) == 5
        assert not set(ids) & set(seen)

    def test_invalid_exclude_ids(self, client):
        response = client.get("/api/feed/public?exclude_ids=1,abc")
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_EXCLUDE_IDS"

    def test_limit_is_bounded(self, client):
        assert client.get("/api/feed/public?limit=500").status_code == 422

    def test_slot_roll_requires_auth(self, client):
        response = client.get("/api/feed/slot-roll")
        assert response.status_code == 401
        assert response.json()["ok"] is False

    def test_slot_roll_logged_in(self, client, posts, auth_headers):
        response = client.get("/api/feed/slot-roll?limit=5", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["meta"]["is_logged_in"] is True
        assert data["meta"]["total_slots"] == 5
        assert len(data["data"]["items"]) == 5


class TestVideoEndpoints:
    """Enqueueing and status."""

    def test_encode_requires_existing_record(self, client, auth_headers):
        response = client.post("/api/videos/missing/encode", headers=auth_headers)
        assert response.status_code == 404

    def test_encode_requires_auth(self, client, make_video):
        make_video("vid-1")
        assert client.post("/api/videos/vid-1/encode").status_code == 401

    def test_encode_queues_job(self, client, make_video, auth_headers, worker):
        make_video("vid-1")

        response = client.post("/api/videos/vid-1/encode", json={"priority": 3}, headers=auth_headers)

        assert response.status_code == 202
        job = response.json()["data"]
        assert job["status"] == "pending"
        assert job["priority"] == 3
        assert worker.queue.get_job(job["job_id"]) is not None

    def test_encode_is_idempotent_while_live(self, client, make_video, auth_headers):
        make_video("vid-1")
        first = client.post("/api/videos/vid-1/encode", headers=auth_headers).json()["data"]
        second = client.post("/api/videos/vid-1/encode", headers=auth_headers).json()

        assert second["data"]["job_id"] == first["job_id"]
        assert second["message"] == "Encoding already queued"

    def test_encode_other_users_video_forbidden(self, client, make_video, auth_headers, test_user):
        make_video("vid-1", user_id=test_user.id + 100)
        assert client.post("/api/videos/vid-1/encode", headers=auth_headers).status_code == 403

    def test_get_video(self, client, make_video):
        make_video("vid-1")
        response = client.get("/api/videos/vid-1")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == VideoStatus.PENDING

    def test_get_missing_video(self, client):
        assert client.get("/api/videos/nope").status_code == 404


class TestPipelineEndpoints:
    """Queue visibility and the cloud webhook."""

    def test_queue_stats(self, client, make_video, auth_headers):
        make_video("vid-1")
        client.post("/api/videos/vid-1/encode", headers=auth_headers)

        response = client.get("/api/video-pipeline/queue/stats")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["pending"] == 1
        assert data["total"] == 1
        assert data["worker_running"] is False

    def test_job_detail_includes_phase(self, client, make_video, worker):
        make_video("vid-1")
        job_id = worker.queue.add_job("vid-1", "raw/upload.mp4")
        worker.process_next_job()

        data = client.get(f"/api/video-pipeline/jobs/{job_id}").json()["data"]
        assert data["status"] == "completed"
        assert data["phase"] == "manifest_updated"

    def test_cloud_webhook_completes_job(self, client, make_video, worker, video_store):
        worker.config.mode = "cloud"
        worker.dispatcher = MagicMock()
        make_video("vid-1")
        job_id = worker.queue.add_job("vid-1", "raw/upload.mp4")
        worker.process_next_job()

        response = client.post("/api/webhooks/encoding", json={
            "video_id": "vid-1",
            "status": "completed",
            "mp4_url": "https://cdn.example/vid-1.mp4",
        })

        assert response.status_code == 200
        assert worker.queue.get_job(job_id).status.value == "completed"
        assert video_store.get("vid-1").status == VideoStatus.READY

    def test_webhook_runs_callback_off_event_loop(self, client, worker, monkeypatch):
        """The blocking store update runs in the threadpool, not on the loop."""
        seen = {}

        def complete_cloud_job(video_id, **kwargs):
            try:
                asyncio.get_running_loop()
                seen["on_loop"] = True
            except RuntimeError:
                seen["on_loop"] = False
            return True

        monkeypatch.setattr(worker, "complete_cloud_job", complete_cloud_job)

        response = client.post("/api/webhooks/encoding", json={"video_id": "vid-1", "status": "completed"})

        assert response.status_code == 200
        assert seen == {"on_loop": False}

    def test_webhook_rejects_unknown_status(self, client, make_video):
        make_video("vid-1")
        response = client.post("/api/webhooks/encoding", json={"video_id": "vid-1", "status": "weird"})
        assert response.status_code == 400

    def test_webhook_unknown_video(self, client):
        response = client.post("/api/webhooks/encoding", json={"video_id": "nope", "status": "completed"})
        assert response.status_code == 404

    def test_webhook_signature_checked(self, client, make_video, monkeypatch):
        monkeypatch.setattr(webhooks.settings, "cloud_encoding_api_key", "secret")
        make_video("vid-1")
        body = json.dumps({"video_id": "vid-1", "status": "failed", "error": "bad input"}).encode()

        unsigned = client.post("/api/webhooks/encoding", content=body, headers={"Content-Type": "application/json"})
        assert unsigned.status_code == 401

        signature = "sha256=" + hmac.new(b"secret", body, hashlib.sha256).hexdigest()
        signed = client.post(
            "/api/webhooks/encoding",
            content=body,
            headers={"Content-Type": "application/json", webhooks.SIGNATURE_HEADER: signature},
        )
        assert signed.status_code == 200


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["checks"]["database"]["status"] == "healthy"
        assert data["checks"]["encoding"]["status"] == "stopped"
        assert "process_memory_mb" in data["checks"]["system"]
