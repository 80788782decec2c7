"""
Video Pipeline API Routes
=========================
Queue visibility for the encoding worker.
"""
from fastapi import APIRouter, Depends, Request

from ..responses import not_found, service_unavailable, success
from ..worker.encoding_worker import EncodingWorker

router = APIRouter(prefix="/api/video-pipeline", tags=["video-pipeline"])


def get_encoding_worker(request: Request) -> EncodingWorker:
    """The worker the lifespan put on app.state"""
    worker = getattr(request.app.state, "encoding_worker", None)
    if worker is None:
        service_unavailable("Encoding worker is not configured")
    return worker


@router.get("/queue/stats")
def queue_stats(worker: EncodingWorker = Depends(get_encoding_worker)):
    """Job counts by status plus whether the worker is polling."""
    data = worker.queue.get_stats().to_dict()
    data["worker_running"] = worker.running
    data["encode_mode"] = worker.select_mode().value
    return success(data)


@router.get("/jobs/{job_id}")
def get_job(job_id: str, worker: EncodingWorker = Depends(get_encoding_worker)):
    job = worker.queue.get_job(job_id)
    if job is None:
        not_found("Job", job_id)
    data = job.to_dict()
    phase = worker.get_phase(job_id)
    data["phase"] = phase.value if phase else None
    return success(data)
