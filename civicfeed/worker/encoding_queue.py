"""
Video Encoding Queue

In-memory job table with priority ordering and a concurrency bound:
- Lower priority number = dequeued first, FIFO within equal priority
- At most max_concurrent jobs PROCESSING at once
- Failed jobs retry with bounded exponential backoff until max_attempts
- Terminal jobs are evicted after the retention window

Jobs are not durable. A restarted process starts empty; the worker's
orphan recovery rebuilds jobs from the video records.
"""
import heapq
import itertools
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..logging_config import queue_logger


# ============================================================
# DATA MODELS
# ============================================================

class JobStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class EncodingJob:
    """One video's trip through the encoder"""
    id: str
    video_id: str
    input_location: str
    priority: int
    created_at: datetime
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    available_at: Optional[datetime] = None  # retry backoff gate
    sequence: int = 0  # creation order, FIFO tie-break

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict:
        return {
            "job_id": self.id,
            "video_id": self.video_id,
            "input_location": self.input_location,
            "priority": self.priority,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class QueueStats:
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
            "total": self.total,
        }


class QueueListener:
    """Override the hooks you care about. Called outside the queue lock."""

    def on_job_added(self, job: EncodingJob) -> None:
        pass

    def on_job_completed(self, job: EncodingJob) -> None:
        pass

    def on_job_retry(self, job: EncodingJob) -> None:
        pass

    def on_job_failed(self, job: EncodingJob) -> None:
        pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# QUEUE
# ============================================================

class EncodingJobQueue:
    """
    Thread-safe job table.

    Every state transition happens under one lock, so a job is never seen
    in two states and the processing set never grows past max_concurrent.
    Methods hand out copies; only the queue mutates its jobs.
    """

    def __init__(
        self,
        max_concurrent: int = 2,
        max_attempts: int = 3,
        default_priority: int = 10,
        retention_hours: float = 24,
        retry_backoff_base: float = 5.0,
        retry_backoff_max: float = 300.0,
        min_retry_delay: float = 0.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.max_concurrent = max_concurrent
        self.max_attempts = max_attempts
        self.default_priority = default_priority
        self.retention = timedelta(hours=retention_hours)
        self.retry_backoff_base = retry_backoff_base
        self.retry_backoff_max = retry_backoff_max
        self.min_retry_delay = min_retry_delay
        self._clock = clock or _utcnow

        self._lock = threading.Lock()
        self._jobs: Dict[str, EncodingJob] = {}
        self._pending: List[Tuple[int, int, str]] = []  # heap of (priority, sequence, job_id)
        self._processing: Set[str] = set()
        self._sequence = itertools.count()
        self._listeners: List[QueueListener] = []

        queue_logger.info("Encoding queue initialized", max_concurrent=max_concurrent, max_attempts=max_attempts)

    # ------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------

    def subscribe(self, listener: QueueListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: QueueListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, hook: str, job: EncodingJob) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                getattr(listener, hook)(job)
            except Exception as e:
                queue_logger.error("Queue listener raised", error=e, hook=hook, job_id=job.id)

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def add_job(self, video_id: str, input_location: str, priority: Optional[int] = None) -> str:
        """Create a PENDING job and return its id"""
        priority = self.default_priority if priority is None else priority
        job_id = f"job-{video_id}-{uuid.uuid4().hex[:12]}"

        with self._lock:
            sequence = next(self._sequence)
            job = EncodingJob(
                id=job_id,
                video_id=video_id,
                input_location=input_location,
                priority=priority,
                created_at=self._clock(),
                max_attempts=self.max_attempts,
                sequence=sequence,
            )
            self._jobs[job_id] = job
            heapq.heappush(self._pending, (priority, sequence, job_id))
            queue_length = len(self._pending)
            snapshot = replace(job)

        queue_logger.info(
            "Encoding job added to queue",
            job_id=job_id,
            video_id=video_id,
            priority=priority,
            queue_length=queue_length,
        )
        self._notify("on_job_added", snapshot)
        return job_id

    def get_next_job(self) -> Optional[EncodingJob]:
        """
        Claim the highest-priority ready job, or None.

        None is the normal answer when nothing is pending, every pending job
        is still backing off, or the processing set is full.
        """
        with self._lock:
            if len(self._processing) >= self.max_concurrent:
                return None

            now = self._clock()
            deferred = []
            claimed = None
            while self._pending:
                entry = heapq.heappop(self._pending)
                job = self._jobs.get(entry[2])
                if job is None or job.status is not JobStatus.PENDING:
                    continue
                if job.available_at is not None and job.available_at > now:
                    deferred.append(entry)
                    continue
                claimed = job
                break

            for entry in deferred:
                heapq.heappush(self._pending, entry)

            if claimed is None:
                return None

            claimed.status = JobStatus.PROCESSING
            claimed.started_at = now
            claimed.available_at = None
            self._processing.add(claimed.id)
            snapshot = replace(claimed)

        queue_logger.info(
            "Job dequeued for processing",
            job_id=snapshot.id,
            video_id=snapshot.video_id,
            attempt=snapshot.attempts + 1,
        )
        return snapshot

    def complete_job(self, job_id: str) -> bool:
        """PROCESSING -> COMPLETED. Anything else is a logged no-op."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.PROCESSING:
                state = job.status.value if job else None
                job = None
            else:
                job.status = JobStatus.COMPLETED
                job.completed_at = self._clock()
                self._processing.discard(job_id)
                snapshot = replace(job)

        if job is None:
            queue_logger.warning("complete_job ignored", job_id=job_id, status=state)
            return False

        queue_logger.info("Encoding job completed", job_id=job_id, video_id=snapshot.video_id)
        self._notify("on_job_completed", snapshot)
        return True

    def fail_job(self, job_id: str, error: str, retry: bool = True) -> Optional[EncodingJob]:
        """
        Count a failed attempt.

        Re-queues as PENDING (same priority and FIFO position, after a
        backoff) while attempts remain and retry is True; otherwise the job
        becomes terminal FAILED. Returns the updated job, or None when the
        id is unknown or not PROCESSING.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.PROCESSING:
                state = job.status.value if job else None
                job = None
            else:
                now = self._clock()
                self._processing.discard(job_id)
                job.attempts += 1
                job.last_error = error

                if retry and job.attempts < job.max_attempts:
                    job.status = JobStatus.PENDING
                    job.started_at = None
                    job.available_at = now + timedelta(seconds=self._backoff(job.attempts))
                    heapq.heappush(self._pending, (job.priority, job.sequence, job.id))
                    hook = "on_job_retry"
                else:
                    job.status = JobStatus.FAILED
                    job.completed_at = now
                    hook = "on_job_failed"
                snapshot = replace(job)

        if job is None:
            queue_logger.warning("fail_job ignored", job_id=job_id, status=state)
            return None

        if hook == "on_job_retry":
            queue_logger.warning(
                "Encoding job failed, will retry",
                job_id=job_id,
                video_id=snapshot.video_id,
                attempt=snapshot.attempts,
                retry_at=snapshot.available_at,
                error=error,
            )
        else:
            queue_logger.error(
                "Encoding job permanently failed",
                job_id=job_id,
                video_id=snapshot.video_id,
                attempts=snapshot.attempts,
                error=error,
            )
        self._notify(hook, snapshot)
        return snapshot

    def _backoff(self, attempts: int) -> float:
        delay = min(self.retry_backoff_base * (2 ** (attempts - 1)), self.retry_backoff_max)
        return max(delay, self.min_retry_delay)

    # ------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[EncodingJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def get_job_by_video_id(self, video_id: str) -> Optional[EncodingJob]:
        """Newest live job for the video, else the newest terminal one"""
        with self._lock:
            matches = sorted(
                (job for job in self._jobs.values() if job.video_id == video_id),
                key=lambda job: (not job.is_terminal, job.sequence),
            )
            return replace(matches[-1]) if matches else None

    def has_available_jobs(self) -> bool:
        with self._lock:
            if len(self._processing) >= self.max_concurrent:
                return False
            now = self._clock()
            return any(
                job.status is JobStatus.PENDING and (job.available_at is None or job.available_at <= now)
                for job in self._jobs.values()
            )

    def get_stats(self) -> QueueStats:
        with self._lock:
            stats = QueueStats(total=len(self._jobs))
            for job in self._jobs.values():
                setattr(stats, job.status.value, getattr(stats, job.status.value) + 1)
            return stats

    # ------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------

    def cleanup(self) -> int:
        """Evict terminal jobs older than the retention window"""
        with self._lock:
            cutoff = self._clock() - self.retention
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.is_terminal and (job.completed_at or job.created_at) < cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]

        if stale:
            queue_logger.info("Cleaned up old encoding jobs", cleaned=len(stale))
        return len(stale)
