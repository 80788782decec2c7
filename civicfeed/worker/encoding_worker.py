"""
Video Encoding Worker
=====================
Background consumer for the encoding queue. Two-phase pipeline:
1. Phase 1: encode the LOW tier -> moderation -> video READY (watchable)
2. Phase 2: encode the HIGH tier -> master manifest (non-fatal if it fails)

Also:
- Legacy single-pass, pass-through and cloud-dispatch modes, chosen by
  what the environment can do
- Retries through the queue, bounded by max_attempts
- Orphan recovery on startup (PENDING records with no in-memory job)
- Graceful stop: in-flight jobs finish, nothing is preempted
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Set

from ..logging_config import worker_logger
from ..models.video import TiersStatus, VideoStatus
from .encoding_queue import EncodingJob, EncodingJobQueue, JobStatus, QueueListener
from .errors import TranscodeError, VideoRecordMissingError
from .transcoder import EncodeOutput, Tier, encoded_prefix


# ============================================================
# CONFIGURATION
# ============================================================

class JobPhase(Enum):
    START = "start"
    PHASE1_ENCODING = "phase1_encoding"
    PHASE1_MODERATION = "phase1_moderation"
    READY = "ready"
    PHASE2_ENCODING = "phase2_encoding"
    MANIFEST_UPDATED = "manifest_updated"
    REJECTED = "rejected"
    ERROR = "error"
    FAILED = "failed"


class EncodeMode(Enum):
    TWO_PHASE = "two_phase"
    LEGACY = "legacy"
    PASSTHROUGH = "passthrough"
    CLOUD = "cloud"


@dataclass
class EncodingWorkerConfig:
    poll_interval: float = 5.0
    stats_interval: float = 60.0
    cleanup_interval: float = 3600.0
    orphan_window_hours: float = 24
    shutdown_timeout: float = 60.0
    max_workers: int = 2
    two_phase: bool = True
    mode: str = "auto"

    @classmethod
    def from_settings(cls, settings) -> "EncodingWorkerConfig":
        return cls(
            poll_interval=settings.encoding_poll_interval,
            stats_interval=settings.encoding_stats_interval,
            cleanup_interval=settings.encoding_cleanup_interval,
            orphan_window_hours=settings.encoding_orphan_window_hours,
            shutdown_timeout=settings.encoding_shutdown_timeout,
            max_workers=settings.encoding_max_concurrent,
            two_phase=settings.encoding_two_phase,
            mode=settings.encoding_mode,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# WORKER
# ============================================================

class EncodingWorker(QueueListener):
    """Polls the queue and drives each job through the encode pipeline"""

    def __init__(
        self,
        queue: EncodingJobQueue,
        video_store,
        transcoder,
        moderation,
        blob_store,
        config: Optional[EncodingWorkerConfig] = None,
        dispatcher=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.queue = queue
        self.video_store = video_store
        self.transcoder = transcoder
        self.moderation = moderation
        self.blob_store = blob_store
        self.config = config or EncodingWorkerConfig()
        self.dispatcher = dispatcher
        self._clock = clock or _utcnow

        self.running = False
        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._threads: List[threading.Thread] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        # Phase 2 runs after the queue slot is released, so it gets its own pool
        self._phase2_executor: Optional[ThreadPoolExecutor] = None

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._in_flight: Set[str] = set()
        self._phase2_in_flight: Set[str] = set()
        self._phases: Dict[str, JobPhase] = {}

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def start(self) -> bool:
        """Recover orphans, then start the poll loop and the housekeeping timers"""
        if self.running:
            worker_logger.warning("Encoding worker already running")
            return False

        self.running = True
        self._stop_event.clear()
        mode = self.select_mode()
        worker_logger.info("Encoding worker starting", mode=mode.value, poll_interval=self.config.poll_interval)

        try:
            self.recover_orphaned_videos()
        except Exception as e:
            worker_logger.error("Orphan recovery failed", error=e)

        # One thread per queue slot: a claimed job never waits for a thread
        self._executor = ThreadPoolExecutor(max_workers=self.queue.max_concurrent, thread_name_prefix="encode-job")
        self._phase2_executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="encode-phase2",
        )
        self.queue.subscribe(self)

        self._threads = [
            threading.Thread(target=self._poll_loop, daemon=True, name="encoding-poll"),
            threading.Thread(
                target=self._periodic,
                args=(self.config.stats_interval, self.log_stats),
                daemon=True,
                name="encoding-stats",
            ),
            threading.Thread(
                target=self._periodic,
                args=(self.config.cleanup_interval, self.cleanup),
                daemon=True,
                name="encoding-cleanup",
            ),
        ]
        for thread in self._threads:
            thread.start()

        worker_logger.info("Encoding worker started")
        return True

    def stop(self) -> bool:
        """Stop polling and wait (bounded) for in-flight jobs to finish"""
        if not self.running:
            return False

        self.running = False
        self._stop_event.set()
        self._wake.set()
        self.queue.unsubscribe(self)

        for thread in self._threads:
            thread.join(timeout=self.config.poll_interval + 1)
        self._threads = []

        with self._idle:
            self._idle.wait_for(
                lambda: not self._in_flight and not self._phase2_in_flight,
                timeout=self.config.shutdown_timeout,
            )
            remaining = len(self._in_flight)
            remaining_phase2 = len(self._phase2_in_flight)

        if remaining or remaining_phase2:
            worker_logger.warning(
                "Shutdown with jobs still processing",
                pending_jobs=remaining,
                pending_phase2=remaining_phase2,
            )

        with self._lock:
            executors = (self._executor, self._phase2_executor)
            self._executor = None
            self._phase2_executor = None
        for executor in executors:
            if executor is not None:
                executor.shutdown(wait=False)

        worker_logger.info("Encoding worker stopped")
        return True

    def on_job_added(self, job: EncodingJob) -> None:
        self._wake.set()

    def _poll_loop(self):
        while not self._stop_event.is_set():
            try:
                while self.process_next_job() is not None:
                    pass
            except Exception as e:
                worker_logger.error("Poll tick failed", error=e)

            self._wake.wait(self.config.poll_interval)
            self._wake.clear()

    def _periodic(self, interval: float, task: Callable[[], object]):
        while not self._stop_event.wait(interval):
            try:
                task()
            except Exception as e:
                worker_logger.error("Periodic task failed", error=e, task=getattr(task, "__name__", str(task)))

    def log_stats(self):
        stats = self.queue.get_stats()
        with self._lock:
            in_flight = len(self._in_flight)
            phase2_in_flight = len(self._phase2_in_flight)
        worker_logger.info(
            "Video encoding queue stats",
            in_flight=in_flight,
            phase2_in_flight=phase2_in_flight,
            **stats.to_dict(),
        )

    def cleanup(self) -> int:
        cleaned = self.queue.cleanup()
        with self._lock:
            busy = self._in_flight | self._phase2_in_flight
            for job_id in list(self._phases):
                if job_id not in busy and self.queue.get_job(job_id) is None:
                    del self._phases[job_id]
        return cleaned

    # ------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------

    def recover_orphaned_videos(self) -> int:
        """
        Re-queue PENDING records left behind by a previous process.

        Only records created inside the orphan window are resumed; older
        ones are treated as abandoned.
        """
        cutoff = self._clock() - timedelta(hours=self.config.orphan_window_hours)
        recovered = 0
        for record in self.video_store.find_pending_since(cutoff):
            existing = self.queue.get_job_by_video_id(record.id)
            if existing is not None and not existing.is_terminal:
                continue
            self.queue.add_job(record.id, record.raw_blob_name)
            recovered += 1

        worker_logger.info("Orphaned video recovery finished", recovered=recovered, cutoff=cutoff.isoformat())
        return recovered

    # ------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------

    def process_next_job(self) -> Optional[EncodingJob]:
        """
        Claim one job and hand it off. Returns the job, or None when the
        queue has nothing ready. Runs inline when the worker isn't started.
        """
        if self._stop_event.is_set():
            return None

        job = self.queue.get_next_job()
        if job is None:
            return None

        with self._lock:
            self._in_flight.add(job.id)

        if self._executor is not None:
            self._executor.submit(self._run_job, job)
        else:
            self._run_job(job)
        return job

    def _run_job(self, job: EncodingJob):
        try:
            self.process_job(job)
        except Exception as e:
            # process_job handles its own failures; this only guards the pool thread
            worker_logger.error("Unhandled error in encoding job", error=e, job_id=job.id)
        finally:
            with self._idle:
                self._in_flight.discard(job.id)
                self._idle.notify_all()

    def select_mode(self) -> EncodeMode:
        if self.config.mode and self.config.mode != "auto":
            return EncodeMode(self.config.mode)
        if self.dispatcher is not None:
            return EncodeMode.CLOUD
        if not self.transcoder.is_available():
            return EncodeMode.PASSTHROUGH
        return EncodeMode.TWO_PHASE if self.config.two_phase else EncodeMode.LEGACY

    def get_phase(self, job_id: str) -> Optional[JobPhase]:
        with self._lock:
            return self._phases.get(job_id)

    def _set_phase(self, job_id: str, phase: JobPhase):
        with self._lock:
            self._phases[job_id] = phase

    # ------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------

    def process_job(self, job: EncodingJob):
        """Run one claimed job to a queue transition; never raises"""
        self._set_phase(job.id, JobPhase.START)
        started = self._clock()
        try:
            record = self.video_store.get(job.video_id)
            if record is None:
                raise VideoRecordMissingError(f"No video record for {job.video_id}")

            mode = self.select_mode()
            worker_logger.info(
                "Processing encoding job",
                job_id=job.id,
                video_id=job.video_id,
                attempt=job.attempts + 1,
                mode=mode.value,
            )

            if mode is EncodeMode.CLOUD:
                self._process_cloud(job)
            elif (
                mode is EncodeMode.TWO_PHASE
                and record.status == VideoStatus.READY
                and record.tiers_status in (TiersStatus.PARTIAL, TiersStatus.PARTIAL_FAILED)
            ):
                worker_logger.info("Phase 2 retry detected, skipping phase 1", video_id=job.video_id)
                self._set_phase(job.id, JobPhase.READY)
                self.queue.complete_job(job.id)
                self._schedule_phase2(job, [self.transcoder.existing_output(job.video_id, Tier.LOW)])
            elif mode is EncodeMode.PASSTHROUGH:
                self._process_passthrough(job)
            elif mode is EncodeMode.LEGACY:
                self._process_legacy(job)
            else:
                self._process_two_phase(job)
        except Exception as e:
            self._handle_failure(job, e)
            return

        worker_logger.info(
            "Encoding job handled",
            job_id=job.id,
            video_id=job.video_id,
            phase=self.get_phase(job.id).value,
            duration_ms=round((self._clock() - started).total_seconds() * 1000, 2),
        )

    def _process_two_phase(self, job: EncodingJob):
        phase1 = self._encode_and_moderate(job, Tier.LOW)
        if phase1 is None:
            return

        self.video_store.update_status(
            job.video_id,
            VideoStatus.READY,
            mp4_url=self.blob_store.url_for(phase1.output_location),
            hls_manifest_url=self.blob_store.url_for(phase1.manifest_location) if phase1.manifest_location else None,
            tiers_status=TiersStatus.PARTIAL,
        )
        self._set_phase(job.id, JobPhase.READY)
        self.queue.complete_job(job.id)

        self._schedule_phase2(job, [phase1])

    def _process_legacy(self, job: EncodingJob):
        output = self._encode_and_moderate(job, Tier.ALL)
        if output is None:
            return

        self.video_store.update_status(
            job.video_id,
            VideoStatus.READY,
            mp4_url=self.blob_store.url_for(output.output_location),
            hls_manifest_url=self.blob_store.url_for(output.manifest_location) if output.manifest_location else None,
            tiers_status=TiersStatus.ALL,
        )
        self._set_phase(job.id, JobPhase.MANIFEST_UPDATED)
        self.queue.complete_job(job.id)

    def _process_passthrough(self, job: EncodingJob):
        """No transcoder here: the raw upload stands in for every tier"""
        worker_logger.warning("Transcoder unavailable, using pass-through copy", video_id=job.video_id)
        self._set_phase(job.id, JobPhase.PHASE1_ENCODING)
        self.video_store.update_status(job.video_id, VideoStatus.ENCODING)

        suffix = PurePosixPath(job.input_location).suffix or ".mp4"
        destination = f"{encoded_prefix(job.video_id)}/original{suffix}"
        try:
            self.blob_store.copy(job.input_location, destination)
        except OSError as e:
            raise TranscodeError(f"Pass-through copy failed: {e}")

        if not self._moderate(job, destination):
            return

        self.video_store.update_status(
            job.video_id,
            VideoStatus.READY,
            mp4_url=self.blob_store.url_for(destination),
            tiers_status=TiersStatus.ALL,
        )
        self._set_phase(job.id, JobPhase.MANIFEST_UPDATED)
        self.queue.complete_job(job.id)

    def _process_cloud(self, job: EncodingJob):
        """Hand off and leave the job PROCESSING until complete_cloud_job is called"""
        self._set_phase(job.id, JobPhase.PHASE1_ENCODING)
        self.dispatcher.submit(job.video_id, job.input_location)
        self.video_store.update_status(job.video_id, VideoStatus.ENCODING)
        worker_logger.info("Encoding handed to cloud provider", job_id=job.id, video_id=job.video_id)

    def _encode_and_moderate(self, job: EncodingJob, tier: Tier) -> Optional[EncodeOutput]:
        """Encode, then gate on moderation. None means the content was rejected."""
        self._set_phase(job.id, JobPhase.PHASE1_ENCODING)
        self.video_store.update_status(job.video_id, VideoStatus.ENCODING)

        started = self._clock()
        output = self.transcoder.encode(job.video_id, job.input_location, tier)
        worker_logger.info(
            "Phase 1 complete, running content moderation",
            job_id=job.id,
            video_id=job.video_id,
            tier=tier.value,
            phase1_duration_ms=round((self._clock() - started).total_seconds() * 1000, 2),
        )

        if not self._moderate(job, output.output_location):
            return None
        return output

    def _moderate(self, job: EncodingJob, location: str) -> bool:
        """True when approved. A rejection is terminal for the content, not a retry."""
        self._set_phase(job.id, JobPhase.PHASE1_MODERATION)
        verdict = self.moderation.evaluate(location)
        if verdict.approved:
            return True

        reason = verdict.reason or "Rejected by content moderation"
        worker_logger.warning("Video rejected by moderation", job_id=job.id, video_id=job.video_id, reason=reason)
        self.video_store.update_status(job.video_id, VideoStatus.FAILED, failure_reason=reason)
        self._set_phase(job.id, JobPhase.REJECTED)
        self.queue.complete_job(job.id)
        return False

    def _schedule_phase2(self, job: EncodingJob, phase1_outputs: List[EncodeOutput]):
        """Phase 2 never occupies a queue slot or a phase 1 thread"""
        with self._lock:
            executor = self._phase2_executor
            if executor is not None:
                self._phase2_in_flight.add(job.id)

        if executor is None:
            self._run_phase2(job, phase1_outputs)
            return
        executor.submit(self._run_phase2_task, job, phase1_outputs)

    def _run_phase2_task(self, job: EncodingJob, phase1_outputs: List[EncodeOutput]):
        try:
            self._run_phase2(job, phase1_outputs)
        except Exception as e:
            worker_logger.error("Unhandled error in phase 2", error=e, job_id=job.id)
        finally:
            with self._idle:
                self._phase2_in_flight.discard(job.id)
                self._idle.notify_all()

    def _run_phase2(self, job: EncodingJob, phase1_outputs: List[EncodeOutput]):
        """HIGH tier plus master manifest. Failures are logged and swallowed."""
        self._set_phase(job.id, JobPhase.PHASE2_ENCODING)
        worker_logger.info("Phase 2 starting", job_id=job.id, video_id=job.video_id)
        started = self._clock()
        try:
            phase2 = self.transcoder.encode(job.video_id, job.input_location, Tier.HIGH)
            manifest = self.transcoder.write_master_manifest(job.video_id, phase1_outputs + [phase2])
            self.video_store.update_media(
                job.video_id,
                hls_manifest_url=self.blob_store.url_for(manifest),
                tiers_status=TiersStatus.ALL,
            )
        except Exception as e:
            worker_logger.warning(
                "Phase 2 failed, video remains watchable at phase 1 quality",
                job_id=job.id,
                video_id=job.video_id,
                phase2_error=str(e),
            )
            self._set_phase(job.id, JobPhase.READY)
            try:
                self.video_store.update_media(job.video_id, tiers_status=TiersStatus.PARTIAL_FAILED)
            except Exception as store_error:
                worker_logger.error("Could not record phase 2 failure", error=store_error, video_id=job.video_id)
            return

        self._set_phase(job.id, JobPhase.MANIFEST_UPDATED)
        worker_logger.info(
            "Two-phase encoding completed",
            job_id=job.id,
            video_id=job.video_id,
            phase2_duration_ms=round((self._clock() - started).total_seconds() * 1000, 2),
        )

    def _handle_failure(self, job: EncodingJob, error: Exception):
        """Translate a pipeline error into a queue transition and a record update"""
        self._set_phase(job.id, JobPhase.ERROR)
        retry = getattr(error, "retryable", True)
        worker_logger.error("Encoding job failed", error=error, job_id=job.id, video_id=job.video_id, retry=retry)

        updated = self.queue.fail_job(job.id, str(error), retry=retry)
        if updated is None:
            return

        try:
            if updated.status is JobStatus.FAILED:
                self._set_phase(job.id, JobPhase.FAILED)
                self.video_store.update_status(job.video_id, VideoStatus.FAILED, failure_reason=str(error))
            else:
                # Back to PENDING so a crash before the retry is still recoverable
                self._set_phase(job.id, JobPhase.START)
                self.video_store.update_status(job.video_id, VideoStatus.PENDING)
        except Exception as store_error:
            worker_logger.error("Could not update video record after failure", error=store_error, video_id=job.video_id)

    # ------------------------------------------------------------
    # Cloud callback
    # ------------------------------------------------------------

    def complete_cloud_job(
        self,
        video_id: str,
        success: bool,
        mp4_url: Optional[str] = None,
        hls_manifest_url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        """
        Provider callback. Updates the record and closes the open job.
        Returns False when the video record does not exist.
        """
        job = self.queue.get_job_by_video_id(video_id)
        open_job = job if job is not None and job.status is JobStatus.PROCESSING else None

        if success:
            found = self.video_store.update_status(
                video_id,
                VideoStatus.READY,
                mp4_url=mp4_url,
                hls_manifest_url=hls_manifest_url,
                tiers_status=TiersStatus.ALL,
            )
            if open_job is not None:
                self._set_phase(open_job.id, JobPhase.MANIFEST_UPDATED)
                self.queue.complete_job(open_job.id)
            worker_logger.info("Cloud encoding completed", video_id=video_id, job_id=open_job.id if open_job else None)
            return found

        message = error or "Cloud encoding failed"
        if open_job is not None:
            if self.video_store.get(video_id) is None:
                return False
            self._handle_failure(open_job, TranscodeError(message))
            return True
        return self.video_store.update_status(video_id, VideoStatus.FAILED, failure_reason=message)


# ============================================================
# FACTORY
# ============================================================

def build_encoding_worker(settings, session_factory) -> EncodingWorker:
    """Wire the queue, stores and collaborators from settings"""
    from .blob_store import LocalBlobStore
    from .cloud_dispatch import CloudEncodingDispatcher
    from .moderation import AllowAllModeration, HttpModerationService
    from .transcoder import FFmpegTranscoder
    from .video_store import SqlVideoStore

    queue = EncodingJobQueue(
        max_concurrent=settings.encoding_max_concurrent,
        max_attempts=settings.encoding_max_attempts,
        default_priority=settings.encoding_default_priority,
        retention_hours=settings.encoding_job_retention_hours,
        retry_backoff_base=settings.encoding_retry_backoff_base,
        retry_backoff_max=settings.encoding_retry_backoff_max,
        min_retry_delay=settings.encoding_poll_interval,
    )
    blob_store = LocalBlobStore(settings.blob_root, settings.media_base_url)

    if settings.moderation_url:
        moderation = HttpModerationService(settings.moderation_url, blob_store, timeout=settings.moderation_timeout)
    else:
        worker_logger.warning("No moderation endpoint configured, approving all content")
        moderation = AllowAllModeration()

    dispatcher = None
    if settings.cloud_encoding_url:
        dispatcher = CloudEncodingDispatcher(
            settings.cloud_encoding_url,
            settings.cloud_encoding_api_key,
            blob_store,
            callback_url=settings.cloud_encoding_callback_url or None,
        )

    return EncodingWorker(
        queue=queue,
        video_store=SqlVideoStore(session_factory),
        transcoder=FFmpegTranscoder(blob_store, settings.ffmpeg_path, timeout=settings.encoding_phase_timeout),
        moderation=moderation,
        blob_store=blob_store,
        config=EncodingWorkerConfig.from_settings(settings),
        dispatcher=dispatcher,
    )
