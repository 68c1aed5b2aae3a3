"""Background range scans.

Scans triggered from the API run on a dedicated event loop thread so the
request that started them can return immediately. Each scan is tracked by
a ScanJob that can be polled and cancelled; whatever the scan ends with,
including unexpected exceptions, is recorded on the job.
"""
import asyncio
import logging
import threading
import time
import uuid
from functools import partial

from mcscan.async_scanner import ScanStats, start_range_scan, validate_scan_request
from mcscan.exceptions import ValidationError
from mcscan.progress_log import ProgressLogger
from mcscan.store import open_store

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_ABORTED = "aborted"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

FINAL_STATUSES = (STATUS_COMPLETED, STATUS_ABORTED, STATUS_FAILED, STATUS_CANCELLED)


def generate_job_id():
    return f"scan_{uuid.uuid4().hex[:12]}"


class ScanJob:
    def __init__(self, start_ip, end_ip, batch_size):
        self.id = generate_job_id()
        self.start_ip = start_ip
        self.end_ip = end_ip
        self.batch_size = batch_size
        self.status = STATUS_PENDING
        self.error = None
        self.stats = ScanStats()
        self.created_at = time.time()
        self.started_at = None
        self.finished_at = None
        self._future = None

    @property
    def done(self):
        return self.status in FINAL_STATUSES

    def cancel(self):
        if self._future is None or self.done:
            return False
        return self._future.cancel()

    def to_dict(self):
        return {
            "id": self.id,
            "startIp": self.start_ip,
            "endIp": self.end_ip,
            "batchSize": self.batch_size,
            "status": self.status,
            "error": self.error,
            "stats": self.stats.to_dict(),
            "createdAt": self.created_at,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
        }


class ScanJobManager:
    """Owns the scan event loop thread and the jobs submitted to it."""

    def __init__(self, config, store_factory=open_store, progress_logger=None, max_finished_jobs=100):
        self.config = config
        self.max_finished_jobs = max_finished_jobs
        self.store_factory = store_factory
        self.progress_logger = progress_logger or ProgressLogger(config.log_path)
        self._jobs = {}
        self._lock = threading.Lock()
        self._loop = None
        self._thread = None

    def start(self):
        with self._lock:
            if self._thread is not None:
                return
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(target=self._loop.run_forever, name="scan-loop", daemon=True)
            self._thread.start()
        logger.info("Scan loop started")

    def submit(self, start_ip, end_ip, batch_size=None):
        """Validate and schedule a range scan. Raises ValidationError."""
        _, batch_size = validate_scan_request(start_ip, end_ip, batch_size, self.config)
        self.start()
        job = ScanJob(start_ip, end_ip, batch_size)
        with self._lock:
            self._prune()
            self._jobs[job.id] = job
        job._future = asyncio.run_coroutine_threadsafe(self._run(job), self._loop)
        job._future.add_done_callback(partial(self._finish, job))
        logger.info("Scan job %s submitted: %s - %s (batch %d)", job.id, start_ip, end_ip, batch_size)
        return job

    async def _run(self, job):
        with self._lock:
            # cancelled before the loop got to it
            if job.done:
                return
            job.status = STATUS_RUNNING
            job.started_at = time.time()
        async with self.store_factory(self.config) as store:
            await start_range_scan(
                job.start_ip,
                job.end_ip,
                job.batch_size,
                config=self.config,
                store=store,
                logger=self.progress_logger,
                stats=job.stats,
            )

    def _finish(self, job, future):
        with self._lock:
            job.finished_at = time.time()
            if future.cancelled():
                job.status = STATUS_CANCELLED
                logger.info("Scan job %s cancelled", job.id)
                return
            exc = future.exception()
            if exc is None:
                job.status = STATUS_COMPLETED
                logger.info("Scan job %s completed: %s", job.id, job.stats.to_dict())
            elif isinstance(exc, ValidationError):
                job.status = STATUS_ABORTED
                job.error = exc.message
            else:
                job.status = STATUS_FAILED
                job.error = f"{type(exc).__name__}: {exc}"
                logger.error("Scan job %s failed", job.id, exc_info=exc)

    def _prune(self):
        """Forget the oldest finished jobs beyond max_finished_jobs. Caller holds the lock."""
        finished = sorted((j for j in self._jobs.values() if j.done), key=lambda j: j.created_at)
        for job in finished[:max(0, len(finished) - self.max_finished_jobs)]:
            del self._jobs[job.id]

    def get(self, job_id):
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self):
        with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)

    def cancel(self, job_id):
        job = self.get(job_id)
        return job.cancel() if job else False

    def wait(self, job_id, timeout=None):
        """Block until the job reaches a final status (tests, CLI)."""
        job = self.get(job_id)
        if job is None:
            return False
        deadline = None if timeout is None else time.monotonic() + timeout
        while not job.done:
            if deadline is not None and time.monotonic() > deadline:
                return False
            time.sleep(0.01)
        return True

    async def _cancel_all(self):
        tasks = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def shutdown(self, timeout=5.0):
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if thread is None:
            return
        asyncio.run_coroutine_threadsafe(self._cancel_all(), loop).result(timeout)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        loop.close()
        logger.info("Scan loop stopped")
