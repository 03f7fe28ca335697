"""
Generation job status tracking.

The backend builds the PDF asynchronously. A JobStatusTracker polls the
status endpoint for one job until it reaches a terminal status, then stops.

POLLING RULES:
    - Fixed interval while the job is pending/processing
    - The first COMPLETED/FAILED observation ends polling; no further fetch
    - No automatic retry of a failed job
    - After max_attempts fetches without a terminal status the tracker gives
      up with TIMED_OUT ("taking longer than expected"), distinct from FAILED
    - Fetch errors are logged and count as attempts

CANCELLATION:
    Cooperative. stop() clears the "still wanted" flag; the tracker checks it
    before each fetch and before waiting for the next one. The wait uses
    Event.wait, so stop() also cuts a pending sleep short.

SHARED STATE:
    JobStatusStore  - latest known status per job id, shared by every view
                      (several trackers may watch the same job; the backend
                      is the only writer)
    DownloadsCache  - cached "my downloads" lists; invalidated on completion
                      and broadcast to every subscriber

Usage:
    tracker = JobStatusTracker(api_client, job_id, poll_interval=3.0,
                               store=job_store, downloads_cache=cache)
    tracker.start()              # background thread
    tracker.wait(timeout=60)     # or tracker.run() to poll in this thread
    tracker.stop()               # when the observing view goes away
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Callable, Dict, List, Optional

from core.exceptions import DesignBundleError, GenerationFailure, InvalidTransitionError
from models.generation_job import DownloadRecord, GenerationJob, JobStatus
from logging_config import get_logger, get_job_logger, set_thread_name


logger = get_logger(__name__)


class TrackerOutcome(Enum):
    """How a tracker finished (RUNNING until it does)."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self is not TrackerOutcome.RUNNING


class JobStatusStore:
    """
    Thread-safe latest-status store.

    Writers are tracker threads, readers are request threads. Updates go
    through GenerationJob.advance(), so the stored status never regresses.

    Usage:
        store.put(observed_job)      # tracker thread
        job = store.get(job_id)      # any thread
    """

    def __init__(self):
        self._jobs: Dict[str, GenerationJob] = {}
        self._lock = threading.Lock()

    def put(self, observed: GenerationJob) -> GenerationJob:
        """
        Record an observation and return the stored job.

        Raises:
            InvalidTransitionError: Observation would move the job backwards;
                the stored job is left unchanged
        """
        with self._lock:
            current = self._jobs.get(observed.job_id)
            stored = observed if current is None else current.advance(observed)
            self._jobs[observed.job_id] = stored
            return stored

    def get(self, job_id: str) -> Optional[GenerationJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def discard(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def clear(self) -> int:
        with self._lock:
            count = len(self._jobs)
            self._jobs.clear()
            logger.info(f"Cleared {count} jobs from status store")
            return count


class DownloadsCache:
    """
    Cached download lists per identity, with invalidation broadcast.

    Any view showing a downloads list subscribes; when a job completes the
    cache is emptied and every subscriber is told, not just the view that
    started the job.
    """

    def __init__(self):
        self._lists: Dict[str, List[DownloadRecord]] = {}
        self._subscribers: List[Callable[[str], None]] = []
        self._version = 0
        self._lock = threading.Lock()

    @property
    def version(self) -> int:
        """Incremented on every invalidation."""
        return self._version

    def get(self, identity: str, loader: Callable[[], List[DownloadRecord]]) -> List[DownloadRecord]:
        """Cached list for `identity`, loading it on a miss."""
        with self._lock:
            cached = self._lists.get(identity)
            version = self._version
        if cached is not None:
            return list(cached)

        records = loader()
        with self._lock:
            # Drop the result if an invalidation happened while loading
            if version == self._version:
                self._lists[identity] = list(records)
        return list(records)

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """
        Register for invalidation notices.

        Returns:
            Function that removes the subscription
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def invalidate(self, reason: str = "") -> None:
        with self._lock:
            self._lists.clear()
            self._version += 1
            subscribers = list(self._subscribers)

        logger.debug(f"Downloads cache invalidated ({reason or 'no reason'}), {len(subscribers)} subscribers")
        for callback in subscribers:
            callback(reason)


class JobStatusTracker:
    """
    Disposable polling handle for one generation job.

    Attributes:
        job_id: Job being watched
        job: Latest known GenerationJob
        outcome: TrackerOutcome (RUNNING until finished)
        attempts: Status fetches made so far
    """

    def __init__(
        self,
        api_client,
        job_id: str,
        poll_interval: float = 3.0,
        max_attempts: int = 100,
        store: Optional[JobStatusStore] = None,
        downloads_cache: Optional[DownloadsCache] = None,
        on_finish: Optional[Callable[["JobStatusTracker"], None]] = None,
    ):
        """
        Args:
            api_client: MarketplaceAPIClient (anything with get_pdf_status())
            job_id: Backend job id
            poll_interval: Seconds between status fetches
            max_attempts: Fetches before giving up with TIMED_OUT
            store: Shared JobStatusStore (optional)
            downloads_cache: Invalidated when the job completes (optional)
            on_finish: Called once with this tracker when polling ends
        """
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")

        self._api_client = api_client
        self._job_id = str(job_id)
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts
        self._store = store
        self._downloads_cache = downloads_cache
        self._on_finish = on_finish

        self._job = GenerationJob.create_pending(self._job_id)
        self._outcome = TrackerOutcome.RUNNING
        self._attempts = 0

        self._stop_event = threading.Event()
        self._done_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._logger = get_job_logger(self._job_id)

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def job(self) -> GenerationJob:
        return self._job

    @property
    def outcome(self) -> TrackerOutcome:
        return self._outcome

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def is_wanted(self) -> bool:
        """False once stop() was called."""
        return not self._stop_event.is_set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def artifact_ref(self) -> Optional[str]:
        return self._job.artifact_ref

    @property
    def error(self) -> Optional[GenerationFailure]:
        if self._outcome is TrackerOutcome.FAILED:
            return GenerationFailure(self._job_id, self._job.error_message)
        return None

    def start(self) -> None:
        """Poll in a background thread. Safe to call more than once."""
        if self._thread is not None or self._outcome.is_final:
            return

        self._thread = threading.Thread(
            target=self._thread_main,
            name=f"Poll-{self._job_id[:8]}",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Withdraw interest in the job and wait briefly for the thread."""
        self._stop_event.set()

        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                self._logger.warning("Poll thread did not stop cleanly")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until polling has ended. Returns False on timeout."""
        return self._done_event.wait(timeout)

    def run(self) -> TrackerOutcome:
        """
        Poll in the calling thread until a final outcome.

        Returns:
            The final TrackerOutcome
        """
        self._logger.info(f"Tracking job (every {self._poll_interval}s, max {self._max_attempts} fetches)")

        while True:
            if not self.is_wanted:
                return self._finish(TrackerOutcome.CANCELLED)

            self._attempts += 1
            self._poll_once()

            if self._job.status is JobStatus.COMPLETED:
                return self._finish(TrackerOutcome.COMPLETED)
            if self._job.status is JobStatus.FAILED:
                return self._finish(TrackerOutcome.FAILED)
            if self._attempts >= self._max_attempts:
                return self._finish(TrackerOutcome.TIMED_OUT)

            if not self.is_wanted or self._stop_event.wait(self._poll_interval):
                return self._finish(TrackerOutcome.CANCELLED)

    def _thread_main(self) -> None:
        set_thread_name(f"Poll-{self._job_id[:8]}")
        try:
            self.run()
        except Exception as e:
            self._logger.exception(f"Poll thread crashed: {e}")
            if not self._outcome.is_final:
                self._finish(TrackerOutcome.FAILED)

    def _poll_once(self) -> None:
        try:
            data = self._api_client.get_pdf_status(self._job_id)
        except DesignBundleError as e:
            self._logger.warning(f"Status fetch {self._attempts}/{self._max_attempts} failed: {e.message}")
            return

        observed = GenerationJob.from_api(self._job_id, data)
        try:
            if self._store is not None:
                self._job = self._store.put(observed)
            else:
                self._job = self._job.advance(observed)
        except InvalidTransitionError as e:
            # Keep the last known state; the backend is the only writer
            self._logger.warning(e.message)
            if self._store is not None:
                self._job = self._store.get(self._job_id) or self._job
            return

        self._logger.debug(f"Status: {self._job.status.value} (fetch {self._attempts})")

    def _finish(self, outcome: TrackerOutcome) -> TrackerOutcome:
        self._outcome = outcome

        if outcome is TrackerOutcome.COMPLETED:
            self._logger.info(f"Job completed, artifact {self._job.artifact_ref}")
            if self._downloads_cache is not None:
                self._downloads_cache.invalidate(f"job {self._job_id} completed")
        elif outcome is TrackerOutcome.FAILED:
            self._logger.error(f"Job failed: {self._job.error_message or 'no reason given'}")
        elif outcome is TrackerOutcome.TIMED_OUT:
            self._logger.warning(f"Job still {self._job.status.value} after {self._attempts} fetches")
        else:
            self._logger.info("Tracking cancelled")

        try:
            if self._on_finish is not None:
                self._on_finish(self)
        finally:
            self._done_event.set()
        return outcome
