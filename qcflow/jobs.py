"""Asynchronous bulk-analysis jobs: submit, then poll.

Jobs run on a bounded worker pool; submissions beyond the ceiling wait in
FIFO order. There is no cancellation: a job ends only by completing or
failing. Results live in memory only, and finished jobs are evicted once
their TTL expires.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Union

from .config import AppConfig
from .errors import JobNotFoundError, to_user_message
from .gateway import LLMGateway, RetryPolicy
from .models.schemas import BulkAnalysisRequest, BulkAnalysisResult, CodedUnit, Job, JobStatus
from .pipeline.bulk import run_bulk_analysis
from .pipeline.resolution import Taxonomy
from .providers.base import make_provider
from .rate_limiter import TokenBucket

log = logging.getLogger(__name__)

Runner = Callable[[BulkAnalysisRequest], BulkAnalysisResult]


class JobStore:
    """In-memory job map with TTL eviction of finished jobs.

    Each job is written only by its own worker, but workers are OS threads,
    so every access goes through one lock. Readers get deep copies.
    """

    def __init__(self, ttl_seconds: float = 3600.0, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _evict_expired_locked(self) -> int:
        if self.ttl_seconds <= 0:
            return 0
        cutoff = self._clock() - self.ttl_seconds
        expired = [jid for jid, job in self._jobs.items() if job.status.terminal and job.updated_at < cutoff]
        for jid in expired:
            del self._jobs[jid]
        if expired:
            log.debug("Evicted %d expired job(s)", len(expired))
        return len(expired)

    def evict_expired(self) -> int:
        with self._lock:
            return self._evict_expired_locked()

    def create(self) -> Job:
        now = self._clock()
        job = Job(id=str(uuid.uuid4()), status=JobStatus.pending, created_at=now, updated_at=now)
        with self._lock:
            self._evict_expired_locked()
            self._jobs[job.id] = job
        return job.model_copy(deep=True)

    def get(self, job_id: str) -> Job:
        with self._lock:
            self._evict_expired_locked()
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.model_copy(deep=True)

    def _transition(self, job_id: str, allowed_from: tuple, **changes: Any) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status not in allowed_from:
                raise ValueError(f"Job {job_id}: illegal transition {job.status.value} -> {changes['status'].value}")
            self._jobs[job_id] = job.model_copy(update=dict(changes, updated_at=self._clock()))

    def mark_processing(self, job_id: str) -> None:
        self._transition(job_id, (JobStatus.pending,), status=JobStatus.processing)

    def mark_completed(self, job_id: str, result: List[CodedUnit], stats: Optional[Dict[str, Any]] = None) -> None:
        self._transition(job_id, (JobStatus.processing,), status=JobStatus.completed, result=list(result), stats=stats)

    def mark_failed(self, job_id: str, error: str) -> None:
        self._transition(job_id, (JobStatus.pending, JobStatus.processing), status=JobStatus.failed, error=error)


def _log_worker_crash(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        log.error("Job worker crashed: %s", exc, exc_info=exc)


class JobQueue:
    def __init__(self, runner: Runner, max_concurrent: int = 2, store: Optional[JobStore] = None):
        self.runner = runner
        self.store = store or JobStore()
        self._pool = ThreadPoolExecutor(max_workers=max(1, max_concurrent), thread_name_prefix="qcflow-job")

    def __enter__(self) -> "JobQueue":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown(wait=True)

    def submit(self, payload: Union[BulkAnalysisRequest, Dict[str, Any]]) -> str:
        """Validate ``payload`` and enqueue it; returns the job id immediately.

        Raises ``pydantic.ValidationError`` or ``ValueError`` for a malformed
        payload or an empty taxonomy; nothing is enqueued in that case.
        """
        if isinstance(payload, BulkAnalysisRequest):
            request = payload
        else:
            request = BulkAnalysisRequest.model_validate(payload)
        Taxonomy(request.themes)
        job = self.store.create()
        log.info("Job %s accepted (%d units)", job.id, len(request.units))
        future = self._pool.submit(self._work, job.id, request)
        future.add_done_callback(_log_worker_crash)
        return job.id

    def _work(self, job_id: str, request: BulkAnalysisRequest) -> None:
        self.store.mark_processing(job_id)
        log.info("Starting job %s", job_id)
        try:
            result = self.runner(request)
            stats = result.stats.model_dump(mode="json")
            self.store.mark_completed(job_id, result.coded_units, stats)
        except Exception as exc:
            log.error("Job %s failed: %s", job_id, exc, exc_info=True)
            self.store.mark_failed(job_id, to_user_message(exc))
            return
        log.info("Job %s completed (%d coded units)", job_id, len(result.coded_units))

    def get(self, job_id: str) -> Job:
        return self.store.get(job_id)

    def wait(
        self,
        job_id: str,
        poll_interval: float = 2.0,
        timeout: Optional[float] = None,
        on_status: Optional[Callable[[Job], None]] = None,
    ) -> Job:
        """Poll until the job completes or fails.

        ``on_status`` is called whenever the observed status changes. Raises
        ``TimeoutError`` if ``timeout`` seconds pass first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        last_status = None
        while True:
            job = self.get(job_id)
            if job.status != last_status:
                last_status = job.status
                if on_status is not None:
                    on_status(job)
            if job.status.terminal:
                return job
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError(f"Job {job_id} still {job.status.value} after {timeout}s")
            time.sleep(poll_interval)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


def make_pipeline_runner(conf: AppConfig) -> Runner:
    """Runner that builds a fresh provider per job, so token usage is per job.

    The rate limiter is shared by all jobs, since they draw on one upstream quota.
    """
    limiter = TokenBucket(conf.run.rate_limit_rps) if conf.run.rate_limit_rps > 0 else None
    retry = RetryPolicy.from_run_config(conf.run)

    def runner(request: BulkAnalysisRequest) -> BulkAnalysisResult:
        gateway = LLMGateway(make_provider(conf.provider), retry=retry, limiter=limiter)
        return run_bulk_analysis(
            gateway, request, conf.run, adjudicator_model=conf.provider.adjudicator_model
        )

    return runner


def make_job_queue(conf: AppConfig, runner: Optional[Runner] = None) -> JobQueue:
    store = JobStore(ttl_seconds=conf.jobs.ttl_seconds)
    return JobQueue(runner or make_pipeline_runner(conf), max_concurrent=conf.jobs.max_concurrent_jobs, store=store)
