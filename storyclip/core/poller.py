"""
Asynchronous job tracking.

JobPoller.track() starts one polling task per job and hands back a
TrackedJob, which is both a cancellation token and an awaitable result.
Status checks for a job are strictly sequential; the timeout is measured
from the moment tracking started.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from storyclip.providers.base import GenerationProvider, JobStatusReport, parse_status_report
from storyclip.utils.logging_setup import log_context

from .errors import GenerationError, GenerationTimeout, ProviderFailure, error_from_raw
from .models import GenerationJob, JobResult, JobStatus

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 5000
DEFAULT_TIMEOUT_MS = 120000

STATUS_ALIASES = {
    JobStatus.QUEUED: ("queued", "pending", "created", "submitted"),
    JobStatus.PROCESSING: ("processing", "running", "in_progress", "generating", "starting"),
    JobStatus.COMPLETED: ("completed", "succeeded", "success", "done"),
    JobStatus.FAILED: ("failed", "error", "canceled", "cancelled", "timeout"),
}
_STATUS_LOOKUP = {alias: status for status, aliases in STATUS_ALIASES.items() for alias in aliases}

_ORDER = {JobStatus.QUEUED: 0, JobStatus.PROCESSING: 1, JobStatus.COMPLETED: 2, JobStatus.FAILED: 2}

Callback = Callable[..., Union[None, Awaitable[None]]]


def map_status(raw: Optional[str]) -> JobStatus:
    return _STATUS_LOOKUP.get((raw or "").strip().lower(), JobStatus.PROCESSING)


def progress_for(status: JobStatus, reported: Optional[float] = None) -> int:
    if status == JobStatus.QUEUED:
        return 10
    if status == JobStatus.PROCESSING:
        if reported is None:
            return 50
        return int(max(0, min(99, reported)))
    if status == JobStatus.COMPLETED:
        return 100
    return 0


class TrackedJob:
    """Handle for one tracked job: cancel it, or await its outcome."""

    def __init__(self, job: GenerationJob):
        self.job = job
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None
        self._outcome: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def done(self) -> bool:
        return self._outcome.done()

    def cancel(self) -> None:
        if self._cancelled or self._outcome.done():
            return
        self._cancelled = True
        if self._task is not None:
            self._task.cancel()
        self._outcome.cancel()
        logger.info(f"Tracking cancelled for job {self.job.id}")

    async def result(self) -> JobResult:
        """Completed result; raises the GenerationError on failure, CancelledError on cancel."""
        return await asyncio.shield(self._outcome)

    def _settle(self, result: Optional[JobResult] = None, error: Optional[GenerationError] = None) -> None:
        if self._outcome.done():
            return
        if error is not None:
            self._outcome.set_exception(error)
            # Outcome is optional to await; avoid "exception never retrieved" noise.
            self._outcome.exception()
        else:
            self._outcome.set_result(result)


class JobPoller:
    def __init__(
        self,
        provider: GenerationProvider,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        job_store=None,
    ):
        self.provider = provider
        self.interval_ms = interval_ms
        self.timeout_ms = timeout_ms
        self.job_store = job_store

    @classmethod
    def from_config(cls, provider: GenerationProvider, config: dict, job_store=None) -> "JobPoller":
        return cls(
            provider,
            interval_ms=int(config.get("poll_interval_ms", DEFAULT_INTERVAL_MS)),
            timeout_ms=int(config.get("poll_timeout_ms", DEFAULT_TIMEOUT_MS)),
            job_store=job_store,
        )

    def track(
        self,
        job: Union[GenerationJob, str],
        interval_ms: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        on_progress: Optional[Callback] = None,
        on_complete: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
    ) -> TrackedJob:
        """Start polling. Must be called from inside a running event loop."""
        if isinstance(job, str):
            job = GenerationJob(id=job)
        handle = TrackedJob(job)
        handle._task = asyncio.get_running_loop().create_task(
            self._run(
                handle,
                (interval_ms if interval_ms is not None else self.interval_ms) / 1000.0,
                (timeout_ms if timeout_ms is not None else self.timeout_ms) / 1000.0,
                on_progress,
                on_complete,
                on_error,
            )
        )
        return handle

    async def _run(self, handle: TrackedJob, interval, timeout, on_progress, on_complete, on_error) -> None:
        job = handle.job
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        clip_type = job.request.clip_type.value if job.request else None

        with log_context(job_id=job.id, clip_type=clip_type):
            while not handle.cancelled:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    await self._fail(handle, GenerationTimeout(f"Job {job.id} timed out after {timeout:.1f}s"), on_error)
                    return
                try:
                    raw = await asyncio.wait_for(self.provider.get_job_status(job.id), timeout=remaining)
                    report = parse_status_report(raw)
                except Exception as exc:
                    logger.warning(f"Status check for job {job.id} failed: {exc}")
                    report = None
                if handle.cancelled:
                    return

                if report is not None:
                    if await self._apply(handle, report, on_progress, on_complete, on_error):
                        return

                remaining = deadline - loop.time()
                await asyncio.sleep(max(0.0, min(interval, remaining)))

    async def _apply(self, handle: TrackedJob, report: JobStatusReport, on_progress, on_complete, on_error) -> bool:
        """Fold one status report into the job view. Returns True once terminal."""
        job = handle.job
        status = map_status(report.status)
        if _ORDER[status] < _ORDER[job.status]:
            status = job.status

        if status != job.status:
            logger.info(f"Job {job.id}: {job.status.value} -> {status.value}")

        if status == JobStatus.COMPLETED:
            asset_url = report.result_url or _first_output(report)
            if not asset_url:
                await self._fail(handle, ProviderFailure("Job completed but no asset was delivered"), on_error)
                return True
            job.status = JobStatus.COMPLETED
            job.progress = progress_for(JobStatus.COMPLETED)
            job.result = JobResult(asset_url=asset_url, raw=report.model_dump())
            self._persist(job)
            handle._settle(result=job.result)
            await _invoke(on_complete, job.result)
            return True

        if status == JobStatus.FAILED:
            await self._fail(handle, error_from_raw(report.error_details or report.status), on_error)
            return True

        job.status = status
        job.progress = progress_for(status, report.progress)
        self._persist(job)
        await _invoke(on_progress, job)
        return False

    async def _fail(self, handle: TrackedJob, error: GenerationError, on_error) -> None:
        job = handle.job
        job.status = JobStatus.FAILED
        job.progress = progress_for(JobStatus.FAILED)
        job.error = error.kind
        job.error_message = error.user_message
        logger.info(f"Job {job.id} failed ({error.kind.value}): {error.raw}")
        self._persist(job)
        handle._settle(error=error)
        await _invoke(on_error, error)

    def _persist(self, job: GenerationJob) -> None:
        if self.job_store is None:
            return
        try:
            self.job_store.update_job(job)
        except Exception as exc:
            logger.warning(f"Failed to persist job {job.id}: {exc}")


def _first_output(report: JobStatusReport) -> Optional[str]:
    extra: Any = report.model_extra or {}
    outputs = extra.get("outputs") or []
    return outputs[0] if outputs else None


async def _invoke(callback: Optional[Callback], *args) -> None:
    if callback is None:
        return
    try:
        ret = callback(*args)
        if inspect.isawaitable(ret):
            await ret
    except Exception:
        logger.exception("Job callback raised")
