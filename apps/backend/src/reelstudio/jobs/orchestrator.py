"""Job orchestrator: owns the job state machine end to end.

The orchestrator is the only writer of job records. Submission, polling
and reconciliation go through it regardless of which provider backs a
job kind. Store calls and file I/O run in worker threads so a slow
database or a large artifact never stalls the event loop. Polling is server-owned: each submitted job gets a background
asyncio task that advances it at a fixed interval until it reaches a
terminal state or exhausts its attempt budget.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import shutil
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from reelstudio.errors import (
    Forbidden,
    InvalidTransition,
    NotFound,
    NotReady,
    PollTimeout,
    ProviderFailed,
    ProviderUnavailable,
    ReelStudioError,
)
from reelstudio.jobs.models import Artifact, Job, JobKind, JobStatus, PollOutcome
from reelstudio.jobs.store import JobStore

if TYPE_CHECKING:
    from reelstudio.providers.base import IProviderAdapter
    from reelstudio.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class PollPolicy:
    """Fixed-interval polling bounded by an attempt budget."""

    interval: float = 3.0
    max_attempts: int = 60
    max_consecutive_errors: int = 3


class JobOrchestrator:
    """Submits jobs to providers and drives them to a terminal state."""

    def __init__(
        self,
        store: JobStore,
        registry: ProviderRegistry,
        policy: PollPolicy | None = None,
        artifact_dir: Path | None = None,
        max_concurrent_polls: int = 8,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store = store
        self._registry = registry
        self._policy = policy or PollPolicy()
        self._artifact_dir = artifact_dir
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max_concurrent_polls)
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: dict[str, asyncio.Task[Job | None]] = {}
        self._error_streaks: dict[str, int] = {}

    @property
    def policy(self) -> PollPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        owner_id: str,
        kind: JobKind,
        params: dict[str, Any],
        schedule: bool = True,
    ) -> Job:
        """Create a job and hand it to its provider.

        Args:
            owner_id: Principal requesting the work.
            kind: Job kind, selects the provider adapter.
            params: Kind-specific request parameters.
            schedule: Start the background poll loop for asynchronous providers.

        Returns:
            The job as last recorded: ``submitted``, or already terminal
            when the provider answered synchronously or the submission failed.

        Raises:
            InvalidInput: Params rejected before any external call; no job is created.
            ProviderUnavailable: The kind's provider is not configured; no job is created.
        """
        kind = JobKind(kind)
        adapter = self._registry.get(kind)
        if not adapter.is_available:
            raise ProviderUnavailable(f"{adapter.name} is not configured")

        clean_params = adapter.validate(params)
        job = await self._db(self._store.create, owner_id, kind, clean_params)
        try:
            job = await self._submit_locked(job, adapter, clean_params)
        finally:
            # Nothing else can hold the lock of a job this young
            self._forget(job.id)

        if schedule and not job.is_terminal:
            self.schedule(job.id)
        return job

    async def _submit_locked(
        self, job: Job, adapter: IProviderAdapter, params: dict[str, Any]
    ) -> Job:
        async with self._lock_for(job.id):
            try:
                submission = await adapter.submit(params)
            except ReelStudioError as exc:
                logger.warning("Submitting job %s to %s failed: %s", job.id, adapter.name, exc)
                return await self._db(
                    self._store.record_terminal,
                    job.id,
                    JobStatus.FAILED,
                    error=exc.as_job_error(context=f"submit to {adapter.name} failed"),
                )
            except Exception as exc:
                logger.exception("Unexpected error submitting job %s to %s", job.id, adapter.name)
                return await self._db(
                    self._store.record_terminal,
                    job.id,
                    JobStatus.FAILED,
                    error=ProviderUnavailable(repr(exc)).as_job_error(
                        context=f"submit to {adapter.name} failed"
                    ),
                )

            job = await self._db(self._store.record_submitted, job.id, submission.external_ref)
            logger.info(
                "Job %s submitted to %s as %s", job.id, adapter.name, submission.external_ref
            )
            if submission.outcome is not None:
                return await self._apply(job, submission.outcome, adapter)
            return job

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def advance(self, job_id: str) -> Job:
        """Poll the provider once and record the resulting transition.

        Calls for the same job are serialized. Terminal jobs are returned
        untouched without contacting the provider.

        Raises:
            NotFound: Unknown job.
            InvalidTransition: The job was never submitted.
        """
        try:
            job = await self._advance_locked(job_id)
        except NotFound:
            self._forget(job_id)
            raise
        if job.is_terminal:
            # Terminal jobs never change, so a waiter on the dropped lock only reads
            self._forget(job_id)
        return job

    async def _advance_locked(self, job_id: str) -> Job:
        async with self._lock_for(job_id):
            job = await self._db(self._store.get, job_id)
            if job.is_terminal:
                return job
            if job.status == JobStatus.PENDING:
                raise InvalidTransition(f"job {job_id} has not been submitted")

            adapter = self._registry.get(job.kind)
            if job.poll_attempts >= self._policy.max_attempts:
                return await self._time_out(job, adapter)

            attempts = await self._db(self._store.record_poll_attempt, job_id)
            try:
                outcome = await adapter.poll(job.external_ref)
            except ProviderUnavailable as exc:
                streak = self._error_streaks.get(job_id, 0) + 1
                self._error_streaks[job_id] = streak
                logger.warning(
                    "Poll %d/%d for job %s failed (%d in a row): %s",
                    attempts,
                    self._policy.max_attempts,
                    job_id,
                    streak,
                    exc,
                )
                if streak >= self._policy.max_consecutive_errors:
                    return await self._db(
                        self._store.record_terminal,
                        job_id,
                        JobStatus.FAILED,
                        error=exc.as_job_error(
                            context=f"polling {adapter.name} failed {streak} times in a row"
                        ),
                    )
                job = await self._db(self._store.get, job_id)
            else:
                self._error_streaks.pop(job_id, None)
                job = await self._apply(job, outcome, adapter)

            if not job.is_terminal and attempts >= self._policy.max_attempts:
                return await self._time_out(job, adapter)
            return job

    def schedule(self, job_id: str) -> asyncio.Task[Job | None]:
        """Start (or return the running) background poll loop for a job."""
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(self._poll_loop(job_id), name=f"poll-{job_id}")
        self._tasks[job_id] = task

        def _forget(done: asyncio.Task[Job | None]) -> None:
            if self._tasks.get(job_id) is done:
                del self._tasks[job_id]

        task.add_done_callback(_forget)
        return task

    async def resume_unfinished(self) -> int:
        """Reschedule polling for jobs left in flight by a previous process."""
        jobs = await self._db(self._store.list_unfinished)
        for job in jobs:
            self.schedule(job.id)
        if jobs:
            logger.info("Resumed polling for %d unfinished job(s)", len(jobs))
        return len(jobs)

    async def shutdown(self) -> None:
        """Cancel every running poll loop."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def _poll_loop(self, job_id: str) -> Job | None:
        while True:
            await self._sleep(self._policy.interval)
            try:
                async with self._semaphore:
                    job = await self.advance(job_id)
            except NotFound:
                logger.info("Job %s disappeared, stopping its poll loop", job_id)
                return None
            except InvalidTransition:
                logger.exception("Poll loop for job %s hit an invalid transition", job_id)
                self._forget(job_id)
                return None
            except Exception as exc:
                logger.exception("Unexpected error polling job %s", job_id)
                return await self._fail_unexpected(job_id, exc)

            if job.is_terminal:
                return job

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    async def fetch_artifact(self, job_id: str, owner_id: str) -> Artifact:
        """Return the output of a completed job, caching downloaded bytes.

        Raises:
            NotFound / Forbidden: Unknown job or not the owner.
            NotReady: The job has not completed.
        """
        job = await self._owned(job_id, owner_id)
        if job.status != JobStatus.COMPLETED:
            raise NotReady(f"job {job_id} is {job.status.value}")

        cached = await asyncio.to_thread(self._cached_artifact, job_id)
        if cached is not None:
            return cached

        adapter = self._registry.get(job.kind)
        artifact = await adapter.fetch_artifact(job.external_ref, job.result or {})
        if artifact.content is None or self._artifact_dir is None:
            return artifact

        job_dir = self._artifact_dir / job_id
        path = job_dir / artifact.filename
        await asyncio.to_thread(job_dir.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, artifact.content)
        logger.info("Cached artifact for job %s at %s", job_id, path)
        return Artifact(filename=artifact.filename, media_type=artifact.media_type, path=path)

    async def delete(self, job_id: str, owner_id: str) -> None:
        """Delete a job and its cached artifact.

        In-flight jobs get their poll loop stopped and a best-effort
        provider-side cancellation.
        """
        await self._owned(job_id, owner_id)
        task = self._tasks.pop(job_id, None)
        if task is not None:
            task.cancel()

        async with self._lock_for(job_id):
            job = await self._db(self._store.get, job_id)
            if not job.is_terminal and job.external_ref:
                await self._cancel_quietly(self._registry.get(job.kind), job.external_ref)
            if self._artifact_dir is not None:
                await asyncio.to_thread(shutil.rmtree, self._artifact_dir / job_id, True)
            await self._db(self._store.delete, job_id)

        self._forget(job_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _apply(self, job: Job, outcome: PollOutcome, adapter: IProviderAdapter) -> Job:
        """Reconcile a provider outcome into the store."""
        if outcome.status == JobStatus.COMPLETED:
            if not outcome.result:
                error = ProviderUnavailable(f"{adapter.name} completed without a result")
                return await self._fail(job.id, error)
            return await self._db(
                self._store.record_terminal, job.id, JobStatus.COMPLETED, result=outcome.result
            )
        if outcome.status == JobStatus.FAILED:
            error = ProviderFailed(outcome.error or "no detail")
            return await self._fail(job.id, error, context=f"{adapter.name} reported failure")
        if outcome.status == JobStatus.PROCESSING:
            return await self._db(self._store.record_progress, job.id, JobStatus.PROCESSING)
        return job

    async def _fail(self, job_id: str, error: ReelStudioError, context: str = "") -> Job:
        return await self._db(
            self._store.record_terminal,
            job_id,
            JobStatus.FAILED,
            error=error.as_job_error(context=context),
        )

    async def _time_out(self, job: Job, adapter: IProviderAdapter) -> Job:
        cancelled = await self._cancel_quietly(adapter, job.external_ref)
        note = (
            "provider-side cancellation was requested"
            if cancelled
            else "provider-side work may still be running"
        )
        logger.warning("Job %s timed out after %d polls; %s", job.id, job.poll_attempts, note)
        polls = max(job.poll_attempts, self._policy.max_attempts)
        error = PollTimeout(f"no terminal status from {adapter.name} after {polls} polls; {note}")
        return await self._fail(job.id, error)

    async def _cancel_quietly(self, adapter: IProviderAdapter, external_ref: str) -> bool:
        try:
            return await adapter.cancel(external_ref)
        except ReelStudioError as exc:
            logger.warning("Cancelling %s at %s failed: %s", external_ref, adapter.name, exc)
            return False

    async def _fail_unexpected(self, job_id: str, exc: Exception) -> Job | None:
        try:
            return await self._fail(
                job_id, ProviderUnavailable(repr(exc)), context="unexpected polling error"
            )
        except ReelStudioError:
            logger.exception("Could not mark job %s as failed", job_id)
            return None
        finally:
            self._forget(job_id)

    async def _owned(self, job_id: str, owner_id: str) -> Job:
        job = await self._db(self._store.get, job_id)
        if job.owner_id != owner_id:
            raise Forbidden(f"job {job_id} is not owned by {owner_id}")
        return job

    def _cached_artifact(self, job_id: str) -> Artifact | None:
        if self._artifact_dir is None:
            return None
        job_dir = self._artifact_dir / job_id
        if not job_dir.is_dir():
            return None
        for path in sorted(job_dir.iterdir()):
            if path.is_file():
                media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
                return Artifact(filename=path.name, media_type=media_type, path=path)
        return None

    async def _db(self, method: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await asyncio.to_thread(method, *args, **kwargs)

    def _forget(self, job_id: str) -> None:
        self._locks.pop(job_id, None)
        self._error_streaks.pop(job_id, None)

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock
