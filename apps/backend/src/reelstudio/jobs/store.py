"""Durable job record store backed by SQLAlchemy.

Every transition is a single conditional UPDATE guarded by the statuses
it may start from, so two writers racing on the same job cannot move it
backward: the loser sees zero affected rows and gets ``InvalidTransition``
(or a no-op when it re-delivers the terminal outcome already recorded).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.orm import sessionmaker

from reelstudio.db.models import JobRow
from reelstudio.errors import InvalidTransition, NotFound
from reelstudio.jobs.models import Job, JobKind, JobStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_UNFINISHED = (JobStatus.SUBMITTED, JobStatus.PROCESSING)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class JobStore:
    """Persists jobs keyed by id, queryable by owner and kind."""

    def __init__(self, session_factory: sessionmaker, clock: Clock | None = None) -> None:
        self._session_factory = session_factory
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Creation and queries
    # ------------------------------------------------------------------

    def create(self, owner_id: str, kind: JobKind, params: dict[str, Any]) -> Job:
        """Create a job in ``pending`` status."""
        now = self._clock()
        job = Job(owner_id=owner_id, kind=JobKind(kind), params=dict(params), created_at=now, updated_at=now)
        with self._session_factory.begin() as session:
            session.add(
                JobRow(
                    id=job.id,
                    owner_id=job.owner_id,
                    kind=job.kind.value,
                    status=job.status.value,
                    external_ref="",
                    params=job.params,
                    poll_attempts=0,
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.info("Created %s job %s for owner %s", job.kind.value, job.id, owner_id)
        return job

    def get(self, job_id: str) -> Job:
        with self._session_factory() as session:
            row = session.get(JobRow, job_id)
            if row is None:
                raise NotFound(f"job {job_id}")
            return _to_job(row)

    def list_by_owner(
        self,
        owner_id: str,
        kind: JobKind | None = None,
        limit: int = 50,
    ) -> list[Job]:
        """List an owner's jobs, newest first."""
        stmt = select(JobRow).where(JobRow.owner_id == owner_id)
        if kind is not None:
            stmt = stmt.where(JobRow.kind == JobKind(kind).value)
        stmt = stmt.order_by(JobRow.created_at.desc(), JobRow.id).limit(limit)
        with self._session_factory() as session:
            return [_to_job(row) for row in session.scalars(stmt)]

    def list_unfinished(self) -> list[Job]:
        """Jobs handed to a provider that have not reached a terminal state."""
        stmt = (
            select(JobRow)
            .where(JobRow.status.in_([s.value for s in _UNFINISHED]))
            .order_by(JobRow.created_at)
        )
        with self._session_factory() as session:
            return [_to_job(row) for row in session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def record_submitted(self, job_id: str, external_ref: str) -> Job:
        """Record a successful provider submission (``pending -> submitted``)."""
        if not external_ref:
            raise ValueError("external_ref must be non-empty")

        updated = self._conditional_update(
            job_id,
            from_statuses=(JobStatus.PENDING,),
            values={"status": JobStatus.SUBMITTED.value, "external_ref": external_ref},
        )
        if not updated:
            current = self.get(job_id)
            raise InvalidTransition(
                f"job {job_id} cannot be submitted from status {current.status.value}"
            )
        return self.get(job_id)

    def record_progress(self, job_id: str, status: JobStatus = JobStatus.PROCESSING) -> Job:
        """Record a non-terminal poll. Repeating the current status is a no-op."""
        status = JobStatus(status)
        if status != JobStatus.PROCESSING:
            raise ValueError(f"record_progress only accepts processing, got {status.value}")

        updated = self._conditional_update(
            job_id,
            from_statuses=(JobStatus.SUBMITTED,),
            values={"status": status.value},
        )
        current = self.get(job_id)
        if updated or current.status == status:
            return current
        raise InvalidTransition(
            f"job {job_id} cannot move from {current.status.value} to {status.value}"
        )

    def record_terminal(
        self,
        job_id: str,
        status: JobStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> Job:
        """Record the final outcome of a job.

        Re-delivering the outcome already stored is a no-op; any other
        write to a terminal job raises ``InvalidTransition``.
        """
        status = JobStatus(status)
        if status == JobStatus.COMPLETED:
            if not result:
                raise ValueError("completed jobs require a non-empty result")
            if error:
                raise ValueError("completed jobs cannot carry an error")
            from_statuses: Iterable[JobStatus] = (JobStatus.SUBMITTED, JobStatus.PROCESSING)
        elif status == JobStatus.FAILED:
            if not error:
                raise ValueError("failed jobs require an error")
            if result:
                raise ValueError("failed jobs cannot carry a result")
            from_statuses = (JobStatus.PENDING, JobStatus.SUBMITTED, JobStatus.PROCESSING)
        else:
            raise ValueError(f"{status.value} is not a terminal status")

        updated = self._conditional_update(
            job_id,
            from_statuses=from_statuses,
            values={"status": status.value, "result": result, "error": error},
        )
        current = self.get(job_id)
        if updated:
            logger.info("Job %s reached %s", job_id, status.value)
            return current
        if current.status == status and current.result == result and current.error == error:
            logger.debug("Duplicate terminal delivery for job %s ignored", job_id)
            return current
        raise InvalidTransition(
            f"job {job_id} cannot move from {current.status.value} to {status.value}"
        )

    def record_poll_attempt(self, job_id: str) -> int:
        """Increment and return the persisted poll counter of a job."""
        with self._session_factory.begin() as session:
            result = session.execute(
                update(JobRow)
                .where(JobRow.id == job_id)
                .values(poll_attempts=JobRow.poll_attempts + 1)
            )
            if result.rowcount == 0:
                raise NotFound(f"job {job_id}")
            return session.scalar(select(JobRow.poll_attempts).where(JobRow.id == job_id))

    def delete(self, job_id: str) -> None:
        with self._session_factory.begin() as session:
            result = session.execute(delete(JobRow).where(JobRow.id == job_id))
            if result.rowcount == 0:
                raise NotFound(f"job {job_id}")
        logger.info("Deleted job %s", job_id)

    def _conditional_update(
        self,
        job_id: str,
        from_statuses: Iterable[JobStatus],
        values: dict[str, Any],
    ) -> bool:
        """Apply ``values`` only if the job is in one of ``from_statuses``."""
        allowed = [s.value for s in from_statuses]
        with self._session_factory.begin() as session:
            result = session.execute(
                update(JobRow)
                .where(JobRow.id == job_id, JobRow.status.in_(allowed))
                .values(updated_at=self._clock(), **values)
            )
            if result.rowcount:
                return True
            if session.get(JobRow, job_id) is None:
                raise NotFound(f"job {job_id}")
            return False


def _to_job(row: JobRow) -> Job:
    return Job(
        id=row.id,
        owner_id=row.owner_id,
        kind=JobKind(row.kind),
        status=JobStatus(row.status),
        external_ref=row.external_ref or "",
        params=dict(row.params or {}),
        result=row.result,
        error=row.error,
        poll_attempts=row.poll_attempts or 0,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )
