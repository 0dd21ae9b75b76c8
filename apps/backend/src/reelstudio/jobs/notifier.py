"""Client-facing view of jobs.

The notifier reads the last durably recorded state from the store and
never talks to providers, so any number of callers can check status
without causing extra provider polls. Raw provider error text stays in
the store and the logs; callers get a templated message per job kind.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from reelstudio.errors import Forbidden, error_code
from reelstudio.jobs.models import Job, JobKind, JobStatus
from reelstudio.jobs.store import JobStore

_DEFAULT_MESSAGE = "The job failed. Please submit it again."

FAILURE_MESSAGES: dict[JobKind, dict[str, str]] = {
    JobKind.VIDEO_ANALYSIS: {
        "InvalidInput": "The transcript could not be analyzed. Check its length and language.",
        "ProviderUnavailable": "The analysis service is unavailable right now. Please try again later.",
        "ProviderFailed": "The analysis service could not process this transcript.",
    },
    JobKind.DUBBING: {
        "InvalidInput": "The media file or URL was rejected. Check the format and size.",
        "ProviderUnavailable": "The dubbing service is unavailable right now. Please try again later.",
        "ProviderFailed": "Dubbing failed for this media. Try another file or language pair.",
        "PollTimeout": "Dubbing is taking longer than expected and was stopped. Please submit it again.",
    },
    JobKind.AVATAR_VIDEO: {
        "InvalidInput": "The avatar video request was rejected. Check the script, avatar and voice.",
        "ProviderUnavailable": "The avatar service is unavailable right now. Please try again later.",
        "ProviderFailed": "The avatar video could not be generated.",
        "PollTimeout": "Video generation is taking longer than expected and was stopped. Please submit it again.",
    },
}


def public_error(kind: JobKind, job_error: str | None) -> str | None:
    """Translate a stored job error into a message safe to show callers."""
    if not job_error:
        return None
    code = error_code(job_error) or ""
    return FAILURE_MESSAGES.get(JobKind(kind), {}).get(code, _DEFAULT_MESSAGE)


@dataclass
class JobStatusView:
    """What a caller is allowed to see about one of their jobs."""

    job_id: str
    kind: JobKind
    status: JobStatus
    result: dict[str, Any] | None
    error: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> JobStatusView:
        return cls(
            job_id=job.id,
            kind=job.kind,
            status=job.status,
            result=job.result if job.status == JobStatus.COMPLETED else None,
            error=public_error(job.kind, job.error) if job.status == JobStatus.FAILED else None,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobNotifier:
    """Read-only job access with strict ownership checks."""

    def __init__(self, store: JobStore) -> None:
        self._store = store

    def get_job(self, job_id: str, requester_id: str) -> Job:
        """Return the full job record if ``requester_id`` owns it.

        Raises:
            NotFound: Unknown job.
            Forbidden: The job belongs to someone else.
        """
        job = self._store.get(job_id)
        if job.owner_id != requester_id:
            raise Forbidden(f"job {job_id} is not owned by {requester_id}")
        return job

    def get_status(self, job_id: str, requester_id: str) -> JobStatusView:
        return JobStatusView.from_job(self.get_job(job_id, requester_id))

    def list_jobs(
        self,
        owner_id: str,
        kind: JobKind | None = None,
        limit: int = 50,
    ) -> list[JobStatusView]:
        """An owner's jobs, newest first."""
        return [
            JobStatusView.from_job(job)
            for job in self._store.list_by_owner(owner_id, kind=kind, limit=limit)
        ]
