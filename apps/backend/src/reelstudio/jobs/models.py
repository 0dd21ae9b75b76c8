"""Job domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4


class JobStatus(str, Enum):
    """Status of a job.

    Statuses only move forward along
    ``pending -> submitted -> processing -> {completed | failed}``.
    Steps may be skipped but never revisited.
    """

    PENDING = "pending"
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


_STATUS_RANK: dict[JobStatus, int] = {
    JobStatus.PENDING: 0,
    JobStatus.SUBMITTED: 1,
    JobStatus.PROCESSING: 2,
    JobStatus.COMPLETED: 3,
    JobStatus.FAILED: 3,
}

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobKind(str, Enum):
    """Type of asynchronous work delegated to a provider."""

    VIDEO_ANALYSIS = "video_analysis"
    DUBBING = "dubbing"
    AVATAR_VIDEO = "avatar_video"


@dataclass
class Job:
    """A unit of asynchronous work tracked through the job state machine."""

    owner_id: str
    kind: JobKind
    id: str = field(default_factory=lambda: str(uuid4()))
    status: JobStatus = JobStatus.PENDING
    external_ref: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] | None = None
    error: str | None = None
    poll_attempts: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class PollOutcome:
    """Provider status mapped onto the generic vocabulary."""

    status: JobStatus
    result: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def processing(cls) -> PollOutcome:
        return cls(status=JobStatus.PROCESSING)

    @classmethod
    def completed(cls, result: dict[str, Any]) -> PollOutcome:
        return cls(status=JobStatus.COMPLETED, result=result)

    @classmethod
    def failed(cls, error: str) -> PollOutcome:
        return cls(status=JobStatus.FAILED, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class Submission:
    """Result of handing work to a provider.

    ``outcome`` is set when the provider answers synchronously, in which
    case no polling is needed.
    """

    external_ref: str
    outcome: PollOutcome | None = None


@dataclass
class Artifact:
    """Downloadable output of a completed job.

    Exactly one of ``content`` (inline bytes), ``path`` (locally cached
    file) or ``url`` (remote location) is set.
    """

    filename: str
    media_type: str = "application/octet-stream"
    content: bytes | None = None
    path: Path | None = None
    url: str | None = None
