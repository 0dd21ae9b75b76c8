"""Job lifecycle for Reel Studio."""

from reelstudio.jobs.models import Artifact, Job, JobKind, JobStatus, PollOutcome, Submission
from reelstudio.jobs.notifier import JobNotifier, JobStatusView
from reelstudio.jobs.orchestrator import JobOrchestrator, PollPolicy
from reelstudio.jobs.store import JobStore

__all__ = [
    "Artifact",
    "Job",
    "JobKind",
    "JobNotifier",
    "JobOrchestrator",
    "JobStatus",
    "JobStatusView",
    "JobStore",
    "PollOutcome",
    "PollPolicy",
    "Submission",
]
