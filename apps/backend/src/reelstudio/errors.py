"""Custom exceptions for Reel Studio.

Every exception carries a ``code`` matching its class name. Failed jobs
store their error as ``"<code>: <detail>"`` so the failure category can
be recovered from the persisted text.
"""


class ReelStudioError(Exception):
    """Base exception for Reel Studio."""

    code = "ReelStudioError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def as_job_error(self, context: str = "") -> str:
        """Format the exception for storage in ``Job.error``.

        ``context`` names the step that failed and goes before the message.
        """
        detail = ": ".join(part for part in (context, self.message) if part)
        if detail:
            return f"{self.code}: {detail}"
        return self.code


class InvalidInput(ReelStudioError):
    """Request parameters failed validation (locally or at the provider)."""

    code = "InvalidInput"


class ProviderUnavailable(ReelStudioError):
    """Provider unreachable, erroring, or answering with an unusable body."""

    code = "ProviderUnavailable"


class ProviderFailed(ReelStudioError):
    """Provider reported that the job itself failed."""

    code = "ProviderFailed"


class PollTimeout(ReelStudioError):
    """Poll budget exhausted without a terminal provider status."""

    code = "PollTimeout"


class NotReady(ReelStudioError):
    """Artifact requested before the job completed."""

    code = "NotReady"


class NoArtifact(ReelStudioError):
    """Completed job whose kind produces nothing to download."""

    code = "NoArtifact"


class NotFound(ReelStudioError):
    """Job does not exist."""

    code = "NotFound"


class Forbidden(ReelStudioError):
    """Requester does not own the job."""

    code = "Forbidden"


class InvalidTransition(ReelStudioError):
    """Attempt to move a job backward or out of a terminal state."""

    code = "InvalidTransition"


def error_code(job_error: str | None) -> str | None:
    """Return the taxonomy code a stored job error starts with."""
    if not job_error:
        return None
    return job_error.split(":", 1)[0].strip()
