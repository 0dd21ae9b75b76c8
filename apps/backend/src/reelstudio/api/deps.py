"""FastAPI dependencies."""

from __future__ import annotations

from fastapi import Header, HTTPException

from reelstudio.jobs.notifier import JobNotifier
from reelstudio.jobs.orchestrator import JobOrchestrator
from reelstudio.providers.registry import ProviderRegistry
from reelstudio.uploads import UploadStore

_orchestrator: JobOrchestrator | None = None
_notifier: JobNotifier | None = None
_registry: ProviderRegistry | None = None
_uploads: UploadStore | None = None


def init_services(
    orchestrator: JobOrchestrator,
    notifier: JobNotifier,
    registry: ProviderRegistry,
    uploads: UploadStore,
) -> None:
    """Install the job services (called at app startup)."""
    global _orchestrator, _notifier, _registry, _uploads
    _orchestrator = orchestrator
    _notifier = notifier
    _registry = registry
    _uploads = uploads


def reset_services() -> None:
    global _orchestrator, _notifier, _registry, _uploads
    _orchestrator = None
    _notifier = None
    _registry = None
    _uploads = None


def get_orchestrator() -> JobOrchestrator:
    """Dependency that provides the JobOrchestrator instance."""
    if _orchestrator is None:
        raise RuntimeError("JobOrchestrator not initialized, call init_services() first")
    return _orchestrator


def get_notifier() -> JobNotifier:
    """Dependency that provides the JobNotifier instance."""
    if _notifier is None:
        raise RuntimeError("JobNotifier not initialized, call init_services() first")
    return _notifier


def get_registry() -> ProviderRegistry:
    """Dependency that provides the ProviderRegistry instance."""
    if _registry is None:
        raise RuntimeError("ProviderRegistry not initialized, call init_services() first")
    return _registry


def get_uploads() -> UploadStore:
    """Dependency that provides the UploadStore instance."""
    if _uploads is None:
        raise RuntimeError("UploadStore not initialized, call init_services() first")
    return _uploads


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Principal of the request, taken from the ``X-User-Id`` header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()
