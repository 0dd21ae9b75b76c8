"""Shared fixtures for Reel Studio tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from reelstudio.db.session import create_session_factory
from reelstudio.errors import InvalidInput
from reelstudio.jobs.models import Artifact, JobKind, PollOutcome, Submission
from reelstudio.jobs.notifier import JobNotifier
from reelstudio.jobs.orchestrator import JobOrchestrator, PollPolicy
from reelstudio.jobs.store import JobStore
from reelstudio.providers.registry import ProviderRegistry
from reelstudio.uploads import UploadStore


class TickingClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def make_upload(filename: str, content: bytes, media_type: str = "video/mp4") -> UploadFile:
    """Build the UploadFile FastAPI hands to a route for a multipart part."""
    return UploadFile(
        BytesIO(content), filename=filename, headers=Headers({"content-type": media_type})
    )


class FakeAdapter:
    """Provider adapter double with AsyncMock network calls."""

    def __init__(self, kind: JobKind, name: str = "fake", available: bool = True) -> None:
        self.kind = kind
        self.name = name
        self.is_available = available
        self.submit = AsyncMock(return_value=Submission(external_ref=f"{name}_123"))
        self.poll = AsyncMock(return_value=PollOutcome.processing())
        self.fetch_artifact = AsyncMock(
            return_value=Artifact(filename="out.mp3", media_type="audio/mpeg", content=b"ID3data")
        )
        self.cancel = AsyncMock(return_value=True)

    def validate(self, params: dict[str, Any]) -> dict[str, Any]:
        if params.get("invalid"):
            raise InvalidInput("invalid params")
        return dict(params)


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def store(clock: TickingClock) -> JobStore:
    return JobStore(create_session_factory("sqlite://"), clock=clock)


@pytest.fixture
def adapters() -> dict[JobKind, FakeAdapter]:
    return {
        JobKind.VIDEO_ANALYSIS: FakeAdapter(JobKind.VIDEO_ANALYSIS, name="analysis"),
        JobKind.DUBBING: FakeAdapter(JobKind.DUBBING, name="dubbing"),
        JobKind.AVATAR_VIDEO: FakeAdapter(JobKind.AVATAR_VIDEO, name="avatar"),
    }


@pytest.fixture
def registry(adapters: dict[JobKind, FakeAdapter]) -> ProviderRegistry:
    return ProviderRegistry(adapters.values())


@pytest.fixture
def policy() -> PollPolicy:
    return PollPolicy(interval=0.0, max_attempts=5, max_consecutive_errors=3)


@pytest.fixture
def orchestrator(store, registry, policy, tmp_path) -> JobOrchestrator:
    return JobOrchestrator(
        store,
        registry,
        policy=policy,
        artifact_dir=tmp_path / "artifacts",
        sleep=no_sleep,
    )


@pytest.fixture
def notifier(store: JobStore) -> JobNotifier:
    return JobNotifier(store)


@pytest.fixture
def uploads(tmp_path) -> UploadStore:
    return UploadStore(tmp_path / "uploads", max_upload_mb=1)
