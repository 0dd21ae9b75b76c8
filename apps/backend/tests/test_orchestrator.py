"""Tests for the job orchestrator."""

import asyncio
import threading

import pytest

from reelstudio.errors import (
    Forbidden,
    InvalidInput,
    InvalidTransition,
    NotReady,
    PollTimeout,
    ProviderFailed,
    ProviderUnavailable,
    error_code,
)
from reelstudio.jobs.models import Artifact, JobKind, JobStatus, PollOutcome, Submission
from reelstudio.jobs.orchestrator import JobOrchestrator, PollPolicy

DUB_RESULT = {
    "dubbing_id": "dub_123",
    "target_lang": "en",
    "artifact": {"kind": "download", "path": "/dubbing/dub_123/audio/en"},
}


async def _submit_dubbing(orchestrator, owner="alice"):
    return await orchestrator.submit(
        owner, JobKind.DUBBING, {"source_lang": "ru", "target_lang": "en"}, schedule=False
    )


class TestSubmit:
    @pytest.mark.asyncio
    async def test_happy_path_dubbing(self, orchestrator, adapters, store) -> None:
        dubbing = adapters[JobKind.DUBBING]
        dubbing.submit.return_value = Submission(external_ref="dub_123")

        job = await _submit_dubbing(orchestrator)
        assert job.status == JobStatus.SUBMITTED
        assert job.external_ref == "dub_123"

        dubbing.poll.return_value = PollOutcome.processing()
        job = await orchestrator.advance(job.id)
        assert job.status == JobStatus.PROCESSING

        dubbing.poll.return_value = PollOutcome.completed(DUB_RESULT)
        job = await orchestrator.advance(job.id)
        assert job.status == JobStatus.COMPLETED
        assert job.result["artifact"]["path"] == "/dubbing/dub_123/audio/en"
        assert store.get(job.id).status == JobStatus.COMPLETED
        dubbing.poll.assert_awaited_with("dub_123")

    @pytest.mark.asyncio
    async def test_submit_failure_fails_job(self, orchestrator, adapters, store) -> None:
        adapters[JobKind.DUBBING].submit.side_effect = ProviderUnavailable("connection refused")

        job = await _submit_dubbing(orchestrator)

        assert job.status == JobStatus.FAILED
        assert "ProviderUnavailable" in job.error
        assert "connection refused" in job.error
        assert job.external_ref == ""
        assert store.get(job.id).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_provider_rejection_keeps_code(self, orchestrator, adapters) -> None:
        adapters[JobKind.AVATAR_VIDEO].submit.side_effect = InvalidInput("avatar not found")

        job = await orchestrator.submit("alice", JobKind.AVATAR_VIDEO, {"text": "hi"}, schedule=False)

        assert job.status == JobStatus.FAILED
        assert job.error.startswith("InvalidInput:")

    @pytest.mark.asyncio
    async def test_unexpected_submit_error(self, orchestrator, adapters) -> None:
        adapters[JobKind.DUBBING].submit.side_effect = RuntimeError("boom")

        job = await _submit_dubbing(orchestrator)

        assert job.status == JobStatus.FAILED
        assert job.error.startswith("ProviderUnavailable:")

    @pytest.mark.asyncio
    async def test_invalid_params_create_no_job(self, orchestrator, adapters, store) -> None:
        with pytest.raises(InvalidInput):
            await orchestrator.submit("alice", JobKind.DUBBING, {"invalid": True})
        assert store.list_by_owner("alice") == []
        adapters[JobKind.DUBBING].submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unavailable_provider_creates_no_job(self, orchestrator, adapters, store) -> None:
        adapters[JobKind.AVATAR_VIDEO].is_available = False
        with pytest.raises(ProviderUnavailable):
            await orchestrator.submit("alice", JobKind.AVATAR_VIDEO, {"text": "hi"})
        assert store.list_by_owner("alice") == []

    @pytest.mark.asyncio
    async def test_synchronous_provider_completes_immediately(self, orchestrator, adapters) -> None:
        analysis = adapters[JobKind.VIDEO_ANALYSIS]
        analysis.submit.return_value = Submission(
            external_ref="msg_1",
            outcome=PollOutcome.completed({"analysis": {"summary": "ok"}}),
        )

        job = await orchestrator.submit("alice", JobKind.VIDEO_ANALYSIS, {"transcript": "text"})

        assert job.status == JobStatus.COMPLETED
        assert job.external_ref == "msg_1"
        assert job.result == {"analysis": {"summary": "ok"}}
        analysis.poll.assert_not_awaited()


class TestAdvance:
    @pytest.mark.asyncio
    async def test_poll_timeout_never_exceeds_budget(self, orchestrator, adapters, policy) -> None:
        dubbing = adapters[JobKind.DUBBING]
        job = await _submit_dubbing(orchestrator)

        for _ in range(policy.max_attempts * 2):
            job = await orchestrator.advance(job.id)

        assert job.status == JobStatus.FAILED
        assert job.error == (
            "PollTimeout: no terminal status from dubbing after 5 polls; "
            "provider-side cancellation was requested"
        )
        assert error_code(job.error) == PollTimeout.code
        assert dubbing.poll.await_count == policy.max_attempts
        dubbing.cancel.assert_awaited_once_with("dubbing_123")

    @pytest.mark.asyncio
    async def test_timeout_reports_running_work_when_cancel_fails(
        self, orchestrator, adapters, policy
    ) -> None:
        adapters[JobKind.DUBBING].cancel.side_effect = ProviderUnavailable("nope")
        job = await _submit_dubbing(orchestrator)

        for _ in range(policy.max_attempts):
            job = await orchestrator.advance(job.id)

        assert job.status == JobStatus.FAILED
        assert "may still be running" in job.error

    @pytest.mark.asyncio
    async def test_persisted_budget_survives_restart(self, orchestrator, adapters, store, policy) -> None:
        job = await _submit_dubbing(orchestrator)
        for _ in range(policy.max_attempts):
            store.record_poll_attempt(job.id)

        job = await orchestrator.advance(job.id)

        assert job.status == JobStatus.FAILED
        assert job.error.startswith("PollTimeout")
        adapters[JobKind.DUBBING].poll.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_failure(self, orchestrator, adapters) -> None:
        adapters[JobKind.DUBBING].poll.return_value = PollOutcome.failed("unsupported codec")
        job = await _submit_dubbing(orchestrator)

        job = await orchestrator.advance(job.id)

        assert job.status == JobStatus.FAILED
        assert job.error == "ProviderFailed: dubbing reported failure: unsupported codec"
        assert error_code(job.error) == ProviderFailed.code

    @pytest.mark.asyncio
    async def test_consecutive_poll_errors_fail_job(self, orchestrator, adapters, policy) -> None:
        adapters[JobKind.DUBBING].poll.side_effect = ProviderUnavailable("HTTP 503")
        job = await _submit_dubbing(orchestrator)

        for _ in range(policy.max_consecutive_errors):
            job = await orchestrator.advance(job.id)

        assert job.status == JobStatus.FAILED
        assert job.error == "ProviderUnavailable: polling dubbing failed 3 times in a row: HTTP 503"

    @pytest.mark.asyncio
    async def test_transient_error_is_not_job_failure(self, orchestrator, adapters) -> None:
        adapters[JobKind.DUBBING].poll.side_effect = [
            ProviderUnavailable("blip"),
            PollOutcome.processing(),
            ProviderUnavailable("blip"),
            ProviderUnavailable("blip"),
            PollOutcome.completed(DUB_RESULT),
        ]
        job = await _submit_dubbing(orchestrator)

        statuses = []
        for _ in range(5):
            job = await orchestrator.advance(job.id)
            statuses.append(job.status)

        assert statuses == [
            JobStatus.SUBMITTED,
            JobStatus.PROCESSING,
            JobStatus.PROCESSING,
            JobStatus.PROCESSING,
            JobStatus.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_completed_without_result_fails(self, orchestrator, adapters) -> None:
        adapters[JobKind.DUBBING].poll.return_value = PollOutcome(status=JobStatus.COMPLETED)
        job = await _submit_dubbing(orchestrator)

        job = await orchestrator.advance(job.id)

        assert job.status == JobStatus.FAILED
        assert job.error.startswith("ProviderUnavailable:")

    @pytest.mark.asyncio
    async def test_terminal_job_is_not_polled(self, orchestrator, adapters) -> None:
        adapters[JobKind.DUBBING].poll.return_value = PollOutcome.completed(DUB_RESULT)
        job = await _submit_dubbing(orchestrator)
        await orchestrator.advance(job.id)

        await orchestrator.advance(job.id)

        assert adapters[JobKind.DUBBING].poll.await_count == 1

    @pytest.mark.asyncio
    async def test_pending_job_cannot_advance(self, orchestrator, store) -> None:
        job = store.create("alice", JobKind.DUBBING, {})
        with pytest.raises(InvalidTransition):
            await orchestrator.advance(job.id)

    @pytest.mark.asyncio
    async def test_polls_for_same_job_are_serialized(self, orchestrator, adapters) -> None:
        in_flight = 0
        peak = 0

        async def slow_poll(external_ref):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return PollOutcome.processing()

        adapters[JobKind.DUBBING].poll.side_effect = slow_poll
        job = await _submit_dubbing(orchestrator)

        await asyncio.gather(*(orchestrator.advance(job.id) for _ in range(3)))

        assert peak == 1
        assert adapters[JobKind.DUBBING].poll.await_count == 3


class TestScheduling:
    @pytest.mark.asyncio
    async def test_poll_loop_runs_to_completion(self, orchestrator, adapters) -> None:
        adapters[JobKind.DUBBING].poll.side_effect = [
            PollOutcome.processing(),
            PollOutcome.processing(),
            PollOutcome.completed(DUB_RESULT),
        ]
        job = await _submit_dubbing(orchestrator)

        final = await orchestrator.schedule(job.id)

        assert final.status == JobStatus.COMPLETED
        assert adapters[JobKind.DUBBING].poll.await_count == 3

    @pytest.mark.asyncio
    async def test_poll_loop_stops_at_timeout(self, orchestrator, adapters, policy) -> None:
        job = await _submit_dubbing(orchestrator)

        final = await orchestrator.schedule(job.id)

        assert final.status == JobStatus.FAILED
        assert final.error.startswith("PollTimeout")
        assert adapters[JobKind.DUBBING].poll.await_count == policy.max_attempts

    @pytest.mark.asyncio
    async def test_schedule_reuses_running_task(self, store, registry) -> None:
        gate = asyncio.Event()

        async def blocked(seconds):
            await gate.wait()

        orchestrator = JobOrchestrator(store, registry, policy=PollPolicy(interval=0), sleep=blocked)
        job = await _submit_dubbing(orchestrator)

        first = orchestrator.schedule(job.id)
        assert orchestrator.schedule(job.id) is first

        await orchestrator.shutdown()
        assert first.cancelled()

    @pytest.mark.asyncio
    async def test_resume_unfinished(self, orchestrator, adapters, store) -> None:
        adapters[JobKind.DUBBING].poll.return_value = PollOutcome.completed(DUB_RESULT)
        pending = store.create("alice", JobKind.DUBBING, {})
        job = store.create("alice", JobKind.DUBBING, {})
        store.record_submitted(job.id, "dub_9")

        assert await orchestrator.resume_unfinished() == 1
        await orchestrator.schedule(job.id)

        assert store.get(job.id).status == JobStatus.COMPLETED
        assert store.get(pending.id).status == JobStatus.PENDING
        adapters[JobKind.DUBBING].poll.assert_awaited_once_with("dub_9")

    @pytest.mark.asyncio
    async def test_submit_schedules_polling(self, orchestrator, adapters) -> None:
        adapters[JobKind.DUBBING].poll.return_value = PollOutcome.completed(DUB_RESULT)

        job = await orchestrator.submit("alice", JobKind.DUBBING, {"target_lang": "en"})
        assert job.status == JobStatus.SUBMITTED

        final = await orchestrator.schedule(job.id)
        assert final.status == JobStatus.COMPLETED


class TestOwnerOperations:
    @pytest.mark.asyncio
    async def test_artifact_not_ready(self, orchestrator) -> None:
        job = await _submit_dubbing(orchestrator)
        with pytest.raises(NotReady):
            await orchestrator.fetch_artifact(job.id, "alice")

    @pytest.mark.asyncio
    async def test_artifact_requires_owner(self, orchestrator, adapters) -> None:
        adapters[JobKind.DUBBING].poll.return_value = PollOutcome.completed(DUB_RESULT)
        job = await _submit_dubbing(orchestrator)
        await orchestrator.advance(job.id)

        with pytest.raises(Forbidden):
            await orchestrator.fetch_artifact(job.id, "mallory")

    @pytest.mark.asyncio
    async def test_artifact_bytes_are_cached(self, orchestrator, adapters, tmp_path) -> None:
        dubbing = adapters[JobKind.DUBBING]
        dubbing.poll.return_value = PollOutcome.completed(DUB_RESULT)
        job = await _submit_dubbing(orchestrator)
        await orchestrator.advance(job.id)

        first = await orchestrator.fetch_artifact(job.id, "alice")
        second = await orchestrator.fetch_artifact(job.id, "alice")

        assert first.path == tmp_path / "artifacts" / job.id / "out.mp3"
        assert first.path.read_bytes() == b"ID3data"
        assert second.path == first.path
        assert second.media_type == "audio/mpeg"
        dubbing.fetch_artifact.assert_awaited_once_with("dubbing_123", DUB_RESULT)

    @pytest.mark.asyncio
    async def test_url_artifact_passes_through(self, orchestrator, adapters) -> None:
        avatar = adapters[JobKind.AVATAR_VIDEO]
        avatar.poll.return_value = PollOutcome.completed({"video_url": "https://cdn/v.mp4"})
        avatar.fetch_artifact.return_value = Artifact(
            filename="v.mp4", media_type="video/mp4", url="https://cdn/v.mp4"
        )
        job = await orchestrator.submit("alice", JobKind.AVATAR_VIDEO, {"text": "hi"}, schedule=False)
        await orchestrator.advance(job.id)

        artifact = await orchestrator.fetch_artifact(job.id, "alice")

        assert artifact.url == "https://cdn/v.mp4"
        assert artifact.path is None

    @pytest.mark.asyncio
    async def test_delete_in_flight_job(self, orchestrator, adapters, store) -> None:
        job = await _submit_dubbing(orchestrator)

        await orchestrator.delete(job.id, "alice")

        assert store.list_by_owner("alice") == []
        adapters[JobKind.DUBBING].cancel.assert_awaited_once_with("dubbing_123")

    @pytest.mark.asyncio
    async def test_delete_removes_cached_artifact(self, orchestrator, adapters, tmp_path) -> None:
        adapters[JobKind.DUBBING].poll.return_value = PollOutcome.completed(DUB_RESULT)
        job = await _submit_dubbing(orchestrator)
        await orchestrator.advance(job.id)
        artifact = await orchestrator.fetch_artifact(job.id, "alice")

        await orchestrator.delete(job.id, "alice")

        assert not artifact.path.exists()
        adapters[JobKind.DUBBING].cancel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_requires_owner(self, orchestrator, store) -> None:
        job = await _submit_dubbing(orchestrator)
        with pytest.raises(Forbidden):
            await orchestrator.delete(job.id, "mallory")
        assert store.get(job.id).id == job.id


class TestBookkeeping:
    @pytest.mark.asyncio
    async def test_finished_submissions_release_locks(self, orchestrator, adapters) -> None:
        adapters[JobKind.VIDEO_ANALYSIS].submit.return_value = Submission(
            external_ref="msg_1", outcome=PollOutcome.completed({"analysis": {"summary": "ok"}})
        )
        adapters[JobKind.DUBBING].submit.side_effect = ProviderUnavailable("HTTP 503")

        for _ in range(50):
            await orchestrator.submit("alice", JobKind.VIDEO_ANALYSIS, {"transcript": "text"})
            await _submit_dubbing(orchestrator)

        assert orchestrator._locks == {}
        assert orchestrator._error_streaks == {}

    @pytest.mark.asyncio
    async def test_unscheduled_submission_holds_no_lock(self, orchestrator) -> None:
        await _submit_dubbing(orchestrator)
        assert orchestrator._locks == {}

    @pytest.mark.asyncio
    async def test_timeout_clears_error_streak(self, orchestrator, adapters, policy) -> None:
        adapters[JobKind.DUBBING].poll.side_effect = [
            PollOutcome.processing(),
            PollOutcome.processing(),
            PollOutcome.processing(),
            ProviderUnavailable("blip"),
            ProviderUnavailable("blip"),
        ]
        job = await _submit_dubbing(orchestrator)

        for _ in range(policy.max_attempts):
            job = await orchestrator.advance(job.id)

        assert job.error.startswith("PollTimeout:")
        assert orchestrator._error_streaks == {}
        assert orchestrator._locks == {}

    @pytest.mark.asyncio
    async def test_in_flight_job_keeps_its_lock(self, orchestrator, adapters) -> None:
        job = await _submit_dubbing(orchestrator)
        await orchestrator.advance(job.id)
        assert set(orchestrator._locks) == {job.id}

    @pytest.mark.asyncio
    async def test_poll_loop_failure_releases_lock(self, orchestrator, adapters) -> None:
        adapters[JobKind.DUBBING].poll.side_effect = RuntimeError("boom")
        job = await _submit_dubbing(orchestrator)

        final = await orchestrator.schedule(job.id)

        assert final.status == JobStatus.FAILED
        assert final.error == "ProviderUnavailable: unexpected polling error: RuntimeError('boom')"
        assert orchestrator._locks == {}

    @pytest.mark.asyncio
    async def test_poll_loop_for_deleted_job_releases_lock(self, orchestrator, store) -> None:
        job = await _submit_dubbing(orchestrator)
        store.delete(job.id)

        assert await orchestrator.schedule(job.id) is None
        assert orchestrator._locks == {}

    @pytest.mark.asyncio
    async def test_store_calls_run_off_the_event_loop(self, orchestrator, adapters, store, monkeypatch) -> None:
        loop_thread = threading.get_ident()
        threads: list[int] = []

        for name in ("create", "get", "record_submitted", "record_poll_attempt", "record_progress"):
            original = getattr(store, name)

            def spy(*args, _original=original, **kwargs):
                threads.append(threading.get_ident())
                return _original(*args, **kwargs)

            monkeypatch.setattr(store, name, spy)

        job = await _submit_dubbing(orchestrator)
        await orchestrator.advance(job.id)

        assert len(threads) == 5
        assert loop_thread not in threads
