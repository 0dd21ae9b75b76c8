"""Tests for the SQLAlchemy-backed job store."""

import pytest

from reelstudio.errors import InvalidTransition, NotFound
from reelstudio.jobs.models import JobKind, JobStatus


def _submitted(store, owner="alice", kind=JobKind.DUBBING):
    job = store.create(owner, kind, {"target_lang": "en"})
    return store.record_submitted(job.id, "dub_123")


class TestCreate:
    def test_create_is_pending(self, store) -> None:
        job = store.create("alice", JobKind.DUBBING, {"target_lang": "en"})
        assert job.status == JobStatus.PENDING
        assert job.external_ref == ""
        assert job.result is None
        assert job.error is None

    def test_roundtrip(self, store) -> None:
        job = store.create("alice", JobKind.AVATAR_VIDEO, {"text": "hi"})
        loaded = store.get(job.id)
        assert loaded.id == job.id
        assert loaded.owner_id == "alice"
        assert loaded.kind == JobKind.AVATAR_VIDEO
        assert loaded.params == {"text": "hi"}
        assert loaded.created_at.tzinfo is not None

    def test_get_unknown(self, store) -> None:
        with pytest.raises(NotFound):
            store.get("missing")


class TestListing:
    def test_newest_first(self, store) -> None:
        first = store.create("alice", JobKind.DUBBING, {})
        second = store.create("alice", JobKind.DUBBING, {})
        third = store.create("alice", JobKind.AVATAR_VIDEO, {})
        assert [j.id for j in store.list_by_owner("alice")] == [third.id, second.id, first.id]

    def test_filters_owner_and_kind(self, store) -> None:
        mine = store.create("alice", JobKind.DUBBING, {})
        store.create("alice", JobKind.AVATAR_VIDEO, {})
        store.create("bob", JobKind.DUBBING, {})
        jobs = store.list_by_owner("alice", kind=JobKind.DUBBING)
        assert [j.id for j in jobs] == [mine.id]

    def test_limit(self, store) -> None:
        for _ in range(5):
            store.create("alice", JobKind.DUBBING, {})
        assert len(store.list_by_owner("alice", limit=3)) == 3

    def test_list_unfinished(self, store) -> None:
        store.create("alice", JobKind.DUBBING, {})
        submitted = _submitted(store)
        processing = _submitted(store)
        store.record_progress(processing.id)
        done = _submitted(store)
        store.record_terminal(done.id, JobStatus.COMPLETED, result={"ok": True})
        ids = {j.id for j in store.list_unfinished()}
        assert ids == {submitted.id, processing.id}


class TestRecordSubmitted:
    def test_pending_to_submitted(self, store) -> None:
        job = _submitted(store)
        assert job.status == JobStatus.SUBMITTED
        assert job.external_ref == "dub_123"

    def test_unknown_job(self, store) -> None:
        with pytest.raises(NotFound):
            store.record_submitted("missing", "dub_1")

    def test_twice_is_invalid(self, store) -> None:
        job = _submitted(store)
        with pytest.raises(InvalidTransition):
            store.record_submitted(job.id, "dub_456")

    def test_empty_ref_rejected(self, store) -> None:
        job = store.create("alice", JobKind.DUBBING, {})
        with pytest.raises(ValueError):
            store.record_submitted(job.id, "")


class TestRecordProgress:
    def test_submitted_to_processing(self, store) -> None:
        job = store.record_progress(_submitted(store).id)
        assert job.status == JobStatus.PROCESSING

    def test_redundant_progress_is_noop(self, store) -> None:
        job = store.record_progress(_submitted(store).id)
        again = store.record_progress(job.id)
        assert again.status == JobStatus.PROCESSING
        assert again.updated_at == job.updated_at

    def test_from_pending_is_invalid(self, store) -> None:
        job = store.create("alice", JobKind.DUBBING, {})
        with pytest.raises(InvalidTransition):
            store.record_progress(job.id)

    def test_after_terminal_is_invalid(self, store) -> None:
        job = _submitted(store)
        store.record_terminal(job.id, JobStatus.FAILED, error="ProviderFailed: boom")
        with pytest.raises(InvalidTransition):
            store.record_progress(job.id)

    def test_only_processing_accepted(self, store) -> None:
        job = _submitted(store)
        with pytest.raises(ValueError):
            store.record_progress(job.id, JobStatus.COMPLETED)


class TestRecordTerminal:
    def test_complete(self, store) -> None:
        job = _submitted(store)
        done = store.record_terminal(job.id, JobStatus.COMPLETED, result={"url": "x"})
        assert done.status == JobStatus.COMPLETED
        assert done.result == {"url": "x"}
        assert done.error is None

    def test_fail_from_pending(self, store) -> None:
        job = store.create("alice", JobKind.DUBBING, {})
        failed = store.record_terminal(job.id, JobStatus.FAILED, error="ProviderUnavailable: down")
        assert failed.status == JobStatus.FAILED
        assert failed.external_ref == ""

    def test_complete_from_pending_is_invalid(self, store) -> None:
        job = store.create("alice", JobKind.DUBBING, {})
        with pytest.raises(InvalidTransition):
            store.record_terminal(job.id, JobStatus.COMPLETED, result={"url": "x"})

    def test_same_outcome_twice_is_noop(self, store) -> None:
        job = _submitted(store)
        first = store.record_terminal(job.id, JobStatus.COMPLETED, result={"url": "x"})
        second = store.record_terminal(job.id, JobStatus.COMPLETED, result={"url": "x"})
        assert second.status == JobStatus.COMPLETED
        assert second.updated_at == first.updated_at

    def test_different_outcome_is_invalid(self, store) -> None:
        job = _submitted(store)
        store.record_terminal(job.id, JobStatus.COMPLETED, result={"url": "x"})
        with pytest.raises(InvalidTransition):
            store.record_terminal(job.id, JobStatus.FAILED, error="PollTimeout: late")

    def test_completed_requires_result(self, store) -> None:
        job = _submitted(store)
        with pytest.raises(ValueError):
            store.record_terminal(job.id, JobStatus.COMPLETED, result={})

    def test_failed_requires_error(self, store) -> None:
        job = _submitted(store)
        with pytest.raises(ValueError):
            store.record_terminal(job.id, JobStatus.FAILED)

    def test_non_terminal_status_rejected(self, store) -> None:
        job = _submitted(store)
        with pytest.raises(ValueError):
            store.record_terminal(job.id, JobStatus.PROCESSING)


class TestPollAttemptsAndDelete:
    def test_poll_counter(self, store) -> None:
        job = _submitted(store)
        assert store.record_poll_attempt(job.id) == 1
        assert store.record_poll_attempt(job.id) == 2
        assert store.get(job.id).poll_attempts == 2

    def test_poll_counter_unknown_job(self, store) -> None:
        with pytest.raises(NotFound):
            store.record_poll_attempt("missing")

    def test_delete(self, store) -> None:
        job = _submitted(store)
        store.delete(job.id)
        with pytest.raises(NotFound):
            store.get(job.id)
        with pytest.raises(NotFound):
            store.delete(job.id)
