from datetime import datetime, timedelta, timezone

import pytest

from couchflow.errors import (
    ConflictError,
    NotFoundError,
    RequestValidationError,
    StoreError,
)
from couchflow.lifecycle import DocumentLifecycleManager
from couchflow.models import ProcessDocument, ProcessState
from couchflow.store import InMemoryBackingStore


class TickingClock:
    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


def _manager(clock=None):
    store = InMemoryBackingStore()
    return DocumentLifecycleManager(store, clock=clock or TickingClock()), store


def test_save_defaults_id_to_process_id():
    manager, _ = _manager()
    result = manager.save(ProcessDocument(process_id="p1", state=ProcessState.STARTED))

    assert result.ok
    assert result.id == "p1"
    assert result.rev.startswith("1-")
    assert manager.get("p1").id == "p1"


def test_save_keeps_explicit_id():
    manager, _ = _manager()
    result = manager.save(
        ProcessDocument(id="custom", process_id="p1", state=ProcessState.STARTED)
    )

    assert result.id == "custom"
    doc = manager.get("custom")
    assert doc.process_id == "p1"
    with pytest.raises(NotFoundError):
        manager.get("p1")


def test_save_requires_some_identifier():
    manager, _ = _manager()
    with pytest.raises(RequestValidationError):
        manager.save(ProcessDocument(state=ProcessState.STARTED))


def test_first_save_initialises_history_and_timestamps():
    manager, _ = _manager()
    manager.save(
        ProcessDocument(process_id="p1", state=ProcessState.STARTED, description="queued")
    )

    doc = manager.get("p1")
    assert len(doc.history) == 1
    assert doc.history[0].state == ProcessState.STARTED
    assert doc.created_at == doc.history[0].timestamp == doc.updated_at
    assert doc.description == "queued"


def test_history_grows_by_one_per_save_and_stays_ordered():
    manager, _ = _manager()
    states = [
        ProcessState.STARTED,
        ProcessState.RUNNING,
        ProcessState.RUNNING,
        ProcessState.FAILED,
    ]
    previous_len = 0
    for state in states:
        manager.save(ProcessDocument(process_id="p1", state=state))
        doc = manager.get("p1")
        assert len(doc.history) == previous_len + 1
        previous_len = len(doc.history)

    doc = manager.get("p1")
    assert [change.state for change in doc.history] == states
    timestamps = [change.timestamp for change in doc.history]
    assert timestamps == sorted(timestamps)
    assert doc.created_at <= timestamps[0]
    assert timestamps[-1] <= doc.updated_at
    assert doc.state == ProcessState.FAILED


def test_created_at_is_immutable_after_first_save():
    manager, _ = _manager()
    manager.save(ProcessDocument(process_id="p1", state=ProcessState.STARTED))
    created = manager.get("p1").created_at

    for state in (ProcessState.RUNNING, ProcessState.SUCCESSFUL):
        manager.save(
            ProcessDocument(
                process_id="p1",
                state=state,
                created_at=datetime(1999, 1, 1, tzinfo=timezone.utc),
            )
        )
        assert manager.get("p1").created_at == created


def test_history_entry_carries_error_message():
    manager, _ = _manager()
    manager.save(ProcessDocument(process_id="p1", state=ProcessState.STARTED))
    manager.save(
        ProcessDocument(process_id="p1", state=ProcessState.FAILED, error_message="timeout")
    )

    doc = manager.get("p1")
    assert doc.history[0].error_message == ""
    assert doc.history[1].error_message == "timeout"
    assert doc.error_message == "timeout"


def test_revision_changes_on_every_save():
    manager, _ = _manager()
    revs = [
        manager.save(ProcessDocument(process_id="p1", state=ProcessState.RUNNING)).rev
        for _ in range(3)
    ]
    assert len(set(revs)) == 3
    assert manager.get("p1").revision == revs[-1]


def test_stale_revision_conflicts_without_mutating_stored_document():
    manager, _ = _manager()
    first = manager.save(ProcessDocument(process_id="p1", state=ProcessState.STARTED))
    manager.save(ProcessDocument(process_id="p1", state=ProcessState.RUNNING))
    before = manager.get("p1")

    with pytest.raises(ConflictError) as excinfo:
        manager.save(
            ProcessDocument(
                process_id="p1", revision=first.rev, state=ProcessState.FAILED
            )
        )

    assert excinfo.value.is_conflict
    assert manager.get("p1") == before


def test_explicit_revision_skips_history_merge():
    manager, _ = _manager()
    manager.save(ProcessDocument(process_id="p1", state=ProcessState.STARTED))
    current = manager.get("p1")

    updated = current.model_copy(update={"state": ProcessState.RUNNING, "history": []})
    result = manager.save(updated)

    doc = manager.get("p1")
    assert doc.revision == result.rev
    assert doc.history == []
    assert doc.state == ProcessState.RUNNING


def test_save_does_not_mutate_callers_document():
    manager, _ = _manager()
    doc = ProcessDocument(process_id="p1", state=ProcessState.STARTED)
    manager.save(doc)

    assert doc.id == ""
    assert doc.revision == ""
    assert doc.history == []
    assert doc.updated_at is None


def test_fetch_failure_other_than_not_found_propagates():
    class FailingGetStore(InMemoryBackingStore):
        def get(self, doc_id):
            raise StoreError("get", 500, "internal_server_error", "boom")

    store = FailingGetStore()
    manager = DocumentLifecycleManager(store)

    with pytest.raises(StoreError) as excinfo:
        manager.save(ProcessDocument(process_id="p1", state=ProcessState.STARTED))

    assert excinfo.value.status_code == 500
    assert list(store.enumerate_all()) == []


def test_history_stays_ordered_when_clock_goes_backwards():
    clock = TickingClock(step=timedelta(seconds=-5))
    manager, _ = _manager(clock)
    manager.save(ProcessDocument(process_id="p1", state=ProcessState.STARTED))
    manager.save(ProcessDocument(process_id="p1", state=ProcessState.RUNNING))

    doc = manager.get("p1")
    assert doc.history[1].timestamp >= doc.history[0].timestamp
    assert doc.updated_at >= doc.history[-1].timestamp


def test_get_missing_document_raises_not_found():
    manager, _ = _manager()
    with pytest.raises(NotFoundError) as excinfo:
        manager.get("missing")
    assert excinfo.value.is_not_found
    assert excinfo.value.operation == "get"


def test_delete_requires_matching_revision():
    manager, _ = _manager()
    first = manager.save(ProcessDocument(process_id="p1", state=ProcessState.STARTED))
    second = manager.save(ProcessDocument(process_id="p1", state=ProcessState.RUNNING))

    with pytest.raises(ConflictError):
        manager.delete("p1", first.rev)
    assert manager.get("p1").revision == second.rev

    manager.delete("p1", second.rev)
    with pytest.raises(NotFoundError):
        manager.get("p1")
    with pytest.raises(NotFoundError):
        manager.delete("p1", second.rev)


def test_delete_validates_arguments():
    manager, _ = _manager()
    with pytest.raises(RequestValidationError):
        manager.delete("p1", "")


def test_save_after_delete_starts_new_history():
    manager, _ = _manager()
    manager.save(ProcessDocument(process_id="p1", state=ProcessState.STARTED))
    result = manager.save(ProcessDocument(process_id="p1", state=ProcessState.RUNNING))
    manager.delete("p1", result.rev)

    manager.save(ProcessDocument(process_id="p1", state=ProcessState.STARTED))
    assert len(manager.get("p1").history) == 1


def test_bulk_save_seeds_history_and_reports_rejections():
    manager, store = _manager()
    existing = manager.save(ProcessDocument(process_id="a", state=ProcessState.STARTED))

    results = manager.bulk_save(
        [
            ProcessDocument(process_id="a", state=ProcessState.RUNNING),
            ProcessDocument(process_id="b", state=ProcessState.STARTED),
        ]
    )

    assert [r.id for r in results] == ["a", "b"]
    assert not results[0].ok
    assert isinstance(results[0].exception(), ConflictError)
    assert results[1].ok and results[1].rev.startswith("1-")
    assert results[1].exception() is None

    created = manager.get("b")
    assert [c.state for c in created.history] == [ProcessState.STARTED]
    assert created.created_at == created.updated_at
    assert manager.get("a").revision == existing.rev


def test_bulk_save_requires_identifiers_before_writing():
    manager, store = _manager()
    with pytest.raises(RequestValidationError):
        manager.bulk_save(
            [
                ProcessDocument(process_id="a", state=ProcessState.STARTED),
                ProcessDocument(state=ProcessState.STARTED),
            ]
        )
    with pytest.raises(NotFoundError):
        store.get("a")


def test_bulk_upsert_overwrites_existing_documents():
    manager, _ = _manager()
    manager.save(ProcessDocument(process_id="a", state=ProcessState.STARTED))

    results = manager.bulk_upsert(
        [
            ProcessDocument(process_id="a", state=ProcessState.SUCCESSFUL),
            ProcessDocument(process_id="b", state=ProcessState.RUNNING),
        ]
    )

    assert all(r.ok for r in results)
    assert results[0].rev.startswith("2-")
    assert manager.get("a").state == ProcessState.SUCCESSFUL
    assert manager.get("b").state == ProcessState.RUNNING


def test_bulk_delete_and_bulk_get():
    manager, _ = _manager()
    a = manager.save(ProcessDocument(process_id="a", state=ProcessState.STARTED))
    manager.save(ProcessDocument(process_id="b", state=ProcessState.FAILED))

    results = manager.bulk_delete([("a", a.rev), ("b", "1-stale")])
    assert results[0].ok
    assert isinstance(results[1].exception("bulk_delete"), ConflictError)

    found, errors = manager.bulk_get(["a", "b"])
    assert list(found) == ["b"]
    assert found["b"].state == ProcessState.FAILED
    assert isinstance(errors["a"], NotFoundError)


def test_bulk_delete_validates_arguments():
    manager, _ = _manager()
    with pytest.raises(RequestValidationError):
        manager.bulk_delete([("a", "")])


def test_bulk_update_rewrites_matching_documents_and_records_state():
    manager, _ = _manager()
    for process_id, state in (("a", ProcessState.RUNNING), ("b", ProcessState.RUNNING), ("c", ProcessState.FAILED)):
        manager.save(ProcessDocument(process_id=process_id, state=state))

    def abort(doc):
        doc.state = ProcessState.FAILED
        doc.error_message = "aborted"

    assert manager.bulk_update({"state": "running"}, abort) == 2

    updated = manager.get("a")
    assert updated.revision.startswith("2-")
    assert [c.state for c in updated.history] == [ProcessState.RUNNING, ProcessState.FAILED]
    assert updated.history[-1].error_message == "aborted"
    assert manager.get("c").revision.startswith("1-")
    assert manager.bulk_update({"state": "running"}, abort) == 0
