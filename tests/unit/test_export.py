import json
import logging

import pytest

from couchflow.errors import ConnectivityError, SerializationError, StoreError
from couchflow.export import BulkExporter, sanitize_filename
from couchflow.indexes import IndexManager
from couchflow.models import IndexDescriptor
from couchflow.store import InMemoryBackingStore, Row


class ScriptedStore(InMemoryBackingStore):
    """Enumerate a fixed list of rows; exceptions in the list are raised."""

    def __init__(self, rows):
        super().__init__()
        self._rows = rows
        self.close_calls = 0

    def enumerate_all(self, include_docs=True):
        for row in self._rows:
            if isinstance(row, Exception):
                raise row
            yield row

    def close(self):
        self.close_calls += 1
        super().close()


def _good_rows(count, prefix="doc"):
    return [Row(id=f"{prefix}-{i:03d}", doc={"_id": f"{prefix}-{i:03d}", "n": i}) for i in range(count)]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("process:2024-01-15", "process_2024-01-15"),
        ("data<test>:*?", "data_test____"),
        ('a/b\\c"d|e', "a_b_c_d_e"),
        ("", ""),
        ("prozess-ü-✓", "prozess-ü-✓"),
    ],
)
def test_sanitize_filename_examples(raw, expected):
    assert sanitize_filename(raw) == expected


def test_sanitize_filename_truncates_and_is_idempotent():
    raw = "x" * 250
    assert len(sanitize_filename(raw)) == 200

    for value in ['a/b:c*d?"e<f>g|h\\' * 20, "plain", "x" * 250, "::::"]:
        once = sanitize_filename(value)
        assert sanitize_filename(once) == once
        assert len(once) <= 200
        assert not any(ch in once for ch in '/\\:*?"<>|')


def test_export_writes_one_pretty_file_per_document(tmp_path):
    store = InMemoryBackingStore()
    store.put("process:1", {"state": "running", "label": "naïve"})
    store.put("process:2", {"state": "failed"})
    IndexManager(store).ensure(IndexDescriptor(fields=["state"]))

    result = BulkExporter(lambda name: store).export("flows", tmp_path)

    db_dir = tmp_path / "flows"
    assert sorted(p.name for p in db_dir.iterdir()) == ["process_1.json", "process_2.json"]
    assert result.exported == 2
    assert result.skipped == 1
    assert result.failed == 0
    assert result.output_dir == db_dir

    text = (db_dir / "process_1.json").read_text(encoding="utf-8")
    assert text.startswith('{\n  "')
    assert "naïve" in text
    body = json.loads(text)
    assert body["_id"] == "process:1"
    assert body["state"] == "running"


def test_export_overwrites_existing_files(tmp_path):
    store = InMemoryBackingStore()
    store.put("a", {"v": 1})
    target = tmp_path / "db" / "a.json"
    target.parent.mkdir(parents=True)
    target.write_text("stale")

    BulkExporter(lambda name: store).export("db", tmp_path)
    assert json.loads(target.read_text())["v"] == 1


def test_export_continues_past_failing_document(tmp_path, caplog):
    rows = _good_rows(9)
    rows.insert(4, Row(id="broken", error=StoreError("enumerate_all", 0, "not_found", "deleted")))
    store = ScriptedStore(rows)

    with caplog.at_level(logging.ERROR, logger="couchflow.export"):
        result = BulkExporter(lambda name: store).export("db", tmp_path)

    assert len(list((tmp_path / "db").iterdir())) == 9
    assert result.exported == 9
    assert result.failed == 1
    assert "broken" in caplog.text
    assert store.close_calls == 1


def test_export_skips_rows_without_id_or_body(tmp_path):
    rows = _good_rows(2) + [Row(id=None, doc={"x": 1}), Row(id="empty", doc=None)]
    rows.append(Row(id="list-body", doc=["not", "an", "object"]))

    result = BulkExporter(lambda name: ScriptedStore(rows)).export("db", tmp_path)

    assert result.exported == 2
    assert result.failed == 3


def test_export_continues_past_unwritable_file(tmp_path):
    rows = _good_rows(3)
    (tmp_path / "db" / "doc-001.json").mkdir(parents=True)

    result = BulkExporter(lambda name: ScriptedStore(rows)).export("db", tmp_path)

    assert result.exported == 2
    assert result.failed == 1
    assert (tmp_path / "db" / "doc-000.json").is_file()
    assert (tmp_path / "db" / "doc-002.json").is_file()


def test_export_reports_progress_every_interval(tmp_path):
    seen = []
    exporter = BulkExporter(
        lambda name: ScriptedStore(_good_rows(250)), on_progress=seen.append
    )

    result = exporter.export("db", tmp_path)

    assert result.exported == 250
    assert seen == [100, 200]


def test_export_aborts_when_cursor_fails(tmp_path):
    rows = _good_rows(3) + [ConnectivityError("enumerate_all", OSError("reset"))] + _good_rows(3, "late")
    store = ScriptedStore(rows)

    with pytest.raises(ConnectivityError):
        BulkExporter(lambda name: store).export("db", tmp_path)

    assert len(list((tmp_path / "db").iterdir())) == 3
    assert store.close_calls == 1


def test_export_surfaces_connection_failure(tmp_path):
    def connect(name):
        raise ConnectivityError("connect", OSError("refused"))

    with pytest.raises(ConnectivityError):
        BulkExporter(connect).export("db", tmp_path)
    assert not (tmp_path / "db").exists()


def test_export_passes_database_name_to_connector(tmp_path):
    requested = []

    def connect(name):
        requested.append(name)
        return ScriptedStore([Row(id="x", error=SerializationError("bad"))])

    result = BulkExporter(connect).export("orders", tmp_path)
    assert requested == ["orders"]
    assert result.failed == 1
    assert (tmp_path / "orders").is_dir()
