# tests/test_snapshot.py
import json

import pytest

from seqtrace.errors import SnapshotError
from seqtrace.hierarchy import Resolved
from seqtrace.snapshot import (
    SNAPSHOT_FORMAT,
    SNAPSHOT_VERSION,
    Snapshot,
    load_snapshot,
    save_snapshot,
    snapshot_from_dict,
    snapshot_to_dict,
)

from conftest import call


def test_save_and_load_keeps_tree_and_types(tmp_path, withdrawal_tree):
    withdrawal_tree[0].children[1].repetitions = 3
    path = tmp_path / "trace.json"
    save_snapshot(path, withdrawal_tree, {"Foo": ["Foo", "Base"]}, "ended")

    loaded = load_snapshot(path)
    assert loaded.activations == withdrawal_tree
    assert loaded.activations[0].children[1].repetitions == 3
    assert loaded.activations[0].children[0].children[0].parent is loaded.activations[0].children[0]
    assert loaded.types == {"Foo": ["Foo", "Base"]}
    assert loaded.outcome == "ended"
    assert loaded.hierarchy().is_ancestor("Base", "Foo") == Resolved(True)


def test_member_details_survive(tmp_path):
    root = call("app.Point", "__init__", declaring="app.Base", synthetic=True)
    path = tmp_path / "trace.json"
    save_snapshot(path, [root])
    member = load_snapshot(path).activations[0].member
    assert member.declaring_type == "app.Base"
    assert member.synthetic


def test_depth_is_not_stored(tmp_path):
    path = tmp_path / "trace.json"
    save_snapshot(path, [call("A", "a", depth=9)])
    assert load_snapshot(path).activations[0].stack_depth == -1


def test_document_layout():
    data = snapshot_to_dict(Snapshot([call("A", "a", call("B", "b"))]))
    assert data["format"] == SNAPSHOT_FORMAT
    assert data["version"] == SNAPSHOT_VERSION
    assert data["activations"][0]["owner"] == "A"
    assert data["activations"][0]["children"][0]["member"] == {"declaring_type": "B", "name": "b"}
    json.dumps(data)


@pytest.mark.parametrize(
    "document",
    [
        [],
        {"format": "something-else"},
        {"format": SNAPSHOT_FORMAT, "version": 99, "activations": []},
        {"format": SNAPSHOT_FORMAT, "version": SNAPSHOT_VERSION},
        {"format": SNAPSHOT_FORMAT, "version": SNAPSHOT_VERSION, "activations": [{"owner": 3}]},
        {"format": SNAPSHOT_FORMAT, "version": SNAPSHOT_VERSION,
         "activations": [{"owner": "A", "member": {"name": "a"}}]},
        {"format": SNAPSHOT_FORMAT, "version": SNAPSHOT_VERSION,
         "activations": [{"owner": "A", "member": {"declaring_type": "A", "name": "a"}, "repetitions": 0}]},
    ],
)
def test_invalid_documents_are_rejected(document):
    with pytest.raises(SnapshotError):
        snapshot_from_dict(document)


def test_unreadable_file(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(SnapshotError):
        load_snapshot(bad)
    with pytest.raises(SnapshotError):
        load_snapshot(tmp_path / "missing.json")


def test_save_into_missing_directory_fails(tmp_path):
    with pytest.raises(SnapshotError):
        save_snapshot(tmp_path / "nope" / "trace.json", [call("A", "a")])
