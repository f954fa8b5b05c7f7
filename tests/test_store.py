import itertools
import json

import pytest

from modules.listing_watch.lib.models import AdRecord
from modules.listing_watch.lib.store import PersistenceFailure, SeenSetStore


def _ads(*ids):
    return [AdRecord(identifier=i) for i in ids]


def _ids(records):
    return [r.identifier for r in records]


def test_missing_file_is_created_empty(tmp_path):
    store = SeenSetStore(tmp_path / "data")
    assert store.load("rentals") == []
    assert json.loads((tmp_path / "data" / "rentals.json").read_text(encoding="utf-8")) == []


def test_reconcile_returns_only_unseen_in_candidate_order(tmp_path):
    store = SeenSetStore(tmp_path)
    assert _ids(store.reconcile("t", _ads("a", "b"))) == ["a", "b"]
    assert _ids(store.reconcile("t", _ads("c", "a", "d"))) == ["c", "d"]
    assert store.load("t") == ["a", "b", "c", "d"]


def test_reconcile_twice_is_idempotent(tmp_path):
    store = SeenSetStore(tmp_path)
    store.reconcile("t", _ads("a", "b"))
    assert store.reconcile("t", _ads("a", "b")) == []
    assert store.load("t") == ["a", "b"]


def test_duplicates_within_batch_reported_once(tmp_path):
    store = SeenSetStore(tmp_path)
    assert _ids(store.reconcile("t", _ads("a", "a", "b"))) == ["a", "b"]
    assert store.load("t") == ["a", "b"]


def test_same_final_state_regardless_of_batch_order(tmp_path):
    s1 = SeenSetStore(tmp_path / "one")
    s1.reconcile("t", _ads("a", "b"))
    s1.reconcile("t", _ads("c"))

    s2 = SeenSetStore(tmp_path / "two")
    s2.reconcile("t", _ads("c"))
    s2.reconcile("t", _ads("a", "b"))

    assert set(s1.load("t")) == set(s2.load("t")) == {"a", "b", "c"}


def test_candidate_order_within_a_batch_does_not_change_new_ids(tmp_path):
    results = set()
    for i, order in enumerate(itertools.permutations(["a", "b", "", "c", "a"])):
        store = SeenSetStore(tmp_path / f"p{i}")
        new = store.reconcile("t", _ads(*order))
        assert len(new) == 4
        results.add(frozenset(_ids(new)))
    assert results == {frozenset({"a", "b", "", "c"})}


def test_no_write_when_nothing_new(tmp_path):
    store = SeenSetStore(tmp_path)
    store.reconcile("t", _ads("a"))
    path = store.path_for("t")
    # Same content, different formatting: a rewrite would reformat it.
    path.write_text('["a"]', encoding="utf-8")
    assert store.reconcile("t", _ads("a")) == []
    assert path.read_text(encoding="utf-8") == '["a"]'


def test_corrupt_state_backed_up_and_treated_as_empty(tmp_path):
    store = SeenSetStore(tmp_path)
    path = store.path_for("t")
    path.write_bytes(b"{not json")

    new = store.reconcile("t", _ads("a"))

    assert _ids(new) == ["a"]
    assert (tmp_path / "t.json.backup").read_bytes() == b"{not json"
    assert store.load("t") == ["a"]


def test_non_list_json_is_treated_as_corrupt(tmp_path):
    store = SeenSetStore(tmp_path)
    store.path_for("t").write_text('{"a": 1}', encoding="utf-8")
    assert store.load("t") == []
    assert (tmp_path / "t.json.backup").exists()


def test_empty_identifier_bucket_policy(tmp_path):
    store = SeenSetStore(tmp_path, missing_id_policy="bucket")
    assert _ids(store.reconcile("t", _ads("", ""))) == [""]
    assert store.reconcile("t", _ads("")) == []
    assert store.load("t") == [""]


def test_empty_identifier_always_new_policy(tmp_path):
    store = SeenSetStore(tmp_path, missing_id_policy="always_new")
    assert _ids(store.reconcile("t", _ads("", "x", ""))) == ["", "x", ""]
    assert _ids(store.reconcile("t", _ads(""))) == [""]
    assert store.load("t") == ["x"]


def test_unreadable_location_raises_persistence_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = SeenSetStore(blocker / "data")
    with pytest.raises(PersistenceFailure):
        store.load("t")


def test_topic_names_cannot_escape_data_dir(tmp_path):
    store = SeenSetStore(tmp_path)
    assert store.path_for("a/b").parent == tmp_path
