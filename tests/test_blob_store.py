"""Tests for the SQLite blob store."""

from researchoo.storage.blob_store import BlobStore


class TestBlobStore:
    def test_get_missing(self, store):
        assert store.get("nope") is None

    def test_set_and_get(self, store):
        store.set("k", '{"a": 1}')
        assert store.get("k") == '{"a": 1}'

    def test_set_replaces(self, store):
        store.set("k", "one")
        store.set("k", "two")
        assert store.get("k") == "two"
        assert store.keys() == ["k"]

    def test_remove(self, store):
        store.set("k", "v")
        assert store.remove("k") is True
        assert store.get("k") is None
        assert store.remove("k") is False

    def test_keys_sorted(self, store):
        for key in ("b", "a", "c"):
            store.set(key, key)
        assert store.keys() == ["a", "b", "c"]

    def test_values_survive_reopen(self, db_path, store):
        store.set("k", "Привіт")
        store.close()
        reopened = BlobStore(db_path)
        reopened.init_db()
        try:
            assert reopened.get("k") == "Привіт"
        finally:
            reopened.close()

    def test_creates_parent_directory(self, tmp_path):
        s = BlobStore(tmp_path / "nested" / "dir" / "x.db")
        s.init_db()
        s.set("k", "v")
        assert (tmp_path / "nested" / "dir" / "x.db").exists()
        s.close()
