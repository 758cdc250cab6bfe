"""Tests for icntrack.db key-value stores."""

import pytest

from icntrack.db import IcnDB, KeyValueStore, MemoryStore


class TestSchemaCreation:
    def test_creates_kv_table(self, tmp_db):
        tables = tmp_db.query("SELECT name FROM sqlite_master WHERE type='table'")
        assert {"kv"} <= {t["name"] for t in tables}

    def test_wal_mode(self, tmp_db):
        result = tmp_db.query("PRAGMA journal_mode")
        assert result[0]["journal_mode"] == "wal"

    def test_idempotent_schema(self, tmp_db):
        """Running init_schema twice should not error."""
        tmp_db.set("k", "v")
        tmp_db.init_schema()
        assert tmp_db.get("k") == "v"


@pytest.fixture(params=["sqlite", "memory"])
def any_store(request, tmp_path):
    if request.param == "memory":
        yield MemoryStore()
        return
    db = IcnDB(str(tmp_path / "kv.db"))
    db.init_schema()
    yield db
    db.close()


class TestKeyValue:
    def test_protocol(self, any_store):
        assert isinstance(any_store, KeyValueStore)

    def test_get_missing(self, any_store):
        assert any_store.get("nope") is None

    def test_set_overwrites(self, any_store):
        any_store.set("a", "1")
        any_store.set("a", "2")
        assert any_store.get("a") == "2"

    def test_keys_sorted(self, any_store):
        for k in ("b", "a", "c"):
            any_store.set(k, k)
        assert any_store.keys() == ["a", "b", "c"]

    def test_delete(self, any_store):
        any_store.set("a", "1")
        any_store.delete("a")
        any_store.delete("never-there")
        assert any_store.keys() == []


class TestIcnDB:
    def test_persists_across_connections(self, tmp_path):
        path = str(tmp_path / "p.db")
        with IcnDB(path) as db:
            db.init_schema()
            db.set("state", '{"x": 1}')
        with IcnDB(path) as db:
            assert db.get("state") == '{"x": 1}'

    def test_summary(self, tmp_db):
        tmp_db.set("abc", "12345")
        rows = tmp_db.summary()
        assert rows[0]["key"] == "abc"
        assert rows[0]["size"] == 5
        assert rows[0]["updated_at"]
