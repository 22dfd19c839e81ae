"""
Tests for the key-value stores.
"""

import os
import json
import stat

import pytest

from swapbot.storage import MemoryStore, FileStore


class TestMemoryStore:

    def test_set_get_delete(self):
        store = MemoryStore()
        store.set("a", "1")

        assert store.get("a") == "1"
        store.delete("a")
        assert store.get("a") is None

    def test_delete_missing_key(self):
        store = MemoryStore({"a": "1"})
        store.delete("b")
        assert store.keys() == ["a"]

    def test_set_many(self):
        store = MemoryStore({"a": "1"})
        store.set_many({"a": "2", "b": "3"})

        assert store.get("a") == "2"
        assert store.get("b") == "3"


class TestFileStore:

    def test_missing_file_reads_empty(self, tmp_path):
        assert FileStore(tmp_path / "store.json").get("a") is None

    def test_persists(self, tmp_path):
        path = tmp_path / "nested" / "store.json"
        FileStore(path).set("a", "1")

        assert FileStore(path).get("a") == "1"
        assert json.loads(path.read_text()) == {"a": "1"}

    def test_permissions(self, tmp_path):
        path = tmp_path / "store.json"
        FileStore(path).set("a", "1")

        if os.name != 'nt':
            assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_delete(self, tmp_path):
        store = FileStore(tmp_path / "store.json")
        store.set("a", "1")
        store.set("b", "2")
        store.delete("a")
        store.delete("a")

        assert store.get("a") is None
        assert store.get("b") == "2"

    def test_no_temp_files_left(self, tmp_path):
        store = FileStore(tmp_path / "store.json")
        store.set("a", "1")
        store.set("a", "2")

        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]

    def test_set_many_is_all_or_nothing(self, tmp_path, monkeypatch):
        path = tmp_path / "store.json"
        store = FileStore(path)
        store.set_many({"a": "1", "b": "2"})
        assert json.loads(path.read_text()) == {"a": "1", "b": "2"}

        def fail(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("swapbot.storage.os.replace", fail)
        with pytest.raises(OSError):
            store.set_many({"a": "3", "b": "4"})
        monkeypatch.undo()

        assert store.get("a") == "1"
        assert store.get("b") == "2"
        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]
