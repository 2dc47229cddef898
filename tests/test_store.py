"""Tests for the canonical dataset store."""

import pytest

from src.ingest.store import DatasetStore, is_safe_key


@pytest.fixture
def store(tmp_path):
    return DatasetStore(tmp_path / "out")


class TestKeys:

    @pytest.mark.parametrize("key", ["carriers", "carriers-2024", "v1.2_final"])
    def test_safe_keys(self, key):
        assert is_safe_key(key)

    @pytest.mark.parametrize("key", ["", "../x", "a..b", "a/b", ".env", "a b"])
    def test_unsafe_keys(self, key):
        assert not is_safe_key(key)

    def test_path_for_unsafe_key_raises(self, store):
        with pytest.raises(ValueError):
            store.path_for("../escape")


class TestCommit:

    def test_commit_creates_root_and_file(self, store):
        path = store.commit("carriers", b"a,b\n1,2\n")

        assert path == store.root / "carriers.csv"
        assert path.read_bytes() == b"a,b\n1,2\n"
        assert store.exists("carriers")

    def test_commit_replaces_existing_content(self, store):
        store.commit("carriers", b"old\n")
        store.commit("carriers", b"new\n")

        assert store.path_for("carriers").read_bytes() == b"new\n"

    def test_failed_commit_keeps_old_file_and_no_temp(self, store, monkeypatch):
        store.commit("carriers", b"old\n")

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("src.ingest.store.os.replace", broken_replace)

        with pytest.raises(OSError):
            store.commit("carriers", b"new\n")

        assert store.path_for("carriers").read_bytes() == b"old\n"
        assert [p.name for p in store.root.iterdir()] == ["carriers.csv"]


class TestListFiles:

    def test_missing_root_lists_nothing(self, store):
        assert store.list_files() == []

    def test_only_visible_csv_files_sorted(self, store):
        store.commit("weather", b"x\n")
        store.commit("carriers", b"x\n")
        (store.root / "notes.txt").write_text("x")
        (store.root / ".carriers-abc.tmp").write_text("x")
        (store.root / "manifest.json").write_text("{}")

        assert store.list_files() == ["carriers.csv", "weather.csv"]
