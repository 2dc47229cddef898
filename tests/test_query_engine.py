"""Tests for the streaming query engine."""

import pytest

from src.ingest.store import DatasetStore
from src.query.engine import NotFoundError, QueryEngine, QueryError, clamp_window, row_matches


@pytest.fixture
def store(tmp_path):
    return DatasetStore(tmp_path / "out")


@pytest.fixture
def engine(store):
    return QueryEngine(store)


def write_rows(store, key, header, rows):
    lines = [",".join(f'"{c}"' for c in header)]
    lines += [",".join(f'"{c}"' for c in row) for row in rows]
    store.commit(key, ("\n".join(lines) + "\n").encode("utf-8"))


@pytest.fixture
def cities(store):
    write_rows(store, "cities", ["city", "country"], [
        ["Oslo", "Norway"],
        ["Bergen", "Norway"],
        ["Lyon", "France"],
        ["Paris", "France"],
        ["Nice", "France"],
    ])
    return "cities"


class TestFiltering:

    def test_empty_filter_matches_every_row(self, engine, cities):
        result = engine.query(cities)

        assert result.headers == ["city", "country"]
        assert result.total_matched == 5
        assert result.rows[0] == {"city": "Oslo", "country": "Norway"}

    def test_filter_is_case_insensitive(self, engine, cities):
        result = engine.query(cities, q="FRANCE")

        assert result.total_matched == 3
        assert [r["city"] for r in result.rows] == ["Lyon", "Paris", "Nice"]

    def test_header_is_never_counted(self, engine, cities):
        assert engine.query(cities, q="country").total_matched == 0

    def test_no_match(self, engine, cities):
        result = engine.query(cities, q="tokyo")

        assert result.total_matched == 0
        assert result.rows == []
        assert result.headers == ["city", "country"]

    def test_row_matches_joins_fields(self):
        assert row_matches(["Ab", "Cd"], "b c")
        assert not row_matches(["Ab", "Cd"], "bc")
        assert row_matches(["anything"], "")


class TestPagination:

    @pytest.mark.parametrize("limit,offset", [(1, 0), (2, 1), (10, 0), (3, 4), (5, 5), (2, 9)])
    def test_page_size_and_total(self, engine, cities, limit, offset):
        n = 5
        result = engine.query(cities, limit=limit, offset=offset)

        assert len(result.rows) == min(limit, max(0, n - offset))
        assert result.total_matched == n

    def test_window_skips_offset_matches(self, engine, cities):
        result = engine.query(cities, q="france", limit=1, offset=1)

        assert result.rows == [{"city": "Paris", "country": "France"}]
        assert result.total_matched == 3

    def test_limit_clamped_to_max(self, store, cities):
        engine = QueryEngine(store, max_limit=2)

        result = engine.query(cities, limit=100)

        assert len(result.rows) == 2
        assert result.total_matched == 5

    def test_negative_offset_clamped(self, engine, cities):
        assert engine.query(cities, limit=1, offset=-3).rows[0]["city"] == "Oslo"

    def test_clamp_window(self):
        assert clamp_window(50_000, -1) == (20_000, 0)
        assert clamp_window(-5, 3) == (0, 3)


class TestFileHandling:

    def test_missing_dataset_raises_not_found(self, engine):
        with pytest.raises(NotFoundError):
            engine.query("never-refreshed")

    def test_unsafe_key_raises_not_found(self, engine, cities):
        with pytest.raises(NotFoundError):
            engine.query("../cities")

    def test_accepts_file_name(self, engine, cities):
        assert engine.query("cities.csv").total_matched == 5

    def test_blank_lines_and_short_rows(self, store, engine):
        store.commit("ragged", b'"a","b","c"\n\n"1","2"\n"4","5","6","7"\n')

        result = engine.query("ragged")

        assert result.total_matched == 2
        assert result.rows == [
            {"a": "1", "b": "2", "c": ""},
            {"a": "4", "b": "5", "c": "6"},
        ]

    def test_embedded_newlines_and_quotes(self, store, engine):
        store.commit("notes", b'"id","text"\n"1","line one\nline two"\n"2","say ""hi"""\n')

        result = engine.query("notes", q='"hi"')

        assert result.rows == [{"id": "2", "text": 'say "hi"'}]

    def test_empty_file(self, store, engine):
        store.commit("empty", b"")

        result = engine.query("empty")

        assert result.headers == []
        assert result.total_matched == 0

    def test_non_utf8_file_is_served_with_replacement_chars(self, store, engine):
        store.commit("carriers", "name,city\nJos\xe9,M\xfcnchen\nAnna,Oslo\n".encode("cp1252"))

        result = engine.query("carriers")

        assert result.headers == ["name", "city"]
        assert result.total_matched == 2
        assert result.rows[0] == {"name": "Jos\ufffd", "city": "M\ufffdnchen"}
        assert engine.query("carriers", q="oslo").rows == [{"name": "Anna", "city": "Oslo"}]

    def test_unreadable_file_raises_query_error(self, store, engine, monkeypatch):
        store.commit("carriers", b"a\n1\n")

        def broken_open(*args, **kwargs):
            raise PermissionError("denied")

        monkeypatch.setattr("src.query.engine.open", broken_open, raising=False)

        with pytest.raises(QueryError):
            engine.query("carriers")

    def test_result_wire_format(self, engine, cities):
        data = engine.query(cities, limit=1).to_dict()

        assert set(data) == {"headers", "rows", "totalMatched"}
