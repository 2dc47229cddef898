"""
Streaming query engine over canonical CSV files.

Rows are read one at a time with the csv module, so memory use is bounded by
the page size rather than the file size. The header row is never counted as
data.
"""

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from src.config.settings import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT
from src.ingest.store import DatasetStore, is_safe_key

logger = logging.getLogger(__name__)


class QueryError(Exception):
    """Generic failure while streaming a canonical file."""
    pass


class NotFoundError(QueryError):
    """No canonical file exists for the requested key."""
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"CSV not found for '{key}'. Run a refresh first.")


@dataclass
class QueryResult:
    headers: List[str] = field(default_factory=list)
    rows: List[Dict[str, str]] = field(default_factory=list)
    total_matched: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"headers": self.headers, "rows": self.rows, "totalMatched": self.total_matched}


def clamp_window(limit: int, offset: int, max_limit: int = MAX_QUERY_LIMIT):
    """Clamp limit to [0, max_limit] and offset to >= 0."""
    return max(0, min(int(limit), max_limit)), max(0, int(offset))


def row_matches(row: List[str], needle: str) -> bool:
    """``needle`` must already be lowercased; empty matches everything."""
    if not needle:
        return True
    return needle in " ".join(row).lower()


class QueryEngine:
    """Filtered, paginated reads over a DatasetStore."""

    def __init__(self, store: DatasetStore, max_limit: int = MAX_QUERY_LIMIT):
        self.store = store
        self.max_limit = max_limit

    def resolve(self, key: str) -> Path:
        """
        Map a dataset key (or ``<key>.csv`` file name) to its canonical file.

        Raises:
            NotFoundError: If the key is unsafe or has no canonical file
        """
        if key.lower().endswith(".csv"):
            key = key[:-4]
        if not is_safe_key(key) or not self.store.exists(key):
            raise NotFoundError(key)
        return self.store.path_for(key)

    def query(self, key: str, q: str = "", limit: int = DEFAULT_QUERY_LIMIT, offset: int = 0) -> QueryResult:
        """
        Stream the canonical file for ``key`` and return one page of matches.

        Args:
            key: Dataset key or canonical file name
            q: Case-insensitive substring filter over all fields (empty = all rows)
            limit: Page size, clamped to [0, max_limit]
            offset: Matches to skip before the page starts, clamped to >= 0

        Returns:
            QueryResult; total_matched counts every match in the file

        Raises:
            NotFoundError: If no canonical file exists
            QueryError: On I/O or CSV parse failures while streaming
        """
        path = self.resolve(key)
        limit, offset = clamp_window(limit, offset, self.max_limit)
        needle = (q or "").lower()

        result = QueryResult()
        headers = None
        try:
            # undecodable bytes (e.g. a cp1252 source) become U+FFFD instead of failing the read
            with open(path, "r", encoding="utf-8-sig", errors="replace", newline="") as f:
                for row in csv.reader(f):
                    if not row:
                        continue
                    if headers is None:
                        headers = row
                        continue
                    if not row_matches(row, needle):
                        continue

                    result.total_matched += 1
                    if result.total_matched > offset and len(result.rows) < limit:
                        padded = row + [""] * (len(headers) - len(row))
                        result.rows.append(dict(zip(headers, padded)))
        except (OSError, csv.Error) as e:
            logger.error(f"Query failed for {path}: {e}")
            raise QueryError(f"Failed to read {path.name}: {e}") from e

        result.headers = headers or []
        logger.debug(f"Query {key!r} q={q!r}: {result.total_matched} matches, {len(result.rows)} returned")
        return result
