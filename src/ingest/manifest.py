"""
Freshness manifest: source URL -> last-seen fingerprint.

The manifest lets the coordinator skip downloads whose remote metadata
(etag / last-modified / content-length) has not changed since the last
successful acquisition. It is persisted as pretty-printed JSON keyed by the
exact source URL.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ManifestIOError(Exception):
    """Raised internally when the manifest cannot be read or written."""
    def __init__(self, path: Path, message: str, original_error: Optional[Exception] = None):
        self.path = path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{path}: {message}")


@dataclass
class Fingerprint:
    """Freshness metadata recorded for one source URL."""
    saved_as: str
    fetched_at: str
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    content_length: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the manifest's wire names."""
        return {
            "etag": self.etag,
            "lastModified": self.last_modified,
            "contentLength": self.content_length,
            "savedAs": self.saved_as,
            "fetchedAt": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fingerprint":
        return cls(
            saved_as=data.get("savedAs", ""),
            fetched_at=data.get("fetchedAt", ""),
            etag=data.get("etag"),
            last_modified=data.get("lastModified"),
            content_length=data.get("contentLength"),
        )

    @classmethod
    def now(cls, saved_as: str, etag: Optional[str] = None, last_modified: Optional[str] = None,
            content_length: Optional[str] = None) -> "Fingerprint":
        return cls(
            saved_as=saved_as,
            fetched_at=datetime.now(timezone.utc).isoformat(),
            etag=etag,
            last_modified=last_modified,
            content_length=content_length,
        )


Manifest = Dict[str, Fingerprint]


def manifest_to_dict(manifest: Manifest) -> Dict[str, Dict[str, Any]]:
    return {url: fp.to_dict() for url, fp in manifest.items()}


def manifest_from_dict(data: Dict[str, Any]) -> Manifest:
    return {
        url: Fingerprint.from_dict(entry)
        for url, entry in data.items()
        if isinstance(entry, dict)
    }


class ManifestStore:
    """
    File-backed manifest persistence.

    ``load`` never fails the caller: a missing, unreadable or corrupt file is
    an empty manifest. ``save`` reports failure through its return value.
    Writes go through a temp file + rename so a crash never leaves a torn
    manifest behind.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> Manifest:
        """Load manifest from disk, or an empty one."""
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load manifest, starting empty: {ManifestIOError(self.path, str(e), e)}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Manifest {self.path} is not a mapping, starting empty")
            return {}

        return manifest_from_dict(data)

    def save(self, manifest: Manifest) -> bool:
        """Persist the full manifest. Returns False on failure."""
        payload = json.dumps(manifest_to_dict(manifest), indent=2, sort_keys=True) + "\n"
        try:
            self._write(payload)
        except ManifestIOError as e:
            logger.error(f"Manifest save failed: {e}")
            return False
        return True

    def upsert(self, url: str, fingerprint: Fingerprint) -> bool:
        """Merge one entry into the persisted manifest (lock-scoped read-modify-write)."""
        with self._lock:
            current = self.load()
            current[url] = fingerprint
            return self.save(current)

    def _write(self, payload: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(suffix=".tmp", prefix=".manifest-", dir=self.path.parent)
        except OSError as e:
            raise ManifestIOError(self.path, f"cannot create temp file: {e}", e) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(temp_path, self.path)
        except OSError as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise ManifestIOError(self.path, f"write failed: {e}", e) from e
