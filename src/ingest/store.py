"""Dataset store: directory of canonical ``<key>.csv`` files."""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import List

from .catalog import KEY_PATTERN

logger = logging.getLogger(__name__)

CANONICAL_SUFFIX = ".csv"

_KEY_RE = re.compile(KEY_PATTERN)


def is_safe_key(key: str) -> bool:
    """Keys must map to a plain file name inside the store."""
    return bool(key) and _KEY_RE.match(key) is not None and ".." not in key


class DatasetStore:
    """
    Canonical CSV files, one per dataset key.

    ``commit`` writes to a temp file in the same directory and renames it into
    place, so concurrent readers see either the old or the new file, never a
    partially written one.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        if not is_safe_key(key):
            raise ValueError(f"Unsafe dataset key: {key!r}")
        return self.root / f"{key}{CANONICAL_SUFFIX}"

    def exists(self, key: str) -> bool:
        return is_safe_key(key) and self.path_for(key).is_file()

    def commit(self, key: str, content: bytes) -> Path:
        """
        Atomically replace the canonical file for ``key``.

        Raises:
            OSError: If the file cannot be written (the old file is kept)
        """
        destination = self.path_for(key)
        self.root.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(suffix=".tmp", prefix=f".{key}-", dir=self.root)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(temp_path, destination)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

        logger.info(f"Committed {destination} ({len(content)} bytes)")
        return destination

    def list_files(self) -> List[str]:
        """Canonical file names, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(
            entry.name for entry in self.root.iterdir()
            if entry.is_file()
            and entry.name.lower().endswith(CANONICAL_SUFFIX)
            and not entry.name.startswith(".")
        )
