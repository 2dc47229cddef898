"""
Format normalizers: fetched payload -> canonical CSV bytes.

One handler per source type, dispatched through NORMALIZERS. Adding a source
type means adding one handler here; callers only use ``normalize``.

Canonical CSV: UTF-8, comma-separated, every field double-quoted with inner
quotes doubled, header row first, ``\\n`` line endings.
"""

import csv
import io
import json
import logging
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

# Object keys searched, in order, for the record array of a wrapped JSON payload
RECORD_ARRAY_KEYS = ("content", "data", "results")


class FormatError(Exception):
    """Payload does not parse as its declared source type."""
    def __init__(self, source_type: str, message: str):
        self.source_type = source_type
        self.message = message
        super().__init__(f"{source_type}: {message}")


def normalize_csv(content: bytes, scratch_dir: Path) -> bytes:
    """CSV sources are already canonical."""
    return content


def extract_records(document: Any) -> List[Any]:
    """Pick the record sequence out of a parsed JSON document."""
    if isinstance(document, list):
        return document
    if isinstance(document, dict):
        for key in RECORD_ARRAY_KEYS:
            if isinstance(document.get(key), list):
                return document[key]
    return [document]


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def records_to_csv(records: List[Any]) -> bytes:
    """
    Render records as canonical CSV.

    The header is the union of record keys in first-seen order; a record
    without a key gets an empty cell. Non-object records become a single
    ``value`` column.
    """
    if not records:
        return b""

    rows = [r if isinstance(r, dict) else {"value": r} for r in records]

    headers: Dict[str, None] = {}
    for row in rows:
        for key in row:
            headers.setdefault(str(key), None)
    columns = list(headers)

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        by_name = {str(k): v for k, v in row.items()}
        writer.writerow([stringify(by_name.get(col)) for col in columns])

    return buffer.getvalue().encode("utf-8")


def normalize_json(content: bytes, scratch_dir: Path) -> bytes:
    try:
        document = json.loads(content.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError("json", f"invalid JSON payload: {e}") from e

    records = extract_records(document)
    logger.debug(f"Converting {len(records)} JSON records to CSV")
    return records_to_csv(records)


def normalize_zip(content: bytes, scratch_dir: Path) -> bytes:
    """
    Extract the archive and return the largest CSV member.

    Sizes are compared on the extracted files; on a tie the entry that comes
    first in the archive wins. Non-CSV members are ignored.
    """
    archive_path = scratch_dir / "payload.zip"
    extract_dir = scratch_dir / "extracted"
    archive_path.write_bytes(content)
    extract_dir.mkdir(parents=True, exist_ok=True)

    root = extract_dir.resolve()
    members = []
    try:
        with zipfile.ZipFile(archive_path) as zf:
            for info in zf.infolist():
                # extract() returns the sanitized on-disk path, never the raw member name
                extracted = Path(zf.extract(info, extract_dir)).resolve()
                if info.is_dir() or not extracted.name.lower().endswith(".csv"):
                    continue
                if root not in extracted.parents:
                    logger.warning(f"Ignoring archive member outside extraction dir: {info.filename!r}")
                    continue
                members.append(extracted)
    except zipfile.BadZipFile as e:
        raise FormatError("zip", f"not a valid ZIP archive: {e}") from e
    except (RuntimeError, NotImplementedError) as e:
        # encrypted members or unsupported compression
        raise FormatError("zip", f"cannot extract archive: {e}") from e

    best_path = None
    best_size = -1
    for path in members:
        if not path.is_file():
            continue
        size = path.stat().st_size
        if size > best_size:
            best_path, best_size = path, size

    if best_path is None:
        raise FormatError("zip", "no CSV inside ZIP")

    logger.info(f"Selected {best_path.name} ({best_size} bytes) from archive")
    return best_path.read_bytes()


NORMALIZERS: Dict[str, Callable[[bytes, Path], bytes]] = {
    "csv": normalize_csv,
    "json": normalize_json,
    "zip": normalize_zip,
}


def is_supported(source_type: str) -> bool:
    return source_type in NORMALIZERS


def normalize(source_type: str, content: bytes, scratch_dir: Path) -> bytes:
    """
    Convert a fetched payload to canonical CSV bytes.

    Args:
        source_type: Declared source type (csv, json, zip)
        content: Raw payload bytes
        scratch_dir: Disposable directory for archive extraction

    Raises:
        FormatError: If the payload does not parse or the type is unknown
    """
    handler = NORMALIZERS.get(source_type)
    if handler is None:
        raise FormatError(source_type, "unsupported source type")
    return handler(content, Path(scratch_dir))
