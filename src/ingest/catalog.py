"""
Dataset catalog loading and validation.

The catalog is an ordered list of dataset descriptors, each with a key, an
enabled flag and an ordered list of sources. It is read from JSON or YAML and
validated against DATASET_CATALOG_SCHEMA before use.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jsonschema
import yaml

logger = logging.getLogger(__name__)

# Keys become file names in the dataset store
KEY_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"

DATASET_CATALOG_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["key", "sources"],
        "properties": {
            "key": {"type": "string", "pattern": KEY_PATTERN},
            "label": {"type": "string"},
            "enabled": {"type": "boolean"},
            "sources": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["type", "url"],
                    "properties": {
                        "type": {"type": "string"},
                        "url": {"type": "string", "minLength": 1},
                    },
                },
            },
        },
    },
}


class CatalogValidationError(Exception):
    """Raised when catalog validation fails."""
    pass


@dataclass(frozen=True)
class SourceDescriptor:
    """One remote location of a dataset; ``type`` selects the normalizer."""
    type: str
    url: str


@dataclass(frozen=True)
class DatasetDescriptor:
    key: str
    label: str = ""
    enabled: bool = False
    sources: Tuple[SourceDescriptor, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatasetDescriptor":
        return cls(
            key=data["key"],
            label=data.get("label", data["key"]),
            # Missing flag means the dataset is not offered for refresh
            enabled=data.get("enabled", False),
            sources=tuple(SourceDescriptor(type=s["type"], url=s["url"]) for s in data.get("sources", [])),
        )


def read_catalog(path: Path) -> List[Dict[str, Any]]:
    """
    Read the raw catalog entries from disk.

    Accepts a top-level list or a mapping with a ``datasets`` list. YAML is a
    superset of JSON so both formats go through yaml.safe_load.

    Raises:
        FileNotFoundError: If the catalog file doesn't exist
        CatalogValidationError: If the file cannot be parsed
    """
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise CatalogValidationError(f"Catalog {path} is not valid JSON/YAML: {e}") from e

    if isinstance(raw, dict) and "datasets" in raw:
        raw = raw["datasets"]
    if raw is None:
        raw = []
    return raw


def validate_catalog(entries: Any) -> None:
    """
    Validate raw catalog entries against the schema and key uniqueness.

    Raises:
        CatalogValidationError: If validation fails
    """
    try:
        jsonschema.validate(entries, DATASET_CATALOG_SCHEMA)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path)
        where = f" at {path}" if path else ""
        raise CatalogValidationError(f"Schema validation failed{where}: {e.message}") from e

    seen = set()
    for entry in entries:
        key = entry["key"]
        if key in seen:
            raise CatalogValidationError(f"Duplicate dataset key: {key}")
        seen.add(key)


def load_catalog(path: Path) -> List[DatasetDescriptor]:
    """Read, validate and parse the catalog into descriptors (catalog order kept)."""
    entries = read_catalog(path)
    validate_catalog(entries)
    descriptors = [DatasetDescriptor.from_dict(e) for e in entries]
    logger.debug(f"Loaded {len(descriptors)} dataset descriptors from {path}")
    return descriptors


def find_enabled(descriptors: List[DatasetDescriptor], keys: Optional[List[str]] = None) -> List[DatasetDescriptor]:
    """Enabled descriptors whose key is in ``keys`` (all enabled when None)."""
    wanted = set(keys) if keys is not None else None
    return [
        d for d in descriptors
        if d.enabled and (wanted is None or d.key in wanted)
    ]
