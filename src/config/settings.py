"""
Runtime settings for Tabular Mirror.

Paths come from the environment (a ``.env`` file at the repo root is loaded on
import), tunables come from ``config/ingest.yaml``.

Usage:
    from src.config.settings import load_settings

    settings = load_settings()
    settings.out_dir  # directory holding canonical <key>.csv files

Environment:
    DATASETS_FILE   explicit catalog path
    DATA_DIR        directory searched for datasets.render.json / datasets.json
    STORAGE_DIR     manifest + scratch space
    OUT_DIR         canonical CSV files
    RENDER          when set, STORAGE_DIR/OUT_DIR default to /tmp
    INGEST_CONFIG   path to ingest.yaml
    LOG_DIR         directory for tabular_mirror.log (default: logs)
    PORT            API server port
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parent.parent.parent  # src/config/settings.py -> repo root

_env_path = REPO_ROOT / ".env"
if _env_path.exists():
    load_dotenv(_env_path)
else:
    load_dotenv()

# Defaults (can be overridden by config/ingest.yaml)
DEFAULT_USER_AGENT = "TabularMirror/1.0 (python-requests)"
DEFAULT_PROBE_TIMEOUT_SECONDS = 20
DEFAULT_RETRIEVE_TIMEOUT_SECONDS = 30
DEFAULT_ZIP_RETRIEVE_TIMEOUT_SECONDS = 60
DEFAULT_QUERY_LIMIT = 10_000
MAX_QUERY_LIMIT = 20_000
DEFAULT_PORT = 3000
DEFAULT_LOG_DIR = "logs"

RENDER_STORAGE_DIR = "/tmp/storage"
RENDER_OUT_DIR = "/tmp/out"

PREFERRED_CATALOG_NAME = "datasets.render.json"
FALLBACK_CATALOG_NAME = "datasets.json"
MANIFEST_NAME = "manifest.json"


@dataclass
class Settings:
    """Resolved paths and tunables for one process."""
    catalog_path: Path
    storage_dir: Path
    out_dir: Path
    user_agent: str = DEFAULT_USER_AGENT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    retrieve_timeout: float = DEFAULT_RETRIEVE_TIMEOUT_SECONDS
    zip_retrieve_timeout: float = DEFAULT_ZIP_RETRIEVE_TIMEOUT_SECONDS
    default_limit: int = DEFAULT_QUERY_LIMIT
    max_limit: int = MAX_QUERY_LIMIT
    port: int = DEFAULT_PORT
    log_dir: Path = Path(DEFAULT_LOG_DIR)

    @property
    def manifest_path(self) -> Path:
        return self.storage_dir / MANIFEST_NAME


def load_ingest_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load tunables from config/ingest.yaml.

    Args:
        path: Explicit config path (default: INGEST_CONFIG env or config/ingest.yaml)

    Returns:
        Config dict or empty dict if file not found or unreadable
    """
    config_paths = [path] if path else [
        os.environ.get("INGEST_CONFIG", ""),
        "config/ingest.yaml",
        str(REPO_ROOT / "config" / "ingest.yaml"),
    ]

    for candidate in config_paths:
        if candidate and os.path.exists(candidate):
            try:
                with open(candidate, "r") as f:
                    return yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load ingest config from {candidate}: {e}")

    return {}


def resolve_catalog_path(data_dir: Path) -> Path:
    """Prefer datasets.render.json, fall back to datasets.json."""
    explicit = os.environ.get("DATASETS_FILE")
    if explicit:
        return Path(explicit)

    preferred = data_dir / PREFERRED_CATALOG_NAME
    if preferred.exists():
        return preferred

    logger.warning(f"{PREFERRED_CATALOG_NAME} not found, falling back to {FALLBACK_CATALOG_NAME}")
    return data_dir / FALLBACK_CATALOG_NAME


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Build Settings from the environment and config/ingest.yaml."""
    on_render = bool(os.environ.get("RENDER"))

    data_dir = Path(os.environ.get("DATA_DIR", REPO_ROOT / "data"))
    storage_dir = Path(os.environ.get(
        "STORAGE_DIR", RENDER_STORAGE_DIR if on_render else REPO_ROOT / "storage"
    ))
    out_dir = Path(os.environ.get(
        "OUT_DIR", RENDER_OUT_DIR if on_render else REPO_ROOT / "out"
    ))

    config = load_ingest_config(config_path)
    fetch_config = config.get("fetch", {})
    query_config = config.get("query", {})

    return Settings(
        catalog_path=resolve_catalog_path(data_dir),
        storage_dir=storage_dir,
        out_dir=out_dir,
        user_agent=fetch_config.get("user_agent", DEFAULT_USER_AGENT),
        probe_timeout=fetch_config.get("probe_timeout_seconds", DEFAULT_PROBE_TIMEOUT_SECONDS),
        retrieve_timeout=fetch_config.get("retrieve_timeout_seconds", DEFAULT_RETRIEVE_TIMEOUT_SECONDS),
        zip_retrieve_timeout=fetch_config.get("zip_retrieve_timeout_seconds", DEFAULT_ZIP_RETRIEVE_TIMEOUT_SECONDS),
        default_limit=query_config.get("default_limit", DEFAULT_QUERY_LIMIT),
        max_limit=query_config.get("max_limit", MAX_QUERY_LIMIT),
        port=int(os.environ.get("PORT", DEFAULT_PORT)),
        log_dir=Path(os.environ.get("LOG_DIR", DEFAULT_LOG_DIR)),
    )
