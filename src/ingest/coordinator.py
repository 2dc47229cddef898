"""
Acquisition coordinator.

For each requested dataset, walks its sources in priority order:
- skips source types with no normalizer
- probes csv/zip sources and compares against the stored fingerprint
- always refetches json sources (live endpoints)
- retrieves, normalizes and atomically commits ``<key>.csv``
- writes the new fingerprint through to the manifest immediately

The first source that commits (or is confirmed up to date) wins. A failing
source is logged and the next one is tried; a dataset whose sources all fail
keeps its previous canonical file.
"""

import logging
import tempfile
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from src.config.settings import Settings

from .catalog import DatasetDescriptor, SourceDescriptor, find_enabled, load_catalog, read_catalog
from .fetcher import FetchError, ProbeResult, RemoteFetcher
from .manifest import Fingerprint, Manifest, ManifestStore
from .normalize import FormatError, is_supported, normalize
from .store import DatasetStore

logger = logging.getLogger(__name__)

# Source types that are never probed: always treated as changed
ALWAYS_FRESH_TYPES = {"json"}

NOTE_BY_TYPE = {
    "csv": "Downloaded CSV",
    "zip": "ZIP extracted",
    "json": "JSON converted",
}
NOTE_UP_TO_DATE = "Up-to-date"
NOTE_ALL_FAILED = "All sources failed"
NOTE_NO_SOURCES = "No sources configured"


class SourceState(str, Enum):
    """Terminal state of one source attempt."""
    SKIPPED = "SKIPPED"
    UNCHANGED = "UNCHANGED"
    REUSED = "REUSED"
    FETCH_FAILED = "FETCH_FAILED"
    NORMALIZE_FAILED = "NORMALIZE_FAILED"
    COMMIT_FAILED = "COMMIT_FAILED"
    COMMITTED = "COMMITTED"
    ERROR = "ERROR"


SUCCESS_STATES = {SourceState.UNCHANGED, SourceState.REUSED, SourceState.COMMITTED}


@dataclass
class SourceAttempt:
    url: str
    type: str
    state: SourceState
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.state in SUCCESS_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "type": self.type, "state": self.state.value, "detail": self.detail}


@dataclass
class RefreshOutcome:
    """Result for one dataset in a refresh batch."""
    key: str
    ok: bool
    note: str
    source_url: Optional[str] = None
    attempts: List[SourceAttempt] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "ok": self.ok,
            "note": self.note,
            "source": self.source_url,
            "attempts": [a.to_dict() for a in self.attempts],
        }


def has_changed(probe: ProbeResult, fingerprint: Optional[Fingerprint]) -> bool:
    """
    Compare probed metadata against the stored fingerprint.

    Never-seen URLs are always changed. Otherwise only the fields the probe
    actually returned are compared.
    """
    if fingerprint is None:
        return True

    pairs = (
        (probe.etag, fingerprint.etag),
        (probe.last_modified, fingerprint.last_modified),
        (probe.content_length, fingerprint.content_length),
    )
    return any(probed is not None and probed != stored for probed, stored in pairs)


class AcquisitionCoordinator:
    """Runs refresh batches against a catalog, a manifest and a dataset store."""

    def __init__(
        self,
        catalog_path: Path,
        manifest_store: ManifestStore,
        dataset_store: DatasetStore,
        fetcher: RemoteFetcher,
        scratch_root: Path,
        zip_retrieve_timeout: Optional[float] = None,
    ):
        self.catalog_path = Path(catalog_path)
        self.manifest_store = manifest_store
        self.dataset_store = dataset_store
        self.fetcher = fetcher
        self.scratch_root = Path(scratch_root)
        self.zip_retrieve_timeout = zip_retrieve_timeout

        # One acquisition in flight per dataset key
        self._key_locks: Dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "AcquisitionCoordinator":
        fetcher = RemoteFetcher(
            user_agent=settings.user_agent,
            probe_timeout=settings.probe_timeout,
            retrieve_timeout=settings.retrieve_timeout,
        )
        return cls(
            catalog_path=settings.catalog_path,
            manifest_store=ManifestStore(settings.manifest_path),
            dataset_store=DatasetStore(settings.out_dir),
            fetcher=fetcher,
            scratch_root=settings.storage_dir,
            zip_retrieve_timeout=settings.zip_retrieve_timeout,
        )

    def list_datasets(self) -> List[Dict[str, Any]]:
        """Raw catalog entries, as configured."""
        return read_catalog(self.catalog_path)

    def list_canonical_files(self) -> List[str]:
        return self.dataset_store.list_files()

    def refresh(self, keys: Iterable[str]) -> List[RefreshOutcome]:
        """
        Refresh the requested datasets, one at a time.

        Unknown and disabled keys are skipped without an outcome. Results come
        back in catalog order.

        Raises:
            FileNotFoundError / CatalogValidationError: If the catalog cannot be loaded
        """
        descriptors = load_catalog(self.catalog_path)
        manifest = self.manifest_store.load()

        outcomes = []
        for dataset in find_enabled(descriptors, list(keys)):
            with self._lock_for(dataset.key):
                outcome = self.acquire(dataset, manifest)
            level = logging.INFO if outcome.ok else logging.WARNING
            logger.log(level, f"{dataset.key}: {outcome.note} ({outcome.source_url})")
            outcomes.append(outcome)

        succeeded = sum(1 for o in outcomes if o.ok)
        logger.info(f"Refresh complete: {succeeded}/{len(outcomes)} datasets ok")
        return outcomes

    def acquire(self, dataset: DatasetDescriptor, manifest: Manifest) -> RefreshOutcome:
        """Run the source fallback chain for one dataset."""
        attempts: List[SourceAttempt] = []
        have_file = self.dataset_store.exists(dataset.key)

        for source in dataset.sources:
            try:
                attempt = self._try_source(dataset, source, manifest, have_file)
            except Exception as e:
                logger.exception(f"Unexpected failure for {dataset.key} from {source.url}")
                attempt = SourceAttempt(source.url, source.type, SourceState.ERROR, str(e))

            attempts.append(attempt)
            if attempt.succeeded:
                return RefreshOutcome(dataset.key, True, attempt.detail, source.url, attempts)

            logger.warning(f"Source failed for {dataset.key}: {source.url} [{attempt.state.value}] {attempt.detail}")

        if not attempts:
            return RefreshOutcome(dataset.key, False, NOTE_NO_SOURCES)
        return RefreshOutcome(dataset.key, False, NOTE_ALL_FAILED, attempts[-1].url, attempts)

    def _try_source(
        self,
        dataset: DatasetDescriptor,
        source: SourceDescriptor,
        manifest: Manifest,
        have_file: bool,
    ) -> SourceAttempt:
        url = source.url

        if not is_supported(source.type):
            return SourceAttempt(url, source.type, SourceState.SKIPPED, f"unsupported source type '{source.type}'")

        probe = None
        if source.type not in ALWAYS_FRESH_TYPES:
            probe = self.fetcher.probe(url)
            if probe is None or not probe.ok:
                reason = "probe unavailable" if probe is None else f"probe returned HTTP {probe.status}"
                if have_file:
                    return SourceAttempt(url, source.type, SourceState.REUSED, f"{NOTE_UP_TO_DATE} ({reason})")
                logger.info(f"{dataset.key}: {reason} for {url}, no local copy, fetching anyway")
                probe = None
            elif not has_changed(probe, manifest.get(url)):
                if have_file:
                    return SourceAttempt(url, source.type, SourceState.UNCHANGED, NOTE_UP_TO_DATE)
                logger.info(f"{dataset.key}: {url} unchanged but no local copy, fetching")

        timeout = self.zip_retrieve_timeout if source.type == "zip" else None
        try:
            result = self.fetcher.retrieve(url, timeout=timeout)
        except FetchError as e:
            return SourceAttempt(url, source.type, SourceState.FETCH_FAILED, e.message)

        try:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(prefix=f"{dataset.key}-", dir=self.scratch_root) as scratch:
                canonical = normalize(source.type, result.content, Path(scratch))
        except FormatError as e:
            return SourceAttempt(url, source.type, SourceState.NORMALIZE_FAILED, e.message)
        except OSError as e:
            return SourceAttempt(url, source.type, SourceState.NORMALIZE_FAILED, f"scratch I/O failed: {e}")

        try:
            saved = self.dataset_store.commit(dataset.key, canonical)
        except OSError as e:
            return SourceAttempt(url, source.type, SourceState.COMMIT_FAILED, str(e))

        # Probe metadata is what the next run compares against
        meta = probe if probe is not None else result
        fingerprint = Fingerprint.now(
            saved_as=saved.name,
            etag=meta.etag,
            last_modified=meta.last_modified,
            content_length=meta.content_length,
        )
        manifest[url] = fingerprint

        note = NOTE_BY_TYPE[source.type]
        if not self.manifest_store.upsert(url, fingerprint):
            note = f"{note} (manifest not saved)"
        return SourceAttempt(url, source.type, SourceState.COMMITTED, note)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._key_locks_guard:
            if key not in self._key_locks:
                self._key_locks[key] = threading.Lock()
            return self._key_locks[key]
