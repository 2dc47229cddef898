"""Shared fixtures: a scripted fetcher and tmp_path-backed stores."""

import json

import pytest

from src.config.settings import Settings
from src.ingest.coordinator import AcquisitionCoordinator
from src.ingest.fetcher import FetchError, FetchResult
from src.ingest.manifest import ManifestStore
from src.ingest.store import DatasetStore


class StubFetcher:
    """
    Scripted stand-in for RemoteFetcher.

    probes: url -> ProbeResult or None (unavailable; also the default)
    bodies: url -> bytes, FetchResult, or an exception to raise
    """

    def __init__(self):
        self.probes = {}
        self.bodies = {}
        self.probe_calls = []
        self.retrieve_calls = []

    def probe(self, url):
        self.probe_calls.append(url)
        return self.probes.get(url)

    def retrieve(self, url, timeout=None):
        self.retrieve_calls.append((url, timeout))
        body = self.bodies.get(url)
        if body is None:
            raise FetchError(url, "HTTP 404 Not Found", 404)
        if isinstance(body, Exception):
            raise body
        if isinstance(body, FetchResult):
            return body
        return FetchResult(url=url, content=body)

    @property
    def retrieved_urls(self):
        return [url for url, _ in self.retrieve_calls]


@pytest.fixture
def stub_fetcher():
    return StubFetcher()


@pytest.fixture
def write_catalog(tmp_path):
    """Write a catalog list to tmp_path/datasets.json and return its path."""
    def _write(entries):
        path = tmp_path / "datasets.json"
        path.write_text(json.dumps(entries), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def make_coordinator(tmp_path, stub_fetcher, write_catalog):
    def _make(entries, zip_retrieve_timeout=None):
        return AcquisitionCoordinator(
            catalog_path=write_catalog(entries),
            manifest_store=ManifestStore(tmp_path / "storage" / "manifest.json"),
            dataset_store=DatasetStore(tmp_path / "out"),
            fetcher=stub_fetcher,
            scratch_root=tmp_path / "storage",
            zip_retrieve_timeout=zip_retrieve_timeout,
        )
    return _make


@pytest.fixture
def settings(tmp_path):
    return Settings(
        catalog_path=tmp_path / "datasets.json",
        storage_dir=tmp_path / "storage",
        out_dir=tmp_path / "out",
    )
