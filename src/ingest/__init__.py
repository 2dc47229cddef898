"""
Dataset acquisition and normalization.

Modules:
    catalog - Dataset catalog loading and schema validation
    manifest - Freshness fingerprints persisted per source URL
    fetcher - HTTP probe and retrieval
    normalize - CSV / JSON / ZIP payloads to canonical CSV
    store - Canonical <key>.csv files with atomic replacement
    coordinator - Per-dataset source fallback and refresh batches
"""
