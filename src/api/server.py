"""
FastAPI server for Tabular Mirror.

Endpoints:
- GET  /api/datasets           configured dataset catalog
- POST /api/download-selected  refresh the named datasets
- GET  /api/files              canonical CSV files on disk
- GET  /api/data               filtered, paginated rows of one file
- GET  /api/health             liveness

Usage:
    uvicorn src.api.server:app --port 3000
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from src.config.settings import Settings, load_settings
from src.ingest.catalog import CatalogValidationError
from src.ingest.coordinator import AcquisitionCoordinator
from src.logging_config import configure_logging
from src.query.engine import NotFoundError, QueryEngine, QueryError

logger = logging.getLogger(__name__)


class DownloadRequest(BaseModel):
    keys: List[str] = Field(default_factory=list, description="Dataset keys to refresh")


class SourceAttemptModel(BaseModel):
    url: str
    type: str
    state: str
    detail: str = ""


class DownloadResult(BaseModel):
    key: str
    ok: bool
    note: str
    source: Optional[str] = None
    attempts: List[SourceAttemptModel] = Field(default_factory=list)


class DownloadResponse(BaseModel):
    results: List[DownloadResult]


class DataResponse(BaseModel):
    headers: List[str]
    rows: List[dict]
    totalMatched: int


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app around one coordinator and one query engine."""
    settings = settings or load_settings()
    configure_logging(log_dir=settings.log_dir)
    coordinator = AcquisitionCoordinator.from_settings(settings)
    engine = QueryEngine(coordinator.dataset_store, max_limit=settings.max_limit)

    app = FastAPI(
        title="Tabular Mirror API",
        description="Mirror remote tabular datasets as canonical CSV and query them",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.coordinator = coordinator
    app.state.engine = engine

    @app.get("/api/datasets")
    def get_datasets():
        """Configured dataset catalog (empty list if it cannot be read)."""
        try:
            return coordinator.list_datasets()
        except (OSError, CatalogValidationError) as e:
            logger.error(f"Error loading datasets: {e}")
            return []

    @app.post("/api/download-selected", response_model=DownloadResponse)
    def download_selected(request: DownloadRequest):
        """Refresh the selected datasets; per-dataset failures are reported inline."""
        if not request.keys:
            raise HTTPException(status_code=400, detail="No dataset keys provided.")

        try:
            outcomes = coordinator.refresh(request.keys)
        except (OSError, CatalogValidationError) as e:
            logger.error(f"Update failed: {e}")
            raise HTTPException(status_code=500, detail=f"Update failed: {e}")

        return {"results": [o.to_dict() for o in outcomes]}

    @app.get("/api/files")
    def get_files():
        return coordinator.list_canonical_files()

    @app.get("/api/data", response_model=DataResponse)
    def get_data(
        file: str = Query("", description="Canonical file name (<key>.csv) or dataset key"),
        q: str = Query("", description="Case-insensitive substring filter"),
        limit: int = Query(settings.default_limit),
        offset: int = Query(0),
    ):
        try:
            result = engine.query(file, q=q, limit=limit, offset=offset)
        except NotFoundError:
            raise HTTPException(status_code=404, detail="CSV not found. Run Update Selected first.")
        except QueryError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return result.to_dict()

    @app.get("/api/health")
    def health_check():
        """Simple health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
