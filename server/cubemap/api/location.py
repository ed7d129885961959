"""Location and map data API endpoints."""

from __future__ import annotations

import re
from pathlib import Path

from fastapi import APIRouter
from fastapi.responses import FileResponse, JSONResponse

router = APIRouter(prefix="/api")

# Dataset names map straight onto file names; nothing else gets through.
_DATASET_RE = re.compile(r"\A[a-z0-9_]+\Z")


@router.get("/cube_location")
async def cube_location() -> JSONResponse:
    """Return the cached cube location.

    Responds 200 with the record (fresh, cached, or stale) whenever any
    record has ever been fetched; 5xx with ``{error, message, details?}``
    otherwise.
    """
    from cubemap.main import get_config, get_gateway

    result = await get_gateway().get_location()
    if "http_status" in result:
        status = result.pop("http_status")
        return JSONResponse(content=result, status_code=status)

    max_age = get_config().cache.client_max_age
    return JSONResponse(
        content=result,
        headers={"Cache-Control": f"public, max-age={max_age}"},
    )


@router.get("/geojson/{dataset}")
async def geojson(dataset: str):
    """Serve a bundled GeoJSON layer by name."""
    from cubemap.main import get_config

    if not _DATASET_RE.match(dataset):
        return JSONResponse(content={"error": "Invalid dataset name"}, status_code=400)

    config = get_config()
    path = Path(config.geojson.data_dir) / f"{dataset}.geojson"
    if not path.is_file():
        return JSONResponse(content={"error": f"Dataset '{dataset}' not found"}, status_code=404)

    return FileResponse(
        path,
        media_type="application/geo+json",
        headers={"Cache-Control": f"public, max-age={config.geojson.max_age}"},
    )
