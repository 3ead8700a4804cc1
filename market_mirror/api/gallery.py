from __future__ import annotations

from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from market_mirror.core.dependencies import get_catalog_store
from market_mirror.domain.entities import Catalog, sanitize_extension
from market_mirror.domain.models import ExtensionQueryBody
from market_mirror.storage.catalog_store import CatalogStore

logger = logging.getLogger(__name__)
router = APIRouter()

CORS_HEADERS = {
    "access-control-allow-origin": "*",
    "access-control-allow-headers": "*",
    "access-control-allow-methods": "GET, POST, OPTIONS",
}


def gallery_response(
    content: Any,
    status_code: int = status.HTTP_200_OK,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={**CORS_HEADERS, **(headers or {})},
    )


def _internal_error() -> JSONResponse:
    return gallery_response(
        {"message": "Internal Server Error"},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


async def _read_query_body(request: Request) -> ExtensionQueryBody:
    """
    Parse the request body; anything unreadable becomes an empty query.
    """
    try:
        raw = await request.json()
    except ValueError:
        return ExtensionQueryBody()
    if not isinstance(raw, dict):
        return ExtensionQueryBody()
    try:
        return ExtensionQueryBody.model_validate(raw)
    except ValidationError as e:
        logger.debug(f"Ignoring malformed query body: {e}")
        return ExtensionQueryBody()


# ---------------------------------------------------------------------------
# 1. POST /query
# ---------------------------------------------------------------------------

@router.options("/query")
@router.options("/api/extensionquery")
async def query_preflight() -> Response:
    return Response(
        status_code=status.HTTP_204_NO_CONTENT,
        headers={**CORS_HEADERS, "access-control-allow-methods": "POST, OPTIONS"},
    )


@router.post("/query")
@router.post("/api/extensionquery")
async def extension_query(
    request: Request,
    store: CatalogStore = Depends(get_catalog_store),
) -> JSONResponse:
    """
    Gallery `extensionquery` endpoint: filter, paginate and return extensions.
    """
    try:
        index = await store.load()
        body = await _read_query_body(request)
        payload = Catalog(index).query(body)
    except Exception as e:
        logger.error(f"[extensionquery] failed: {e}", exc_info=True)
        return _internal_error()

    headers = {"ETag": store.etag} if store.etag else None
    return gallery_response(payload, headers=headers)


# ---------------------------------------------------------------------------
# 2. GET /items
# ---------------------------------------------------------------------------

@router.options("/items")
async def items_preflight() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)


@router.get("/items")
async def get_item(
    itemName: Optional[str] = Query(default=None),
    version: Optional[str] = Query(default=None),
    store: CatalogStore = Depends(get_catalog_store),
) -> JSONResponse:
    """
    Look up a single extension, optionally narrowed to one version.
    """
    if not itemName:
        return gallery_response(
            {"message": "itemName query parameter required"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    try:
        index = await store.load()
        extension = Catalog(index).find_extension(itemName)
        if extension is None:
            return gallery_response(
                {"message": f"Extension {itemName} not found."},
                status_code=status.HTTP_404_NOT_FOUND,
            )

        payload = sanitize_extension(extension)
        if not version:
            return gallery_response({"extension": payload})

        match = next((v for v in payload["versions"] if v["version"] == version), None)
        if match is None:
            return gallery_response(
                {"message": f"Version {version} not found for {itemName}."},
                status_code=status.HTTP_404_NOT_FOUND,
            )
        return gallery_response({"extension": payload, "version": match})
    except Exception as e:
        logger.error(f"[items] failed: {e}", exc_info=True)
        return _internal_error()
