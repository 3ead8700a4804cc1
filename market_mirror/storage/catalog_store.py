import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
import httpx
from pydantic import ValidationError

from market_mirror.domain.models import CatalogIndex

logger = logging.getLogger(__name__)


class CatalogLoadError(Exception):
    """The catalog index could not be fetched or parsed."""


class CatalogStore(ABC):
    """
    Single-slot holder for the catalog index used by the gallery API.

    The first load() fetches the index; later calls return the cached copy.
    Concurrent first calls are serialized by a lock so only one fetch runs.
    reset() empties the slot so the next load() fetches again.
    """

    def __init__(self) -> None:
        self._index: Optional[CatalogIndex] = None
        self._etag: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def etag(self) -> Optional[str]:
        return self._etag

    @property
    def is_loaded(self) -> bool:
        return self._index is not None

    async def load(self) -> CatalogIndex:
        if self._index is not None:
            return self._index
        async with self._lock:
            if self._index is None:
                raw, etag = await self._fetch()
                self._index = self._parse(raw)
                self._etag = etag
                logger.info(f"Loaded catalog index with {len(self._index.extensions)} extensions")
        return self._index

    def reset(self) -> None:
        self._index = None
        self._etag = None

    @staticmethod
    def _parse(raw: bytes) -> CatalogIndex:
        try:
            return CatalogIndex.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            raise CatalogLoadError(f"Invalid index.json: {e}") from e

    @abstractmethod
    async def _fetch(self) -> Tuple[bytes, Optional[str]]:
        """Return the raw index bytes and an optional ETag."""
        pass


class FileCatalogStore(CatalogStore):
    """Loads index.json from the local catalog root."""

    def __init__(self, index_path: Path):
        super().__init__()
        self.index_path = index_path

    async def _fetch(self) -> Tuple[bytes, Optional[str]]:
        try:
            async with aiofiles.open(self.index_path, "rb") as f:
                raw = await f.read()
        except OSError as e:
            raise CatalogLoadError(f"Unable to load index.json ({e})") from e
        etag = '"' + hashlib.sha256(raw).hexdigest() + '"'
        return raw, etag


class HttpCatalogStore(CatalogStore):
    """Fetches index.json from a static host."""

    def __init__(self, index_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__()
        self.index_url = index_url
        self._transport = transport

    async def _fetch(self) -> Tuple[bytes, Optional[str]]:
        try:
            async with httpx.AsyncClient(
                follow_redirects=True, timeout=30.0, transport=self._transport
            ) as client:
                response = await client.get(self.index_url)
        except httpx.HTTPError as e:
            raise CatalogLoadError(f"Unable to load index.json ({e})") from e
        if response.status_code != 200:
            raise CatalogLoadError(f"Unable to load index.json ({response.status_code})")
        return response.content, response.headers.get("etag")
