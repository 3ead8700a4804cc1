from __future__ import annotations

from enum import IntEnum
from typing import Any, Dict, List, Optional
import logging

from market_mirror.domain.models import (
    DEFAULT_TARGET_PLATFORM,
    CatalogEntry,
    CatalogIndex,
    ExtensionQueryBody,
    QueryCriterion,
    QueryFilter,
)
from market_mirror.domain.gallery_utils import normalise_item_name

logger = logging.getLogger(__name__)

# The marketplace client sends this in its Target criterion.
TARGET_CLIENT_MARKER = "visualstudio.code"


class FilterType(IntEnum):
    """Gallery criterion kinds understood by the matcher."""

    EXTENSION_NAME = 7
    TARGET = 8
    CATEGORY = 9
    SEARCH_TEXT = 10


def _unique_name(extension: CatalogEntry) -> str:
    return f"{extension.publisher.publisherName}.{extension.extensionName}".lower()


def _identifier(extension: CatalogEntry) -> str:
    return (extension.identifier or _unique_name(extension)).lower()


def matches_criterion(extension: CatalogEntry, criterion: Optional[QueryCriterion]) -> bool:
    """
    Evaluate a single gallery criterion against one catalog entry.

    A criterion without a string value, or of an unknown kind, always matches.
    """
    if criterion is None or not isinstance(criterion.value, str):
        return True

    value = criterion.value.lower()
    kind = criterion.filterType

    if kind == FilterType.EXTENSION_NAME:
        return (
            extension.extensionName.lower() == value
            or _unique_name(extension) == value
            or _identifier(extension) == value
        )
    if kind == FilterType.TARGET:
        # Compatibility gate only: it never looks at the entry itself.
        return TARGET_CLIENT_MARKER in value
    if kind == FilterType.CATEGORY:
        return value in [c.lower() for c in extension.categories or []]
    if kind == FilterType.SEARCH_TEXT:
        haystack = [
            extension.extensionName,
            extension.displayName,
            extension.shortDescription,
            *(extension.tags or []),
            *(extension.categories or []),
        ]
        return any(value in field.lower() for field in haystack if field)

    return True


def apply_filters(
    extensions: List[CatalogEntry], filters: Optional[List[QueryFilter]]
) -> List[CatalogEntry]:
    """
    Narrow the extension list filter by filter; every criterion must match.
    Filters without criteria are skipped.
    """
    current = extensions
    for flt in filters or []:
        if not flt.criteria:
            continue
        current = [
            ext for ext in current
            if all(matches_criterion(ext, criterion) for criterion in flt.criteria)
        ]
    return current


def paginate(extensions: List[CatalogEntry], flt: Optional[QueryFilter]) -> List[CatalogEntry]:
    if flt is None:
        return extensions
    total = len(extensions)
    page_size = flt.pageSize if flt.pageSize is not None else total
    size = max(1, min(page_size, total))
    page_number = max(1, flt.pageNumber if flt.pageNumber is not None else 1)
    start = (page_number - 1) * size
    return extensions[start:start + size]


def sanitize_extension(extension: CatalogEntry) -> Dict[str, Any]:
    """
    Project a catalog entry onto the public gallery shape.

    Every optional field gets an explicit fallback so clients never see a
    missing key.
    """
    versions = []
    for v in extension.versions:
        versions.append({
            "version": v.version,
            "lastUpdated": v.lastUpdated,
            "assetUri": v.assetUri,
            "fallbackAssetUri": v.fallbackAssetUri,
            "files": [f.model_dump() for f in v.files or []],
            "properties": [p.model_dump() for p in v.properties or []],
            "targetPlatform": v.targetPlatform or DEFAULT_TARGET_PLATFORM,
            "sha256": v.sha256,
            "size": v.size,
        })

    return {
        "extensionId": extension.extensionId,
        "extensionName": extension.extensionName,
        "displayName": extension.displayName,
        "shortDescription": extension.shortDescription,
        "publisher": extension.publisher.model_dump(),
        "versions": versions,
        "statistics": list(extension.statistics or []),
        "tags": list(extension.tags or []),
        "categories": list(extension.categories or []),
        "releaseDate": extension.releaseDate,
        "publishedDate": extension.publishedDate,
        "lastUpdated": extension.lastUpdated,
        "flags": extension.flags or "",
        "identifier": extension.identifier,
        "repository": extension.repository,
        "homepage": extension.homepage,
        "license": extension.license,
    }


class Catalog:
    """Read-only view over a loaded catalog index."""

    def __init__(self, index: CatalogIndex):
        self.index = index

    @property
    def extensions(self) -> List[CatalogEntry]:
        return self.index.extensions

    def query(self, body: ExtensionQueryBody) -> Dict[str, Any]:
        """
        Execute an extensionquery request and build the gallery response payload.

        Only the first filter's page parameters are honoured.
        """
        filters = body.filters or []
        filtered = apply_filters(self.extensions, filters)
        primary = filters[0] if filters else None
        page = paginate(filtered, primary)

        logger.debug(f"Query matched {len(filtered)} extensions, returning {len(page)}")

        return {
            "results": [
                {
                    "extensions": [sanitize_extension(ext) for ext in page],
                    "resultMetadata": [
                        {
                            "metadataType": "ResultCount",
                            "metadataItems": [
                                {"name": "TotalCount", "count": len(filtered)},
                            ],
                        }
                    ],
                }
            ]
        }

    def find_extension(self, item_name: str) -> Optional[CatalogEntry]:
        """
        Look up an extension by identifier, publisher.name or bare name
        (case-insensitive). The first match in index order wins.
        """
        wanted = normalise_item_name(item_name)
        for ext in self.extensions:
            if (
                _identifier(ext) == wanted
                or _unique_name(ext) == wanted
                or ext.extensionName.lower() == wanted
            ):
                return ext
        return None
