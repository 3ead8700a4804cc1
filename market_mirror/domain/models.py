"""
Pydantic models for the extension marketplace mirror.

This module defines all data models used throughout the application, including:
- The catalog index persisted as index.json (entries, versions, asset files)
- Gallery query request bodies accepted by the Query Engine
- Upstream GitHub repository/release shapes consumed by the Catalog Builder
- The extension manifest (package.json) schema validated at ingestion

Field names match the JSON keys on the wire and on disk, so models can be
dumped with model_dump(mode="json") without aliases.
"""

from __future__ import annotations

import math
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Gallery asset types
# ---------------------------------------------------------------------------

ASSET_CODE_MANIFEST = "Microsoft.VisualStudio.Code.Manifest"
ASSET_CONTENT_DETAILS = "Microsoft.VisualStudio.Services.Content.Details"
ASSET_ICON_DEFAULT = "Microsoft.VisualStudio.Services.Icons.Default"
ASSET_CHANGELOG = "Microsoft.VisualStudio.Services.Content.Changelog"
ASSET_LICENSE = "Microsoft.VisualStudio.Services.Content.License"
ASSET_VSIX_PACKAGE = "Microsoft.VisualStudio.Services.VSIXPackage"
ASSET_VSIX_MANIFEST = "Microsoft.VisualStudio.Services.VsixManifest"

DEFAULT_TARGET_PLATFORM = "universal"


# ---------------------------------------------------------------------------
# Catalog index models (index.json)
# ---------------------------------------------------------------------------


class AssetFile(BaseModel):
    """A single downloadable file of an extension version."""

    assetType: str
    source: str


class VersionProperty(BaseModel):
    key: str
    value: str


class VersionEntry(BaseModel):
    """
    One published version of a catalog entry.

    sha256/size always describe the archive bytes persisted under extensions/.
    assetUri and fallbackAssetUri are left null; the client resolves files
    from the `files` list instead.
    """

    version: str
    lastUpdated: Optional[str] = None
    assetUri: Optional[str] = None
    fallbackAssetUri: Optional[str] = None
    files: Optional[List[AssetFile]] = None
    properties: Optional[List[VersionProperty]] = None
    targetPlatform: Optional[str] = None
    sha256: Optional[str] = None
    size: Optional[int] = None


class PublisherInfo(BaseModel):
    displayName: str
    publisherId: str
    publisherName: str
    domain: Optional[str] = None
    isDomainVerified: Optional[bool] = None


class CatalogEntry(BaseModel):
    """
    A mirrored extension as stored in index.json.

    Optional collections are allowed to be missing when an index is loaded,
    so the Query Engine can tolerate hand-edited or older index files; the
    sanitizer fills in safe fallbacks before anything reaches a client.
    """

    extensionId: str
    extensionName: str
    displayName: str
    shortDescription: str = ""
    publisher: PublisherInfo
    versions: List[VersionEntry] = Field(default_factory=list)
    statistics: Optional[List[Any]] = None
    tags: Optional[List[str]] = None
    categories: Optional[List[str]] = None
    releaseDate: Optional[str] = None
    publishedDate: Optional[str] = None
    lastUpdated: Optional[str] = None
    flags: Optional[str] = None
    identifier: str
    repository: Optional[str] = None
    homepage: Optional[str] = None
    license: Optional[str] = None


class CatalogSource(BaseModel):
    owner: str
    prefix: str
    repositoryCount: int


class CatalogIndex(BaseModel):
    """
    Top-level catalog document.

    Persisted at: <MARKET_ROOT>/index.json
    """

    generatedAt: str
    source: CatalogSource
    extensions: List[CatalogEntry] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Gallery query models (POST /query)
# ---------------------------------------------------------------------------


def _lenient_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return None


class QueryCriterion(BaseModel):
    # Both fields stay loose: a criterion of an unknown kind or with a
    # non-string value matches unconditionally instead of failing the request.
    filterType: Any = None
    value: Any = None

    @field_validator("filterType", mode="before")
    @classmethod
    def _numeric_kind(cls, value: Any) -> Any:
        number = _lenient_int(value)
        return value if number is None else number


class QueryFilter(BaseModel):
    pageNumber: Optional[int] = None
    pageSize: Optional[int] = None
    criteria: List[Optional[QueryCriterion]] = Field(default_factory=list)

    @field_validator("pageNumber", "pageSize", mode="before")
    @classmethod
    def _page_value(cls, value: Any) -> Optional[int]:
        if isinstance(value, float) and math.isfinite(value):
            return int(value)
        return _lenient_int(value)

    @field_validator("criteria", mode="before")
    @classmethod
    def _null_criteria(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [item if isinstance(item, dict) else None for item in value]


class ExtensionQueryBody(BaseModel):
    """Request body of the gallery extensionquery endpoint."""

    filters: List[QueryFilter] = Field(default_factory=list)
    flags: Optional[int] = None

    @field_validator("filters", mode="before")
    @classmethod
    def _null_filters(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        return [item if isinstance(item, dict) else {} for item in value]

    @field_validator("flags", mode="before")
    @classmethod
    def _flags_value(cls, value: Any) -> Optional[int]:
        return _lenient_int(value)


# ---------------------------------------------------------------------------
# Upstream (GitHub) models
# ---------------------------------------------------------------------------


class UpstreamRepository(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    full_name: str
    html_url: Optional[str] = None
    homepage: Optional[str] = None


class ReleaseAsset(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    size: int = 0
    browser_download_url: Optional[str] = None


class UpstreamRelease(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tag_name: Optional[str] = None
    created_at: Optional[str] = None
    published_at: Optional[str] = None
    assets: List[ReleaseAsset] = Field(default_factory=list)

    @field_validator("assets", mode="before")
    @classmethod
    def _null_assets(cls, value: Any) -> Any:
        return [] if value is None else value


# ---------------------------------------------------------------------------
# Extension manifest (extension/package.json inside a .vsix)
# ---------------------------------------------------------------------------


class RepositoryReference(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    url: Optional[str] = None


class PackageManifest(BaseModel):
    """
    The subset of an extension's package.json the catalog needs.

    publisher, name and version are required and must be non-empty; anything
    else is optional and normalized here so no untyped manifest data leaks
    past ingestion.
    """

    model_config = ConfigDict(extra="ignore")

    publisher: str = Field(min_length=1)
    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    displayName: Optional[str] = None
    description: Optional[str] = None
    publisherDisplayName: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    icon: Optional[str] = None
    readme: Optional[str] = None
    changelog: Optional[str] = None
    license: Optional[str] = None
    repository: Optional[Union[RepositoryReference, str]] = None
    homepage: Optional[str] = None

    @field_validator("keywords", "categories", mode="before")
    @classmethod
    def _string_list(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    @field_validator(
        "displayName",
        "description",
        "publisherDisplayName",
        "icon",
        "readme",
        "changelog",
        "license",
        "homepage",
        mode="before",
    )
    @classmethod
    def _optional_string(cls, value: Any) -> Optional[str]:
        # package.json in the wild carries objects here (e.g. legacy
        # {"type": "MIT"} licenses); anything that is not a string is dropped.
        return value if isinstance(value, str) else None

    @field_validator("repository", mode="before")
    @classmethod
    def _repository_shape(cls, value: Any) -> Any:
        if isinstance(value, (str, dict)):
            return value
        return None

    @property
    def repository_url(self) -> Optional[str]:
        if isinstance(self.repository, RepositoryReference):
            return self.repository.url
        return self.repository
