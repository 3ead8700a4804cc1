"""
Turn GitHub releases carrying .vsix packages into catalog entries.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List, Optional

from pydantic import ValidationError

from market_mirror.domain.gallery_utils import (
    build_file_url,
    content_digest,
    deterministic_guid,
    utc_now_iso,
)
from market_mirror.domain.models import (
    ASSET_CHANGELOG,
    ASSET_CODE_MANIFEST,
    ASSET_CONTENT_DETAILS,
    ASSET_ICON_DEFAULT,
    ASSET_LICENSE,
    ASSET_VSIX_MANIFEST,
    ASSET_VSIX_PACKAGE,
    DEFAULT_TARGET_PLATFORM,
    AssetFile,
    CatalogEntry,
    PackageManifest,
    PublisherInfo,
    ReleaseAsset,
    UpstreamRelease,
    UpstreamRepository,
    VersionEntry,
)
from market_mirror.services.importer.github_client import GitHubClient
from market_mirror.services.importer.vsix_archive import InvalidArchiveError, VsixArchive
from market_mirror.storage.catalog_writer import (
    EXTENSIONS_DIRNAME,
    FILES_DIRNAME,
    PendingFile,
    PreparedExtension,
)

logger = logging.getLogger(__name__)

PACKAGE_EXTENSION = ".vsix"
PACKAGE_JSON_ENTRY = "extension/package.json"
VSIX_MANIFEST_ENTRY = "extension.vsixmanifest"


class SkipRepository(Exception):
    """A repository cannot contribute an entry; the sync continues without it."""


@dataclass
class ProcessResult:
    """Outcome of importing one repository: an entry or the reason it was skipped."""

    repository: str
    prepared: Optional[PreparedExtension] = None
    skip_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.prepared is not None


def _asset_score(asset: ReleaseAsset) -> int:
    name = asset.name.lower()
    score = 0
    if "universal" in name:
        score += 2
    if "darwin" in name or "mac" in name:
        score -= 1
    if "win32" in name or "win-" in name:
        score -= 1
    return score


def pick_asset(assets: List[ReleaseAsset]) -> Optional[ReleaseAsset]:
    """
    Choose the best installable package among release assets.

    Universal builds are preferred and platform builds penalized; ties keep
    the order GitHub returned the assets in.
    """
    candidates = [a for a in assets if a.name.endswith(PACKAGE_EXTENSION)]
    if not candidates:
        return None
    return sorted(candidates, key=_asset_score, reverse=True)[0]


def parse_manifest(raw: bytes) -> PackageManifest:
    try:
        data = json.loads(raw.decode("utf-8-sig"))
    except (UnicodeDecodeError, ValueError) as e:
        raise SkipRepository(f"{PACKAGE_JSON_ENTRY} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise SkipRepository(f"{PACKAGE_JSON_ENTRY} is not a JSON object")
    try:
        return PackageManifest.model_validate(data)
    except ValidationError as e:
        missing = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise SkipRepository(
            f"{PACKAGE_JSON_ENTRY} missing publisher/name/version ({', '.join(missing)})"
        ) from e


def _entry_path(path: str) -> str:
    return path if path.startswith("extension/") else f"extension/{path}"


def build_extension(
    repo: UpstreamRepository,
    release: UpstreamRelease,
    vsix_bytes: bytes,
    base_url: str = "",
) -> PreparedExtension:
    """
    Normalize one downloaded package into a catalog entry.

    Pure: nothing is written; the returned PreparedExtension lists every file
    the writer should persist, relative to the catalog root.
    """
    try:
        archive = VsixArchive.from_bytes(vsix_bytes)
    except InvalidArchiveError as e:
        raise SkipRepository(str(e)) from e

    package_raw = archive.lookup(PACKAGE_JSON_ENTRY)
    if package_raw is None:
        raise SkipRepository(f"{PACKAGE_JSON_ENTRY} missing inside VSIX.")
    manifest = parse_manifest(package_raw)

    identifier = f"{manifest.publisher}.{manifest.name}".lower()
    version = manifest.version
    files_base = f"{FILES_DIRNAME}/{identifier}/{version}"
    archive_path = f"{EXTENSIONS_DIRNAME}/{identifier}/{identifier}-{version}{PACKAGE_EXTENSION}"

    pending: List[PendingFile] = [PendingFile(f"{files_base}/package.json", package_raw)]

    vsix_manifest = archive.lookup(VSIX_MANIFEST_ENTRY)
    if vsix_manifest is not None:
        pending.append(PendingFile(f"{files_base}/{VSIX_MANIFEST_ENTRY}", vsix_manifest))

    optional_sources = [
        ("readme.md", manifest.readme or "extension/README.md"),
        ("changelog.md", manifest.changelog or "extension/CHANGELOG.md"),
        ("license", manifest.license or "extension/LICENSE"),
    ]
    extracted = set()
    for target, source in optional_sources:
        data = archive.lookup(_entry_path(source))
        if data is None:
            continue
        pending.append(PendingFile(f"{files_base}/{target}", data))
        extracted.add(target)

    icon_path: Optional[str] = None
    if manifest.icon:
        icon_data = archive.lookup(f"extension/{manifest.icon}")
        if icon_data is not None:
            icon_name = f"icon{PurePosixPath(manifest.icon).suffix or '.png'}"
            icon_path = f"{files_base}/{icon_name}"
            pending.append(PendingFile(icon_path, icon_data))

    sha256, size = content_digest(vsix_bytes)

    # Order is part of the gallery contract.
    file_list = []
    if vsix_manifest is not None:
        file_list.append((ASSET_CODE_MANIFEST, f"{files_base}/{VSIX_MANIFEST_ENTRY}"))
    file_list.append((ASSET_CONTENT_DETAILS, f"{files_base}/package.json"))
    if icon_path:
        file_list.append((ASSET_ICON_DEFAULT, icon_path))
    if "readme.md" in extracted:
        file_list.append((ASSET_CONTENT_DETAILS, f"{files_base}/readme.md"))
    if "changelog.md" in extracted:
        file_list.append((ASSET_CHANGELOG, f"{files_base}/changelog.md"))
    if "license" in extracted:
        file_list.append((ASSET_LICENSE, f"{files_base}/license"))
    file_list.append((ASSET_VSIX_PACKAGE, archive_path))
    if vsix_manifest is not None:
        file_list.append((ASSET_VSIX_MANIFEST, f"{files_base}/{VSIX_MANIFEST_ENTRY}"))

    now = utc_now_iso()
    published = release.published_at or release.created_at or now
    created = release.created_at or release.published_at or now

    version_entry = VersionEntry(
        version=version,
        lastUpdated=published,
        assetUri=None,
        fallbackAssetUri=None,
        files=[AssetFile(assetType=t, source=build_file_url(p, base_url)) for t, p in file_list],
        properties=[],
        targetPlatform=DEFAULT_TARGET_PLATFORM,
        sha256=sha256,
        size=size,
    )

    entry = CatalogEntry(
        extensionId=deterministic_guid(identifier),
        extensionName=manifest.name,
        displayName=manifest.displayName or manifest.name,
        shortDescription=manifest.description or "",
        publisher=PublisherInfo(
            displayName=manifest.publisherDisplayName or manifest.publisher,
            publisherId=deterministic_guid(manifest.publisher),
            publisherName=manifest.publisher,
            domain=None,
            isDomainVerified=False,
        ),
        versions=[version_entry],
        statistics=[],
        tags=list(manifest.keywords),
        categories=list(manifest.categories),
        releaseDate=created,
        publishedDate=published,
        lastUpdated=published,
        flags="",
        identifier=identifier,
        repository=manifest.repository_url or repo.html_url,
        homepage=manifest.homepage or repo.homepage,
        license=manifest.license,
    )

    return PreparedExtension(
        entry=entry,
        archive=PendingFile(archive_path, vsix_bytes),
        files=pending,
    )


class PackageImporter:
    """Fetches the latest release package of a repository and normalizes it."""

    def __init__(self, client: GitHubClient, tmp_dir: Path, base_url: str = ""):
        self.client = client
        self.tmp_dir = tmp_dir
        self.base_url = base_url

    async def import_repository(self, repo: UpstreamRepository) -> PreparedExtension:
        """
        Raises SkipRepository for expected gaps (no release, no package,
        bad manifest); network and upstream errors propagate.
        """
        release = await self.client.get_latest_release(repo.full_name)
        if release is None:
            raise SkipRepository("latest release not found")

        asset = pick_asset(release.assets)
        if asset is None:
            raise SkipRepository(f"no {PACKAGE_EXTENSION} asset in latest release")

        temp_file = self.tmp_dir / f"{repo.name}-{asset.id}{PACKAGE_EXTENSION}"
        vsix_bytes = await self.client.download_asset(repo.full_name, asset, temp_file)
        return build_extension(repo, release, vsix_bytes, self.base_url)

    async def process_repository(self, repo: UpstreamRepository) -> ProcessResult:
        """
        Import one repository, converting every per-repository failure into a
        skip result so the caller can carry on with the rest.
        """
        try:
            prepared = await self.import_repository(repo)
        except SkipRepository as e:
            logger.warning(f"- {repo.name}: {e}, skipping.")
            return ProcessResult(repository=repo.full_name, skip_reason=str(e))
        except Exception as e:
            logger.error(f"  Failed to process {repo.full_name}: {e}")
            return ProcessResult(repository=repo.full_name, skip_reason=str(e))
        return ProcessResult(repository=repo.full_name, prepared=prepared)
