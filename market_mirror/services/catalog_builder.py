"""
Catalog sync job: mirror .vsix packages from GitHub releases into the local catalog.

This service handles:
- Discovering candidate repositories of the configured owner
- Importing the latest release package of each repository
- Persisting archives, extracted files and index.json
- Pruning directories of extensions that disappeared upstream
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

import httpx

from market_mirror.core.config import BuilderSettings
from market_mirror.domain.gallery_utils import utc_now_iso
from market_mirror.domain.models import CatalogIndex, CatalogSource, UpstreamRepository
from market_mirror.services.importer.github_client import GitHubClient
from market_mirror.services.importer.package_importer import PackageImporter, ProcessResult
from market_mirror.storage.catalog_writer import CatalogWriter, PreparedExtension

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    repository_count: int
    results: List[ProcessResult] = field(default_factory=list)
    index_changed: bool = False

    @property
    def extensions(self) -> List[PreparedExtension]:
        return [r.prepared for r in self.results if r.prepared is not None]

    @property
    def skipped(self) -> List[ProcessResult]:
        return [r for r in self.results if r.prepared is None]


def collect_extensions(results: Iterable[ProcessResult]) -> List[PreparedExtension]:
    """
    Keep successful results, one per identifier, sorted by identifier.

    If two repositories ship the same identifier the later one wins, matching
    the order repositories were processed in.
    """
    by_identifier = {}
    for result in results:
        if result.prepared is None:
            continue
        if result.prepared.identifier in by_identifier:
            logger.warning(
                f"{result.repository}: duplicate identifier {result.prepared.identifier}, replacing earlier entry"
            )
        by_identifier[result.prepared.identifier] = result.prepared
    return [by_identifier[key] for key in sorted(by_identifier)]


def build_index(
    extensions: List[PreparedExtension],
    settings: BuilderSettings,
    repository_count: int,
    generated_at: Optional[str] = None,
) -> CatalogIndex:
    return CatalogIndex(
        generatedAt=generated_at or utc_now_iso(),
        source=CatalogSource(
            owner=settings.owner,
            prefix=settings.prefix,
            repositoryCount=repository_count,
        ),
        extensions=[p.entry for p in extensions],
    )


class CatalogBuilder:
    """
    Runs one sync: discover → import each repository → persist → prune.

    Repositories are processed one at a time. Per-repository problems become
    skip results; failing to list repositories or to write the catalog
    aborts the run.
    """

    def __init__(
        self,
        settings: BuilderSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.writer = CatalogWriter(settings.root)
        self._transport = transport

    def _client(self) -> GitHubClient:
        return GitHubClient(
            owner=self.settings.owner,
            prefix=self.settings.prefix,
            api_base=self.settings.api_base,
            token=self.settings.token,
            transport=self._transport,
        )

    async def import_all(
        self, client: GitHubClient, repos: List[UpstreamRepository]
    ) -> List[ProcessResult]:
        importer = PackageImporter(client, self.writer.tmp_dir, self.settings.base_url)
        results: List[ProcessResult] = []
        for repo in repos:
            logger.info(f"Processing {repo.full_name}...")
            results.append(await importer.process_repository(repo))
        return results

    def persist(self, extensions: List[PreparedExtension], repository_count: int) -> bool:
        for prepared in extensions:
            self.writer.persist_extension(prepared)
        index = build_index(extensions, self.settings, repository_count)
        changed = self.writer.write_index(index)
        self.writer.cleanup(extensions)
        return changed

    async def run(self) -> SyncReport:
        self.writer.ensure_directories()

        logger.info(
            f"Scanning GitHub for {self.settings.prefix} repositories under {self.settings.owner}..."
        )
        async with self._client() as client:
            repos = await client.list_repositories()
            logger.info(f"Found {len(repos)} candidate repositories.")
            results = await self.import_all(client, repos)

        extensions = collect_extensions(results)
        report = SyncReport(repository_count=len(repos), results=results)
        report.index_changed = self.persist(extensions, len(repos))

        logger.info(
            f"Sync finished: {len(extensions)} extensions, {len(report.skipped)} repositories skipped."
        )
        return report


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Mirror VS Code extension packages from GitHub releases into a local catalog."
    )
    parser.add_argument("--root", type=Path, help="Catalog root directory (default: $MARKET_ROOT or ./data)")
    parser.add_argument("--owner", help="GitHub account to scan (default: $GITHUB_OWNER)")
    parser.add_argument("--prefix", help="Repository name prefix (default: $GITHUB_REPO_PREFIX)")
    parser.add_argument("--base-url", help="Public base URL for file links (default: $MARKET_BASE_URL)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    settings = BuilderSettings.from_env()
    overrides = {
        "root": args.root,
        "owner": args.owner,
        "prefix": args.prefix,
        "base_url": args.base_url,
    }
    settings = settings.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    try:
        asyncio.run(CatalogBuilder(settings).run())
    except Exception as e:
        logger.error(f"Catalog sync failed: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
