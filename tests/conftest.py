"""
Test Configuration - Shared fixtures for catalog builder and gallery tests.

Uses pytest fixtures to create isolated catalog roots, in-memory .vsix
archives and a fake GitHub API served through httpx.MockTransport.
"""

import io
import json
import re
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Union

import httpx
import pytest

from market_mirror.core.config import BuilderSettings
from market_mirror.domain.models import (
    CatalogEntry,
    CatalogIndex,
    CatalogSource,
    PublisherInfo,
    VersionEntry,
)

API_BASE = "https://api.github.test"
DOWNLOAD_BASE = "https://downloads.github.test"
OWNER = "acme"
PREFIX = "vscode-ext-"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for catalog output."""
    tmp = tempfile.mkdtemp(prefix="market_test_")
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


def build_vsix(
    package: Optional[Dict[str, Any]],
    files: Optional[Dict[str, Union[str, bytes]]] = None,
) -> bytes:
    """Build a .vsix archive in memory with fixed timestamps so bytes are stable."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        if package is not None:
            info = zipfile.ZipInfo("extension/package.json", date_time=(2024, 1, 1, 0, 0, 0))
            zf.writestr(info, json.dumps(package))
        for name, data in (files or {}).items():
            info = zipfile.ZipInfo(name, date_time=(2024, 1, 1, 0, 0, 0))
            zf.writestr(info, data)
    return buf.getvalue()


@pytest.fixture
def make_vsix() -> Callable[..., bytes]:
    return build_vsix


def set_encrypted_flag(data: bytes) -> bytes:
    """Mark every entry of a zip as encrypted without changing its payload."""
    patched = bytearray(data)
    for signature, flag_offset in ((b"PK\x03\x04", 6), (b"PK\x01\x02", 8)):
        start = patched.find(signature)
        while start != -1:
            patched[start + flag_offset] |= 0x01
            start = patched.find(signature, start + 4)
    return bytes(patched)


@pytest.fixture
def encrypt_vsix() -> Callable[[bytes], bytes]:
    return set_encrypted_flag


class FakeGitHub:
    """
    In-memory stand-in for the GitHub endpoints the builder calls.
    """

    def __init__(self, owner: str = OWNER):
        self.owner = owner
        self.repos: List[Dict[str, Any]] = []
        self.releases: Dict[str, Dict[str, Any]] = {}
        self.raw_releases: Dict[str, bytes] = {}
        self.asset_bodies: Dict[int, bytes] = {}
        self.requests: List[httpx.Request] = []
        self.fail_listing_with: Optional[int] = None
        self._next_asset_id = 1

    def add_repo(
        self,
        name: str,
        assets: Optional[List[tuple]] = None,
        published_at: str = "2024-05-01T10:00:00Z",
        created_at: str = "2024-04-30T09:00:00Z",
        html_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        full_name = f"{self.owner}/{name}"
        repo = {
            "name": name,
            "full_name": full_name,
            "html_url": html_url or f"https://github.test/{full_name}",
            "homepage": None,
        }
        self.repos.append(repo)
        if assets is not None:
            release_assets = []
            for asset_name, body in assets:
                asset_id = self._next_asset_id
                self._next_asset_id += 1
                self.asset_bodies[asset_id] = body
                release_assets.append({
                    "id": asset_id,
                    "name": asset_name,
                    "size": len(body),
                    "browser_download_url": f"{DOWNLOAD_BASE}/assets/{asset_id}",
                })
            self.releases[full_name] = {
                "tag_name": "v1",
                "created_at": created_at,
                "published_at": published_at,
                "assets": release_assets,
            }
        return repo

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == f"/users/{self.owner}/repos":
            if self.fail_listing_with:
                return httpx.Response(self.fail_listing_with, text="rate limited")
            page = int(request.url.params.get("page", "1"))
            per_page = int(request.url.params.get("per_page", "30"))
            chunk = self.repos[(page - 1) * per_page: page * per_page]
            return httpx.Response(200, json=chunk)

        match = re.fullmatch(r"/repos/(.+)/releases/latest", path)
        if match and match.group(1) in self.raw_releases:
            return httpx.Response(200, content=self.raw_releases[match.group(1)])
        if match:
            release = self.releases.get(match.group(1))
            if release is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=release)

        match = re.fullmatch(r"/assets/(\d+)", path)
        if match:
            body = self.asset_bodies.get(int(match.group(1)))
            if body is None:
                return httpx.Response(404)
            return httpx.Response(200, content=body)

        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def builder_settings(temp_dir: Path) -> BuilderSettings:
    return BuilderSettings(
        owner=OWNER,
        prefix=PREFIX,
        api_base=API_BASE,
        token="test-token",
        base_url="",
        root=temp_dir,
    )


def make_entry(
    publisher: str,
    name: str,
    version: str = "1.0.0",
    tags: Optional[List[str]] = None,
    categories: Optional[List[str]] = None,
    display_name: Optional[str] = None,
    description: str = "",
) -> CatalogEntry:
    identifier = f"{publisher}.{name}".lower()
    return CatalogEntry(
        extensionId=f"id-{identifier}",
        extensionName=name,
        displayName=display_name or name,
        shortDescription=description,
        publisher=PublisherInfo(
            displayName=publisher,
            publisherId=f"pub-{publisher}",
            publisherName=publisher,
            domain=None,
            isDomainVerified=False,
        ),
        versions=[
            VersionEntry(
                version=version,
                lastUpdated="2024-05-01T10:00:00Z",
                files=[],
                properties=[],
                targetPlatform="universal",
                sha256="0" * 64,
                size=10,
            )
        ],
        statistics=[],
        tags=tags if tags is not None else [],
        categories=categories if categories is not None else [],
        releaseDate="2024-04-30T09:00:00Z",
        publishedDate="2024-05-01T10:00:00Z",
        lastUpdated="2024-05-01T10:00:00Z",
        flags="",
        identifier=identifier,
    )


@pytest.fixture
def entry_factory() -> Callable[..., CatalogEntry]:
    return make_entry


@pytest.fixture
def sample_index() -> CatalogIndex:
    """A small catalog: two themes, one linter, one formatter."""
    return CatalogIndex(
        generatedAt="2024-05-02T00:00:00.000Z",
        source=CatalogSource(owner=OWNER, prefix=PREFIX, repositoryCount=4),
        extensions=[
            make_entry("acme", "foo", version="1.2.0", tags=["theme", "dark"], categories=["Themes"],
                       display_name="Foo Dark Theme", description="A dark theme"),
            make_entry("acme", "lint", tags=["linter"], categories=["Linters"],
                       display_name="Acme Lint", description="Static checks"),
            make_entry("other", "fmt", tags=["format"], categories=["Formatters"],
                       display_name="Formatter", description="Formats code"),
            make_entry("other", "solarized", tags=["Theme"], categories=["Themes"],
                       display_name="Solarized", description="Light and dark palettes"),
        ],
    )
