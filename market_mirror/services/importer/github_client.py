"""
Minimal async client for the parts of the GitHub REST API the mirror needs.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional

import aiofiles
import httpx
from pydantic import ValidationError

from market_mirror.domain.models import ReleaseAsset, UpstreamRelease, UpstreamRepository

logger = logging.getLogger(__name__)

USER_AGENT = "vscode-market-sync"
PAGE_SIZE = 100


class UpstreamRequestError(Exception):
    """GitHub answered with a status outside the allowed set for a call."""

    def __init__(self, status_code: int, url: str, body: str = ""):
        self.status_code = status_code
        self.url = url
        super().__init__(f"GitHub request failed {status_code} for {url}: {body[:200]}")


class GitHubClient:
    """
    Lists repositories, resolves latest releases and downloads release assets.

    Use as an async context manager so the underlying httpx client is closed.
    """

    def __init__(
        self,
        owner: str,
        prefix: str,
        api_base: str = "https://api.github.com",
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 60.0,
    ):
        self.owner = owner
        self.prefix = prefix
        self.api_base = api_base.rstrip("/")
        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/vnd.github+json",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            headers=headers,
            follow_redirects=True,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, url: str, allowed_statuses: Iterable[int] = ()) -> httpx.Response:
        response = await self._client.get(url)
        if not response.is_success and response.status_code not in allowed_statuses:
            raise UpstreamRequestError(response.status_code, url, response.text)
        return response

    async def list_repositories(self) -> List[UpstreamRepository]:
        """
        Page through the owner's repositories and keep those matching the prefix.
        """
        repos: List[UpstreamRepository] = []
        page = 1
        while True:
            url = f"{self.api_base}/users/{self.owner}/repos?per_page={PAGE_SIZE}&page={page}"
            response = await self._get(url, allowed_statuses=[404])
            if response.status_code == 404:
                logger.warning(f"GitHub account {self.owner} not found")
                break
            data = response.json()
            if not data:
                break
            for raw in data:
                name = raw.get("name") if isinstance(raw, dict) else None
                if not isinstance(name, str) or not name.startswith(self.prefix):
                    continue
                try:
                    repos.append(UpstreamRepository.model_validate(raw))
                except ValidationError as e:
                    logger.warning(f"Ignoring malformed repository entry {name}: {e}")
            if len(data) < PAGE_SIZE:
                break
            page += 1
        return repos

    async def get_latest_release(self, full_name: str) -> Optional[UpstreamRelease]:
        """Return the latest release, or None when the repository has none."""
        url = f"{self.api_base}/repos/{full_name}/releases/latest"
        response = await self._get(url, allowed_statuses=[404])
        if response.status_code == 404:
            return None
        try:
            payload = response.json()
        except ValueError:
            raise UpstreamRequestError(response.status_code, url, response.text)
        return UpstreamRelease.model_validate(payload)

    def asset_download_url(self, full_name: str, asset: ReleaseAsset) -> str:
        return asset.browser_download_url or f"{self.api_base}/repos/{full_name}/releases/assets/{asset.id}"

    async def download_asset(self, full_name: str, asset: ReleaseAsset, target_path: Path) -> bytes:
        """
        Stream a release asset into target_path and return its bytes.

        A previous download with the advertised size is reused. The body is
        streamed into a sibling .part file and renamed once complete.
        """
        if target_path.is_file() and target_path.stat().st_size == asset.size:
            logger.debug(f"Reusing cached download {target_path.name}")
            return target_path.read_bytes()

        url = self.asset_download_url(full_name, asset)
        logger.info(f"  downloading {asset.name} ({asset.size} bytes)")

        part_path = target_path.with_name(target_path.name + ".part")
        target_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with self._client.stream(
                "GET", url, headers={"Accept": "application/octet-stream"}
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise UpstreamRequestError(response.status_code, url, body)
                async with aiofiles.open(part_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        await f.write(chunk)
        except Exception:
            part_path.unlink(missing_ok=True)
            raise

        part_path.replace(target_path)
        return target_path.read_bytes()
