"""
Environment-driven configuration for the catalog builder and the gallery API.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field

MARKET_ROOT_ENV_VAR = "MARKET_ROOT"

# Resolve project root (not the Python package root)
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_MARKET_ROOT = _PROJECT_ROOT / "data"


def resolve_market_root(env: Optional[Mapping[str, str]] = None) -> Path:
    """
    Determine the catalog root directory.

    Priority:
    1. Environment variable MARKET_ROOT
    2. '<project root>/data'
    """
    env = os.environ if env is None else env
    env_path = env.get(MARKET_ROOT_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return _DEFAULT_MARKET_ROOT


class BuilderSettings(BaseModel):
    """
    Settings for a catalog sync run.
    """

    owner: str = Field(
        default="kargnas",
        description="GitHub account whose repositories are mirrored.",
    )
    prefix: str = Field(
        default="vscode-ext-",
        description="Only repositories whose name starts with this prefix are considered.",
    )
    api_base: str = Field(
        default="https://api.github.com",
        description="Base URL of the GitHub REST API.",
    )
    token: Optional[str] = Field(
        default=None,
        description="Optional bearer token for GitHub requests.",
    )
    base_url: str = Field(
        default="",
        description="Public base URL of the catalog; empty means root-relative file links.",
    )
    root: Path = Field(
        default=_DEFAULT_MARKET_ROOT,
        description="Directory holding index.json, extensions/ and files/.",
    )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BuilderSettings":
        env = os.environ if env is None else env
        return cls(
            owner=env.get("GITHUB_OWNER") or "kargnas",
            prefix=env.get("GITHUB_REPO_PREFIX") or "vscode-ext-",
            api_base=env.get("GITHUB_API_BASE") or "https://api.github.com",
            token=env.get("GITHUB_TOKEN") or env.get("GH_TOKEN") or None,
            base_url=env.get("MARKET_BASE_URL") or "",
            root=resolve_market_root(env),
        )


class GallerySettings(BaseModel):
    """
    Settings for the gallery query service.
    """

    index_url: Optional[str] = Field(
        default=None,
        description="If set, index.json is fetched from this URL instead of the local catalog root.",
    )
    index_path: Path = Field(
        default=_DEFAULT_MARKET_ROOT / "index.json",
        description="Local index.json used when no index_url is configured.",
    )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "GallerySettings":
        env = os.environ if env is None else env
        return cls(
            index_url=env.get("MARKET_INDEX_URL") or None,
            index_path=resolve_market_root(env) / "index.json",
        )
