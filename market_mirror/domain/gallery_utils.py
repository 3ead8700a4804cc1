import hashlib
from datetime import datetime, timezone
from typing import Optional, Tuple


def deterministic_guid(value: str) -> str:
    """
    Derive a stable, UUID-shaped identifier from a string key.

    The first 32 hex characters of the SHA-256 digest are grouped 8-4-4-4-12.
    No version/variant bits are set; this only looks like a UUID.
    """
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:32]
    return f"{digest[0:8]}-{digest[8:12]}-{digest[12:16]}-{digest[16:20]}-{digest[20:32]}"


def content_digest(data: bytes) -> Tuple[str, int]:
    """
    Return (sha256 hex digest, byte length) of raw package bytes.
    """
    return hashlib.sha256(data).hexdigest(), len(data)


def build_file_url(relative_path: str, base_url: Optional[str] = None) -> str:
    """
    Turn a path relative to the catalog root into the URL served to clients.

    Without a base URL the result is root-relative ("/files/...").
    """
    clean = relative_path.replace("\\", "/").lstrip("/")
    if not base_url:
        return f"/{clean}"
    return f"{base_url.removesuffix('/')}/{clean}"


def normalise_item_name(value: str) -> str:
    return value.strip().lower()


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
