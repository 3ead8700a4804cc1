"""
In-memory access to the entries of a .vsix (zip) archive.
"""
from __future__ import annotations

import io
import zipfile
import zlib
from typing import Dict, Optional


class InvalidArchiveError(Exception):
    """The downloaded package is not a readable zip archive."""


class VsixArchive:
    """
    Reads every file entry of an archive up front and exposes a
    case-insensitive lookup by internal path.
    """

    def __init__(self, entries: Dict[str, bytes]):
        self._entries = entries

    @classmethod
    def from_bytes(cls, data: bytes) -> "VsixArchive":
        entries: Dict[str, bytes] = {}
        try:
            with zipfile.ZipFile(io.BytesIO(data), "r") as zip_ref:
                for info in zip_ref.infolist():
                    if info.is_dir():
                        continue
                    entries[info.filename.lower()] = zip_ref.read(info)
        except (
            zipfile.BadZipFile,
            zipfile.LargeZipFile,
            zlib.error,
            OSError,
            EOFError,
            ValueError,
            RuntimeError,
            NotImplementedError,
        ) as e:
            raise InvalidArchiveError(f"Not a valid package archive: {e}") from e
        return cls(entries)

    def lookup(self, path: str) -> Optional[bytes]:
        """Return the entry bytes for path (any casing), or None."""
        return self._entries.get(path.lower())
