"""
Persistence of the mirrored catalog on disk.

Layout under the catalog root:

    index.json
    extensions/<identifier>/<identifier>-<version>.vsix
    files/<identifier>/<version>/{package.json, extension.vsixmanifest, readme.md, ...}

Every write compares bytes first so unchanged files keep their mtime, and
index.json keeps its generatedAt timestamp unless the catalog content changed.
"""
from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from market_mirror.domain.models import CatalogEntry, CatalogIndex

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
EXTENSIONS_DIRNAME = "extensions"
FILES_DIRNAME = "files"
TMP_DIRNAME = ".tmp"


@dataclass
class PendingFile:
    """Bytes to be written at a path relative to the catalog root."""

    relative_path: str
    data: bytes


@dataclass
class PreparedExtension:
    """A normalized catalog entry plus the files backing it."""

    entry: CatalogEntry
    archive: PendingFile
    files: List[PendingFile] = field(default_factory=list)

    @property
    def identifier(self) -> str:
        return self.entry.identifier

    @property
    def version(self) -> str:
        return self.entry.versions[0].version


def serialize_index(index: CatalogIndex) -> str:
    return json.dumps(index.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"


def _remove(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path, ignore_errors=True)
    else:
        path.unlink(missing_ok=True)


def index_snapshot(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """The part of an index that counts as content (everything but generatedAt)."""
    if data is None:
        return None
    return {
        "source": data.get("source"),
        "extensions": data.get("extensions"),
    }


class CatalogWriter:
    def __init__(self, root: Path):
        self.root = root
        self.extensions_dir = root / EXTENSIONS_DIRNAME
        self.files_dir = root / FILES_DIRNAME
        self.tmp_dir = root / TMP_DIRNAME
        self.index_path = root / INDEX_FILENAME

    def ensure_directories(self) -> None:
        # Failures here are fatal for the run and propagate as OSError.
        for d in (self.extensions_dir, self.files_dir, self.tmp_dir):
            d.mkdir(parents=True, exist_ok=True)

    def write_file_if_changed(self, path: Path, data: bytes) -> bool:
        """
        Write data to path unless the file already holds exactly these bytes.
        Returns True when the file was written.
        """
        if path.is_file() and path.read_bytes() == data:
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return True

    def persist_extension(self, prepared: PreparedExtension) -> int:
        """Write the archive and extracted files of one extension. Returns files written."""
        written = 0
        for pending in [prepared.archive, *prepared.files]:
            if self.write_file_if_changed(self.root / pending.relative_path, pending.data):
                written += 1
        if written:
            logger.info(f"{prepared.identifier}: wrote {written} changed file(s)")
        return written

    def load_existing_index(self) -> Optional[Dict[str, Any]]:
        if not self.index_path.exists():
            return None
        try:
            data = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to parse existing {INDEX_FILENAME} ({e}); rebuilding from scratch.")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Existing {INDEX_FILENAME} is not an object; rebuilding from scratch.")
            return None
        return data

    def write_index(self, index: CatalogIndex) -> bool:
        """
        Persist the candidate index.

        When the snapshot equals the one on disk the previous generatedAt is
        kept, which makes rebuilds against unchanged upstream state
        byte-identical. Returns True when the catalog content changed.
        """
        existing = self.load_existing_index()
        new_data = index.model_dump(mode="json")
        changed = existing is None or index_snapshot(existing) != index_snapshot(new_data)

        if not changed and isinstance(existing.get("generatedAt"), str):
            index = index.model_copy(update={"generatedAt": existing["generatedAt"]})

        self.write_file_if_changed(self.index_path, serialize_index(index).encode("utf-8"))

        if changed:
            logger.info(
                f"{INDEX_FILENAME} updated with {len(index.extensions)} extensions (changes detected)."
            )
        else:
            logger.info(
                f"No catalog changes detected; {INDEX_FILENAME} timestamp preserved "
                f"({len(index.extensions)} extensions)."
            )
        return changed

    def cleanup(self, current: Iterable[PreparedExtension]) -> List[Path]:
        """
        Remove directories of identifiers that are no longer in the catalog,
        and superseded versions inside the ones that are.
        """
        versions = {p.identifier: p for p in current}
        removed: List[Path] = []

        for base in (self.extensions_dir, self.files_dir):
            if not base.is_dir():
                continue
            for folder in sorted(base.iterdir()):
                if folder.name not in versions:
                    removed.append(folder)
                    _remove(folder)

        for identifier, prepared in versions.items():
            archive_dir = self.extensions_dir / identifier
            keep_archive = Path(prepared.archive.relative_path).name
            if archive_dir.is_dir():
                for item in list(archive_dir.iterdir()):
                    if item.name != keep_archive:
                        removed.append(item)
                        _remove(item)

            version_root = self.files_dir / identifier
            if version_root.is_dir():
                for item in list(version_root.iterdir()):
                    if item.name != prepared.version:
                        removed.append(item)
                        _remove(item)

        for path in removed:
            logger.info(f"Removed stale {path.relative_to(self.root)}")
        return removed
