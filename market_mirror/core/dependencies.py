from typing import Optional

from market_mirror.core.config import GallerySettings
from market_mirror.storage.catalog_store import CatalogStore, FileCatalogStore, HttpCatalogStore

_gallery_settings: Optional[GallerySettings] = None
_catalog_store: Optional[CatalogStore] = None


def get_gallery_settings() -> GallerySettings:
    global _gallery_settings
    if _gallery_settings is None:
        _gallery_settings = GallerySettings.from_env()
    return _gallery_settings


def get_catalog_store() -> CatalogStore:
    global _catalog_store
    if _catalog_store is None:
        settings = get_gallery_settings()
        if settings.index_url:
            _catalog_store = HttpCatalogStore(settings.index_url)
        else:
            _catalog_store = FileCatalogStore(settings.index_path)
    return _catalog_store
