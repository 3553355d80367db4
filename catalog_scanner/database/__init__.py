from ..config import CatalogPaths
from .sqlite_store import CatalogStore, SORT_OPTIONS, DEFAULT_SORT


def open_catalog(root: str) -> CatalogStore:
    """Open (creating if needed) the catalog database kept inside `root`."""
    paths = CatalogPaths(root)
    paths.ensure_directories()
    return CatalogStore(paths.database_file)
