"""Registry access package.

- http.py: process-wide aiohttp session and URL-keyed response cache
- client.py: NuGet v3 service index, registration documents and downloads
- catalog.py: catalog entry parsing, page selection and version picking
"""

from .catalog import CatalogEntry, candidate_pages, inlined_leaves, select_entry
from .client import RegistryClient

__all__ = [
    "CatalogEntry",
    "candidate_pages",
    "inlined_leaves",
    "select_entry",
    "RegistryClient",
]
