from .base import HttpIdentitySource, IdentitySource, SourceRegistry
from .hasheous import HasheousSource
from .local_catalog import LocalCatalogSource
from .thegamesdb import TheGamesDBSource

__all__ = [
    "IdentitySource",
    "HttpIdentitySource",
    "SourceRegistry",
    "HasheousSource",
    "LocalCatalogSource",
    "TheGamesDBSource",
]
