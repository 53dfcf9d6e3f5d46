# backend/__init__.py
from .client import BackendClient, BackendError, BackendNotFound, BackendUnavailable
from .catalogs import CatalogBackend

__all__ = [
    "BackendClient",
    "BackendError",
    "BackendNotFound",
    "BackendUnavailable",
    "CatalogBackend",
]
